"""
Transaction Helper Service

Database safety for the record store:
- Commit/rollback around each unit of work
- Connection retry with exponential backoff
- SQLAlchemy errors translated into StoreError so no driver text leaks upward
"""

from functools import wraps
from typing import Callable, Tuple, List
import logging
import time
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError, OperationalError, IntegrityError, DisconnectionError
from app import db
from .errors import StoreError

logger = logging.getLogger(__name__)


class TransactionHelper:
    """Helper class for managing database transactions safely"""

    @staticmethod
    def with_transaction(func: Callable) -> Callable:
        """
        Decorator that wraps a function in a database transaction.
        Commits on return, rolls back on any exception. Integrity errors
        become StoreError(constraint_violation=True); other database errors
        become StoreError.

        Usage:
            @TransactionHelper.with_transaction
            def insert(self, table, record):
                ...
        """
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                result = func(*args, **kwargs)
                db.session.commit()
                return result
            except IntegrityError as e:
                db.session.rollback()
                logger.warning(f"Constraint violation in {func.__name__}: {e.orig}")
                raise StoreError('Record conflicts with an existing record',
                                 detail=str(e.orig), constraint_violation=True) from e
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Transaction error in {func.__name__}: {str(e)}")
                raise StoreError('Database operation failed', detail=str(e)) from e
            except Exception:
                db.session.rollback()
                raise
        return wrapper

    @staticmethod
    def with_connection_retry(max_retries: int = 3, backoff: float = 0.5):
        """
        Decorator for operations that need connection retry logic with exponential backoff.

        Args:
            max_retries: Maximum number of retry attempts
            backoff: Initial backoff delay in seconds
        """
        def decorator(func: Callable) -> Callable:
            @wraps(func)
            def wrapper(*args, **kwargs):
                for attempt in range(max_retries):
                    try:
                        return func(*args, **kwargs)
                    except StoreError as e:
                        cause = e.__cause__
                        if not isinstance(cause, (DisconnectionError, OperationalError)):
                            raise
                        if attempt < max_retries - 1:
                            sleep_time = backoff * (2 ** attempt)  # Exponential backoff
                            logger.warning(f"Database connection error (attempt {attempt + 1}/{max_retries}): "
                                           f"{e.detail}. Retrying in {sleep_time}s...")
                            time.sleep(sleep_time)
                            continue
                        logger.error("Max retries reached for database connection")
                        raise
            return wrapper
        return decorator

    @staticmethod
    def check_connection() -> Tuple[bool, List[str]]:
        """
        Round-trip to the database and flag a session left with pending changes.

        Returns:
            tuple: (healthy: bool, issues: list)
        """
        try:
            db.session.execute(text('SELECT 1'))
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Database health check failed: {str(e)}")
            return False, [f"Database unreachable ({e.__class__.__name__})"]

        issues = []
        if db.session.new or db.session.dirty or db.session.deleted:
            issues.append("Session has uncommitted changes")
        return not issues, issues
