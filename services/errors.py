"""
Service Errors

Error taxonomy shared by the validation core and the services built on it:

- ValidationError: a user-correctable problem with a named field
- StoreError: I/O failure talking to the record or file store
- NotificationError: outbound message could not be delivered
"""

from typing import Dict, List, Optional


class ValidationError(Exception):
    """A rule was violated by a submission. Always recoverable by the caller."""

    def __init__(self, field: str, message: str,
                 errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.field = field
        self.message = message
        self.errors = errors or {field: [message]}

    def to_dict(self) -> Dict:
        return {
            'field': self.field,
            'message': self.message,
            'errors': self.errors
        }

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.field}: {self.message}>'


class DuplicateEntryError(ValidationError):
    """An SOD/EOD (or other unique record) already exists for the key."""


class ActionNotPermitted(ValidationError):
    """The workflow gate refused the requested action."""


class NotFoundError(LookupError):
    pass


class StoreError(Exception):
    """Failure talking to the record store or file store."""

    def __init__(self, message: str, detail: Optional[str] = None,
                 constraint_violation: bool = False):
        super().__init__(message)
        self.detail = detail or message
        self.constraint_violation = constraint_violation


class NotificationError(Exception):
    pass
