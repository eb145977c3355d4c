"""
Record Store

Table-oriented adapter over the SQLAlchemy models. The workflow services
only ever see plain dicts coming out of here, keyed by column name.

    store = RecordStore()
    store.insert('sod_logs', {...})            -> {'id': 7}
    store.get('drivers', 3)                    -> {...} or None
    store.query('sod_logs', {'driver_id': 3, 'log_date': today}) -> [{...}]
    store.update('drivers', 3, {'status': DriverStatus.ACTIVE}) -> {...}
    store.update_many([('vehicles', 5, {...}), ('drivers', 3, {...})]) -> [{...}, {...}]
"""

from typing import Any, Dict, List, Optional, Tuple
import logging
from app import db
from models import Driver, Vehicle, StartOfDayLog, EndOfDayLog, VehicleCheck, IncidentReport, AuditLog
from .errors import NotFoundError
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)

TABLES = {
    'drivers': Driver,
    'vehicles': Vehicle,
    'sod_logs': StartOfDayLog,
    'eod_reports': EndOfDayLog,
    'vehicle_checks': VehicleCheck,
    'incident_reports': IncidentReport,
    'audit_logs': AuditLog,
}


class RecordStore:
    """Create/read/update by primary key plus equality queries"""

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}")

    def _check_columns(self, model, values: Dict[str, Any]):
        columns = set(model.__table__.columns.keys())
        unknown = [key for key in values if key not in columns]
        if unknown:
            raise ValueError(f"Unknown column(s) for {model.__tablename__}: {', '.join(sorted(unknown))}")

    @TransactionHelper.with_connection_retry(max_retries=3)
    @TransactionHelper.with_transaction
    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)
        self._check_columns(model, record)
        instance = model(**record)
        db.session.add(instance)
        db.session.flush()
        logger.debug(f"Inserted {table} record {instance.id}")
        return {'id': instance.id}

    @TransactionHelper.with_connection_retry(max_retries=3)
    @TransactionHelper.with_transaction
    def get(self, table: str, key: int) -> Optional[Dict[str, Any]]:
        instance = db.session.get(self._model(table), key)
        return instance.to_dict() if instance else None

    @TransactionHelper.with_connection_retry(max_retries=3)
    @TransactionHelper.with_transaction
    def query(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        model = self._model(table)
        filters = filters or {}
        self._check_columns(model, filters)
        statement = db.select(model).filter_by(**filters).order_by(model.id)
        return [row.to_dict() for row in db.session.scalars(statement)]

    def _apply(self, table: str, key: int, patch: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)
        self._check_columns(model, patch)
        instance = db.session.get(model, key)
        if instance is None:
            raise NotFoundError(f"{table} record {key} not found")
        for column, value in patch.items():
            setattr(instance, column, value)
        # Flush per row so unique columns are checked in call order
        db.session.flush()
        return instance.to_dict()

    @TransactionHelper.with_connection_retry(max_retries=3)
    @TransactionHelper.with_transaction
    def update(self, table: str, key: int, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._apply(table, key, patch)

    @TransactionHelper.with_connection_retry(max_retries=3)
    @TransactionHelper.with_transaction
    def update_many(self, changes: List[Tuple[str, int, Dict[str, Any]]]) -> List[Dict[str, Any]]:
        """Apply (table, key, patch) updates as one unit of work: all commit or none do"""
        return [self._apply(table, key, patch) for table, key, patch in changes]
