"""
Vehicle Check Service

Daily walk-round check of the driver's assigned vehicle: condition,
fuel, mileage and optional photos. One check per driver per operating day;
the unique (driver_id, log_date) constraint backs the duplicate pre-check.
"""

from typing import Optional, Dict, Any
import logging
from datetime import date

from models import VehicleCondition
from timezone_utils import get_operating_date
from .audit_service import AuditService
from .business_rules import BusinessRuleService, VEHICLE_CHECK_TABLE, DUPLICATE_MESSAGES, validate_date_logic
from .errors import NotFoundError, ValidationError, DuplicateEntryError, StoreError
from .file_service import FileStore
from .record_store import RecordStore
from .validation_service import validate_daily_vehicle_check
from .workflow_gate import WorkflowGate, Action

logger = logging.getLogger(__name__)

PHOTO_FOLDER = 'photos'


def _condition(value: Optional[str]) -> Optional[VehicleCondition]:
    return VehicleCondition(value) if value else None


class VehicleCheckService:
    """Service class for daily vehicle checks"""

    def __init__(self, store: Optional[RecordStore] = None, file_store: Optional[FileStore] = None):
        self.store = store or RecordStore()
        self.file_store = file_store or FileStore()
        self.rules = BusinessRuleService(self.store)
        self.gate = WorkflowGate(self.rules)
        self.audit_service = AuditService(self.store)

    def _get_driver(self, driver_id: int) -> Dict[str, Any]:
        driver = self.store.get('drivers', driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found")
        return driver

    def submit_vehicle_check(self, driver_id: int, payload: Any, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Validate and record today's check of the driver's assigned vehicle.

        Returns:
            dict: the stored vehicle check
        """
        submission = validate_daily_vehicle_check(payload)

        today = today or get_operating_date()
        driver = self._get_driver(driver_id)
        validate_date_logic(submission.log_date or today, today)
        self.gate.require(driver, Action.SUBMIT_VEHICLE_CHECK, today)

        if not all(photo.has_content for photo in submission.photos):
            raise ValidationError('photos', 'Vehicle check photos must be uploaded as files')
        photo_paths = [self.file_store.upload_file(driver_id, PHOTO_FOLDER, photo)['path']
                       for photo in submission.photos]

        vehicle_id = driver['assigned_vehicle_id']
        try:
            check_id = self.store.insert(VEHICLE_CHECK_TABLE, {
                'driver_id': driver_id,
                'company_id': driver['company_id'],
                'vehicle_id': vehicle_id,
                'log_date': today,
                'exterior_condition': _condition(submission.exterior_condition),
                'interior_condition': _condition(submission.interior_condition),
                'fuel_level': submission.fuel_level,
                'mileage': submission.mileage,
                'issues_reported': submission.issues_reported,
                'photo_paths': photo_paths,
                'status': 'completed',
            })['id']
        except StoreError as e:
            if e.constraint_violation:
                logger.info(f"Store rejected duplicate vehicle check for driver {driver_id}: {e.detail}")
                raise DuplicateEntryError('log_date', DUPLICATE_MESSAGES[VEHICLE_CHECK_TABLE])
            raise

        self.audit_service.log_action(
            action='submit_vehicle_check',
            actor=f'driver:{driver_id}',
            entity_type='vehicle_check',
            entity_id=check_id,
            details={'vehicle_id': vehicle_id, 'fuel_level': submission.fuel_level, 'photos': len(photo_paths)}
        )
        logger.info(f"Vehicle check {check_id} recorded for driver {driver_id} (vehicle {vehicle_id})")
        return self.store.get(VEHICLE_CHECK_TABLE, check_id)

    def get_todays_check(self, driver_id: int, today: Optional[date] = None) -> Optional[Dict[str, Any]]:
        self._get_driver(driver_id)
        return self.rules.find_todays_entry(VEHICLE_CHECK_TABLE, driver_id, today)
