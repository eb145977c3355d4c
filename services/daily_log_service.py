"""
Daily Log Service

Start-of-day and end-of-day submission pipeline:

    payload -> schema -> business rules -> workflow gate -> record store

Each step raises ValidationError (or a subclass) on failure so nothing is
written unless every step passed. A unique-constraint violation from the
store is reported exactly like the duplicate pre-check.
"""

from typing import Optional, Dict, Any, Tuple, List
import logging
from datetime import date
from flask import current_app

from timezone_utils import get_operating_date, get_operating_time_naive
from .business_rules import (BusinessRuleService, SOD_TABLE, EOD_TABLE, DUPLICATE_MESSAGES,
                             validate_date_logic, validate_vehicle_check)
from .errors import ValidationError, DuplicateEntryError, NotFoundError, StoreError
from .audit_service import AuditService
from .file_service import FileStore
from .record_store import RecordStore
from .validation_service import validate_sod, validate_eod, validate_eod_details
from .workflow_gate import WorkflowGate, Action

logger = logging.getLogger(__name__)

SCREENSHOT_FOLDER = 'reports'


class DailyLogService:
    """Service class for SOD/EOD submissions and admin corrections"""

    def __init__(self, store: Optional[RecordStore] = None, file_store: Optional[FileStore] = None,
                 require_sod_before_eod: Optional[bool] = None):
        self.store = store or RecordStore()
        self.file_store = file_store or FileStore()
        self.rules = BusinessRuleService(self.store)
        if require_sod_before_eod is None:
            require_sod_before_eod = current_app.config.get('REQUIRE_SOD_BEFORE_EOD', False)
        self.gate = WorkflowGate(self.rules, require_sod_before_eod=require_sod_before_eod)
        self.audit_service = AuditService(self.store)

    def _get_driver(self, driver_id: int) -> Dict[str, Any]:
        driver = self.store.get('drivers', driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found")
        return driver

    def _insert_log(self, table: str, record: Dict[str, Any]) -> int:
        try:
            return self.store.insert(table, record)['id']
        except StoreError as e:
            if e.constraint_violation:
                # Lost the race against a concurrent submission
                logger.info(f"Store rejected duplicate {table} for driver {record['driver_id']}: {e.detail}")
                if table == SOD_TABLE and 'vehicle' in (e.detail or '').lower():
                    raise ValidationError('vehicle_id', 'Vehicle is already in use today by another driver')
                raise DuplicateEntryError('log_date', DUPLICATE_MESSAGES[table])
            raise

    def submit_start_of_day(self, driver_id: int, payload: Any,
                            today: Optional[date] = None) -> Tuple[Dict[str, Any], List[str]]:
        """
        Validate and record a driver's start of day.

        Returns:
            tuple: (sod record: dict, warnings: list)
        """
        submission = validate_sod(payload)

        today = today or get_operating_date()
        driver = self._get_driver(driver_id)
        validate_date_logic(submission.log_date or today, today)
        self.gate.require(driver, Action.SUBMIT_SOD, today)

        if submission.vehicle_check_items is not None:
            validate_vehicle_check(submission.vehicle_check_items)

        vehicle_id = driver['assigned_vehicle_id']
        self.rules.require_vehicle_available(vehicle_id, driver_id, today)

        sod_id = self._insert_log(SOD_TABLE, {
            'driver_id': driver_id,
            'company_id': driver['company_id'],
            'vehicle_id': vehicle_id,
            'log_date': today,
            'parcel_count': submission.parcel_count,
            'starting_mileage': submission.starting_mileage,
            'van_confirmed': submission.van_confirmed,
            'vehicle_check_completed': submission.vehicle_check_completed,
            'vehicle_check_items': submission.vehicle_check_items,
            'notes': submission.notes,
        })

        self.audit_service.log_action(
            action='submit_sod',
            actor=f'driver:{driver_id}',
            entity_type='sod_log',
            entity_id=sod_id,
            details={'parcel_count': submission.parcel_count, 'vehicle_id': vehicle_id}
        )
        logger.info(f"SOD {sod_id} recorded for driver {driver_id} ({submission.parcel_count} parcels)")
        return self.store.get(SOD_TABLE, sod_id), []

    def submit_end_of_day(self, driver_id: int, payload: Any,
                          today: Optional[date] = None) -> Tuple[Dict[str, Any], List[str]]:
        """
        Validate and record a driver's end of day.

        Without a same-day SOD the parcel cross-check is skipped and a
        warning is returned instead (unless REQUIRE_SOD_BEFORE_EOD is set).

        Returns:
            tuple: (eod record: dict, warnings: list)
        """
        submission = validate_eod(payload)

        today = today or get_operating_date()
        driver = self._get_driver(driver_id)
        validate_date_logic(submission.log_date or today, today)
        decision = self.gate.require(driver, Action.SUBMIT_EOD, today)

        parcel_check = self.rules.check_parcel_counts(decision.sod, submission.parcels_delivered)
        if not parcel_check.is_valid:
            raise ValidationError('parcels_delivered', parcel_check.errors[0])

        if not submission.screenshot.has_content:
            raise ValidationError('screenshot', 'Delivery screenshot file must be uploaded')
        screenshot_path = self.file_store.upload_file(driver_id, SCREENSHOT_FOLDER, submission.screenshot)['path']

        eod_id = self._insert_log(EOD_TABLE, {
            'driver_id': driver_id,
            'company_id': driver['company_id'],
            'log_date': today,
            'parcels_delivered': submission.parcels_delivered,
            'screenshot_path': screenshot_path,
            'screenshot_content_type': submission.screenshot.content_type,
            'issues_reported': submission.issues_reported,
        })

        self.audit_service.log_action(
            action='submit_eod',
            actor=f'driver:{driver_id}',
            entity_type='eod_report',
            entity_id=eod_id,
            details={'parcels_delivered': submission.parcels_delivered, 'warnings': parcel_check.warnings}
        )
        logger.info(f"EOD {eod_id} recorded for driver {driver_id} ({submission.parcels_delivered} delivered)")
        return self.store.get(EOD_TABLE, eod_id), parcel_check.warnings

    def admin_update_sod(self, sod_id: int, patch: Dict[str, Any], edited_by: str) -> Dict[str, Any]:
        """
        Admin correction of a start-of-day log. The merged record is
        re-validated against the SOD schema before it is saved.
        """
        current = self.store.get(SOD_TABLE, sod_id)
        if current is None:
            raise NotFoundError(f"SOD log {sod_id} not found")

        editable = ('parcel_count', 'starting_mileage', 'van_confirmed',
                    'vehicle_check_completed', 'notes', 'vehicle_check_items')
        merged = {key: current[key] for key in editable}
        merged.update(patch or {})
        submission = validate_sod(merged)

        # The day's EOD must still be consistent with the corrected count
        eods = self.store.query(EOD_TABLE, {'driver_id': current['driver_id'],
                                            'log_date': date.fromisoformat(current['log_date'])})
        if eods:
            result = self.rules.check_parcel_counts({'parcel_count': submission.parcel_count},
                                                    eods[0]['parcels_delivered'])
            if not result.is_valid:
                raise ValidationError('parcel_count', 'Parcel count cannot be below parcels already delivered')

        updated = self.store.update(SOD_TABLE, sod_id, {
            'parcel_count': submission.parcel_count,
            'starting_mileage': submission.starting_mileage,
            'van_confirmed': submission.van_confirmed,
            'vehicle_check_completed': submission.vehicle_check_completed,
            'notes': submission.notes,
            'vehicle_check_items': submission.vehicle_check_items,
            'edited_by': edited_by,
            'edited_at': get_operating_time_naive(),
        })

        self.audit_service.log_action(
            action='edit_sod',
            actor=edited_by,
            entity_type='sod_log',
            entity_id=sod_id,
            details={'before': {key: current[key] for key in ('parcel_count', 'starting_mileage')},
                     'after': {key: updated[key] for key in ('parcel_count', 'starting_mileage')}}
        )
        logger.info(f"SOD {sod_id} edited by {edited_by}")
        return updated

    def admin_update_eod(self, eod_id: int, patch: Dict[str, Any], edited_by: str) -> Tuple[Dict[str, Any], List[str]]:
        """Admin correction of an end-of-day report, re-checked against the day's SOD"""
        current = self.store.get(EOD_TABLE, eod_id)
        if current is None:
            raise NotFoundError(f"EOD report {eod_id} not found")

        merged = {key: current[key] for key in ('parcels_delivered', 'issues_reported')}
        merged.update(patch or {})
        details = validate_eod_details(merged)

        sod = self.rules.find_todays_entry(SOD_TABLE, current['driver_id'],
                                           date.fromisoformat(current['log_date']))
        result = self.rules.check_parcel_counts(sod, details['parcels_delivered'])
        if not result.is_valid:
            raise ValidationError('parcels_delivered', result.errors[0])

        updated = self.store.update(EOD_TABLE, eod_id, dict(
            details, edited_by=edited_by, edited_at=get_operating_time_naive()))

        self.audit_service.log_action(
            action='edit_eod',
            actor=edited_by,
            entity_type='eod_report',
            entity_id=eod_id,
            details={'before': current['parcels_delivered'], 'after': updated['parcels_delivered']}
        )
        logger.info(f"EOD {eod_id} edited by {edited_by}")
        return updated, result.warnings

    def get_daily_status(self, driver_id: int, today: Optional[date] = None) -> Dict[str, Any]:
        return self.gate.daily_status(self._get_driver(driver_id), today)
