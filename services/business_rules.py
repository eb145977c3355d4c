"""
Business Rules

Cross-field and cross-record invariants for the daily workflow. The module
level checks are pure functions; BusinessRuleService adds the checks that
need same-day records from the record store.

Pre-checks against the store are advisory. The unique constraints on the
log tables remain the authority when two submissions race.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional
import logging

from forms import parse_iso_date
from submissions import VehicleCheckItem
from timezone_utils import get_operating_date
from .errors import ValidationError, DuplicateEntryError

logger = logging.getLogger(__name__)

SOD_TABLE = 'sod_logs'
EOD_TABLE = 'eod_reports'
VEHICLE_CHECK_TABLE = 'vehicle_checks'

DUPLICATE_MESSAGES = {
    SOD_TABLE: 'SOD log already exists for today',
    EOD_TABLE: 'EOD report already exists for today',
    VEHICLE_CHECK_TABLE: 'Vehicle check already completed for today',
}


@dataclass
class RuleResult:
    """Outcome of a check that can pass with warnings"""
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str):
        self.errors.append(message)
        self.is_valid = False

    def to_dict(self) -> Dict[str, Any]:
        return {'is_valid': self.is_valid, 'errors': list(self.errors), 'warnings': list(self.warnings)}


@dataclass
class VehicleAvailability:
    vehicle_id: int
    available: bool
    held_by_driver_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vehicle_id': self.vehicle_id,
            'available': self.available,
            'held_by_driver_id': self.held_by_driver_id,
        }


def validate_parcel_delivery_logic(start_count: int, delivered_count: int) -> bool:
    if delivered_count > start_count:
        raise ValidationError('parcels_delivered', 'Cannot deliver more parcels than started with')
    return True


def validate_date_logic(log_date, today: Optional[date] = None) -> bool:
    """Only today's date, in the operating timezone, may be logged"""
    today = today or get_operating_date()
    try:
        parsed = parse_iso_date(log_date)
    except (TypeError, ValueError, AttributeError):
        raise ValidationError('log_date', 'Not a valid date')
    if parsed != today:
        raise ValidationError('log_date', 'Can only log for today')
    return True


def validate_vehicle_assignment(driver_id: int, vehicle_id: Optional[int]) -> bool:
    if not vehicle_id:
        logger.debug(f"Driver {driver_id} has no assigned vehicle")
        raise ValidationError('vehicle_assignment', 'Driver must have an assigned vehicle')
    return True


def validate_vehicle_check(items: Optional[Dict[str, bool]]) -> bool:
    """Every checklist item must be answered true; a missing answer counts as false"""
    items = items or {}
    failed = [name for name in VehicleCheckItem.names() if items.get(name) is not True]
    if failed:
        raise ValidationError('vehicle_check_items', f"Vehicle check incomplete: {', '.join(failed)}")
    return True


class BusinessRuleService:
    """Record-backed rule checks"""

    def __init__(self, store):
        self.store = store

    def find_todays_entry(self, table: str, driver_id: int, today: Optional[date] = None) -> Optional[Dict[str, Any]]:
        today = today or get_operating_date()
        rows = self.store.query(table, {'driver_id': driver_id, 'log_date': today})
        return rows[0] if rows else None

    def check_duplicate_entry(self, table: str, driver_id: int, today: Optional[date] = None) -> bool:
        if self.find_todays_entry(table, driver_id, today) is not None:
            logger.info(f"Duplicate {table} submission rejected for driver {driver_id}")
            raise DuplicateEntryError('log_date', DUPLICATE_MESSAGES[table])
        return True

    def check_vehicle_availability(self, vehicle_id: int, driver_id: Optional[int] = None,
                                   today: Optional[date] = None) -> VehicleAvailability:
        """A vehicle is unavailable once another driver has logged today's SOD against it"""
        today = today or get_operating_date()
        for row in self.store.query(SOD_TABLE, {'vehicle_id': vehicle_id, 'log_date': today}):
            if row['driver_id'] != driver_id:
                return VehicleAvailability(vehicle_id, False, row['driver_id'])
        return VehicleAvailability(vehicle_id, True)

    def require_vehicle_available(self, vehicle_id: int, driver_id: int, today: Optional[date] = None) -> bool:
        availability = self.check_vehicle_availability(vehicle_id, driver_id, today)
        if not availability.available:
            raise ValidationError('vehicle_id', 'Vehicle is already in use today by another driver')
        return True

    def check_parcel_counts(self, sod: Optional[Dict[str, Any]], delivered_count: int) -> RuleResult:
        result = RuleResult()
        if sod is None:
            result.warnings.append('No start of day log found for today; parcel count cross-check skipped')
            return result

        start_count = sod['parcel_count']
        try:
            validate_parcel_delivery_logic(start_count, delivered_count)
        except ValidationError as e:
            result.add_error(e.message)
            return result

        undelivered = start_count - delivered_count
        if undelivered > 0:
            result.warnings.append(f"{undelivered} parcels remain undelivered")
        return result

    def check_vehicle_exclusivity(self, vehicle: Dict[str, Any], driver_id: int) -> bool:
        if not vehicle.get('is_active'):
            raise ValidationError('vehicle_id', 'Vehicle is not active')
        holder = vehicle.get('assigned_driver_id')
        if holder is not None and holder != driver_id:
            raise ValidationError('vehicle_id', 'Vehicle is already assigned to another driver')
        return True
