"""
Vehicle Service

Handles vehicle assignment and availability. A vehicle holds at most one
driver at a time; the unique column on vehicles.assigned_driver_id backs
the exclusivity pre-check.
"""

from typing import Optional, Dict, Any, List
import logging
from datetime import date

from models import DriverStatus
from timezone_utils import get_operating_date, get_operating_time_naive
from .audit_service import AuditService
from .business_rules import BusinessRuleService
from .errors import ValidationError, NotFoundError, StoreError
from .record_store import RecordStore
from .workflow_gate import TERMINAL_STATUSES, to_status

logger = logging.getLogger(__name__)

DRIVERS = 'drivers'
VEHICLES = 'vehicles'


class VehicleService:
    """Service class for vehicle assignment operations"""

    def __init__(self, store: Optional[RecordStore] = None):
        self.store = store or RecordStore()
        self.rules = BusinessRuleService(self.store)
        self.audit_service = AuditService(self.store)

    def get_vehicle(self, vehicle_id: int) -> Dict[str, Any]:
        vehicle = self.store.get(VEHICLES, vehicle_id)
        if vehicle is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found")
        return vehicle

    def get_available_vehicles(self, company_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active vehicles with no driver assigned"""
        filters = {'is_active': True, 'assigned_driver_id': None}
        if company_id:
            filters['company_id'] = company_id
        vehicles = self.store.query(VEHICLES, filters)
        return sorted(vehicles, key=lambda vehicle: vehicle['registration_number'])

    def get_availability(self, vehicle_id: int, today: Optional[date] = None) -> Dict[str, Any]:
        """Whether anyone has already started a day in this vehicle"""
        vehicle = self.get_vehicle(vehicle_id)
        availability = self.rules.check_vehicle_availability(vehicle_id, today=today or get_operating_date())
        result = availability.to_dict()
        result['assigned_driver_id'] = vehicle['assigned_driver_id']
        result['is_active'] = vehicle['is_active']
        return result

    def assign_vehicle(self, vehicle_id: int, driver_id: int, assigned_by: str) -> Dict[str, Any]:
        """
        Assign a vehicle to a driver, releasing any vehicle the driver held before.

        Returns:
            dict: the updated vehicle
        """
        vehicle = self.get_vehicle(vehicle_id)
        driver = self.store.get(DRIVERS, driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found")

        if to_status(driver['status']) in TERMINAL_STATUSES:
            raise ValidationError('driver_id', f"Cannot assign a vehicle to a {driver['status']} driver")

        self.rules.check_vehicle_exclusivity(vehicle, driver_id)
        if vehicle['assigned_driver_id'] == driver_id:
            return vehicle

        # Release, claim and link commit together
        changes = []
        previous_vehicle_id = driver['assigned_vehicle_id']
        if previous_vehicle_id and previous_vehicle_id != vehicle_id:
            changes.append((VEHICLES, previous_vehicle_id, {'assigned_driver_id': None, 'assigned_at': None}))
        changes.append((VEHICLES, vehicle_id, {
            'assigned_driver_id': driver_id,
            'assigned_at': get_operating_time_naive(),
        }))
        changes.append((DRIVERS, driver_id, {'assigned_vehicle_id': vehicle_id}))

        try:
            updated = self.store.update_many(changes)[-2]
        except StoreError as e:
            if e.constraint_violation:
                raise ValidationError('vehicle_id', 'Vehicle is already assigned to another driver')
            raise

        self.audit_service.log_action(
            action='assign_vehicle',
            actor=assigned_by,
            entity_type='vehicle',
            entity_id=vehicle_id,
            details={'driver_id': driver_id, 'previous_vehicle_id': previous_vehicle_id}
        )
        logger.info(f"Vehicle {vehicle['registration_number']} assigned to driver {driver_id} by {assigned_by}")
        return updated

    def unassign_vehicle(self, vehicle_id: int, unassigned_by: str) -> Dict[str, Any]:
        vehicle = self.get_vehicle(vehicle_id)
        driver_id = vehicle['assigned_driver_id']
        if driver_id is None:
            return vehicle

        changes = [(VEHICLES, vehicle_id, {'assigned_driver_id': None, 'assigned_at': None})]
        driver = self.store.get(DRIVERS, driver_id)
        if driver and driver['assigned_vehicle_id'] == vehicle_id:
            changes.append((DRIVERS, driver_id, {'assigned_vehicle_id': None}))
        updated = self.store.update_many(changes)[0]

        self.audit_service.log_action(
            action='unassign_vehicle',
            actor=unassigned_by,
            entity_type='vehicle',
            entity_id=vehicle_id,
            details={'driver_id': driver_id}
        )
        logger.info(f"Vehicle {vehicle['registration_number']} released from driver {driver_id}")
        return updated
