"""
Driver Service

Handles the driver lifecycle: invitation and credentials, onboarding
completion, document uploads and admin status changes. Status changes
follow the state machine in workflow_gate.
"""

from typing import Optional, Dict, Any, Tuple
import logging
import secrets
import string
from datetime import date
from werkzeug.security import generate_password_hash

from models import DriverStatus, DocumentType
from timezone_utils import get_operating_date, get_operating_time_naive
from .audit_service import AuditService
from .errors import ValidationError, DuplicateEntryError, NotFoundError, StoreError
from .file_service import FileStore
from .notification_service import NotificationService
from .record_store import RecordStore
from .validation_service import validate_invitation, validate_onboarding, validate_file_upload
from .workflow_gate import WorkflowGate, Action, TERMINAL_STATUSES, to_status
from .business_rules import BusinessRuleService

logger = logging.getLogger(__name__)

DRIVERS = 'drivers'
VEHICLES = 'vehicles'
DOCUMENT_FOLDER = 'documents'

# Document type -> driver column holding its storage path
DOCUMENT_COLUMNS = {
    DocumentType.DRIVING_LICENSE.value: 'driving_license_document',
    DocumentType.RIGHT_TO_WORK.value: 'right_to_work_document',
    DocumentType.INSURANCE.value: 'insurance_document',
}

TEMP_PASSWORD_LENGTH = 12


def generate_temp_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    alphabet = string.ascii_letters + string.digits
    while True:
        password = ''.join(secrets.choice(alphabet) for _ in range(length))
        if any(c.islower() for c in password) and any(c.isupper() for c in password) \
                and any(c.isdigit() for c in password):
            return password


class DriverService:
    """Service class for driver management operations"""

    def __init__(self, store: Optional[RecordStore] = None, file_store: Optional[FileStore] = None,
                 notifier: Optional[NotificationService] = None):
        self.store = store or RecordStore()
        self.file_store = file_store or FileStore()
        self.notifier = notifier or NotificationService()
        self.gate = WorkflowGate(BusinessRuleService(self.store))
        self.audit_service = AuditService(self.store)

    def get_driver(self, driver_id: int) -> Dict[str, Any]:
        driver = self.store.get(DRIVERS, driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found")
        return driver

    def invite_driver(self, payload: Any, invited_by: str) -> Tuple[Dict[str, Any], bool]:
        """
        Create an invited driver and email their temporary credentials.

        Returns:
            tuple: (driver: dict, email_sent: bool)
        """
        invitation = validate_invitation(payload)

        if self.store.query(DRIVERS, {'email': invitation.email}):
            raise DuplicateEntryError('email', 'A driver with this email already exists')

        temp_password = generate_temp_password()
        try:
            driver_id = self.store.insert(DRIVERS, {
                'company_id': invitation.company_id,
                'email': invitation.email,
                'first_name': invitation.first_name,
                'last_name': invitation.last_name,
                'hourly_rate': invitation.hourly_rate,
                'parcel_rate': invitation.parcel_rate or 0.0,
                'status': DriverStatus.INVITED,
                'requires_onboarding': True,
                'first_login_completed': False,
                'password_hash': generate_password_hash(temp_password),
            })['id']
        except StoreError as e:
            if e.constraint_violation:
                raise DuplicateEntryError('email', 'A driver with this email already exists')
            raise

        self.audit_service.log_action(
            action='invite_driver',
            actor=invited_by,
            entity_type='driver',
            entity_id=driver_id,
            details={'email': invitation.email, 'company_id': invitation.company_id}
        )
        logger.info(f"Driver {driver_id} invited by {invited_by}")

        email_sent = self._send_credentials(driver_id, temp_password)
        return self.get_driver(driver_id), email_sent

    def resend_credentials(self, driver_id: int, requested_by: str) -> bool:
        """Issue a fresh temporary password and email it"""
        driver = self.get_driver(driver_id)
        if to_status(driver['status']) in TERMINAL_STATUSES:
            raise ValidationError('status', f"Cannot send credentials to a {driver['status']} driver")

        temp_password = generate_temp_password()
        self.store.update(DRIVERS, driver_id, {'password_hash': generate_password_hash(temp_password)})
        self.audit_service.log_action(
            action='resend_credentials',
            actor=requested_by,
            entity_type='driver',
            entity_id=driver_id
        )
        return self._send_credentials(driver_id, temp_password)

    def _send_credentials(self, driver_id: int, temp_password: str) -> bool:
        driver = self.get_driver(driver_id)
        sent, error = self.notifier.send(driver['email'], 'driver_credentials', {
            'first_name': driver['first_name'],
            'email': driver['email'],
            'temp_password': temp_password,
        })
        if sent:
            self.store.update(DRIVERS, driver_id, {'credentials_sent_at': get_operating_time_naive()})
        else:
            logger.warning(f"Credentials email for driver {driver_id} not sent: {error}")
        return sent

    def complete_onboarding(self, driver_id: int, payload: Any,
                            today: Optional[date] = None) -> Dict[str, Any]:
        """
        Save the validated onboarding profile and close out onboarding.
        Driving licence and right-to-work documents must already be uploaded.
        """
        submission = validate_onboarding(payload, today=today or get_operating_date())
        driver = self.get_driver(driver_id)
        self.gate.require(driver, Action.COMPLETE_ONBOARDING)

        if submission.email != driver['email']:
            clash = [row for row in self.store.query(DRIVERS, {'email': submission.email})
                     if row['id'] != driver_id]
            if clash:
                raise DuplicateEntryError('email', 'A driver with this email already exists')

        for document_type in (DocumentType.DRIVING_LICENSE, DocumentType.RIGHT_TO_WORK):
            if not driver.get(DOCUMENT_COLUMNS[document_type.value]):
                label = document_type.value.replace('_', ' ')
                raise ValidationError(DOCUMENT_COLUMNS[document_type.value],
                                      f"Upload your {label} document before completing onboarding")

        patch = {
            'first_name': submission.first_name,
            'last_name': submission.last_name,
            'email': submission.email,
            'phone': submission.phone,
            'driving_license_number': submission.driving_license_number,
            'license_expiry': submission.license_expiry,
            'employee_id': submission.employee_id,
            'emergency_contact_name': submission.emergency_contact_name,
            'emergency_contact_phone': submission.emergency_contact_phone,
            'requires_onboarding': False,
            'first_login_completed': True,
            'onboarding_completed_at': get_operating_time_naive(),
        }
        if to_status(driver['status']) is DriverStatus.INVITED:
            patch['status'] = DriverStatus.PENDING

        updated = self.store.update(DRIVERS, driver_id, patch)
        self.audit_service.log_action(
            action='complete_onboarding',
            actor=f'driver:{driver_id}',
            entity_type='driver',
            entity_id=driver_id,
            details={'status': updated['status']}
        )
        logger.info(f"Driver {driver_id} completed onboarding")
        return updated

    def upload_document(self, driver_id: int, payload: Any) -> Dict[str, Any]:
        """Validate, store and link a driver document"""
        upload = validate_file_upload(payload)
        driver = self.get_driver(driver_id)
        if to_status(driver['status']) in TERMINAL_STATUSES:
            raise ValidationError('status', f"Cannot upload documents for a {driver['status']} driver")
        if not upload.file.has_content:
            raise ValidationError('file', 'Document file must be uploaded')

        stored = self.file_store.upload_file(driver_id, DOCUMENT_FOLDER, upload.file)

        column = DOCUMENT_COLUMNS.get(upload.document_type)
        if column:
            self.store.update(DRIVERS, driver_id, {column: stored['path']})

        self.audit_service.log_action(
            action='upload_document',
            actor=f'driver:{driver_id}',
            entity_type='driver',
            entity_id=driver_id,
            details={'document_type': upload.document_type, 'path': stored['path']}
        )
        return {'document_type': upload.document_type, 'path': stored['path']}

    def change_status(self, driver_id: int, new_status: Any, changed_by: str,
                      reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Admin lifecycle transition. Terminal states release the driver's vehicle.
        """
        driver = self.get_driver(driver_id)
        current = to_status(driver['status'])
        target = to_status(new_status)
        self.gate.require_transition(current, target)

        if target is DriverStatus.ACTIVE and driver['requires_onboarding']:
            raise ValidationError('status', 'Driver must complete onboarding before activation')

        patch = {'status': target}
        changes = []
        vehicle_id = driver['assigned_vehicle_id']
        if target in TERMINAL_STATUSES and vehicle_id:
            changes.append((VEHICLES, vehicle_id, {'assigned_driver_id': None, 'assigned_at': None}))
            patch['assigned_vehicle_id'] = None
        changes.append((DRIVERS, driver_id, patch))

        updated = self.store.update_many(changes)[-1]
        self.audit_service.log_action(
            action='change_status',
            actor=changed_by,
            entity_type='driver',
            entity_id=driver_id,
            details={'from': current.value, 'to': target.value, 'reason': reason,
                     'released_vehicle_id': vehicle_id if 'assigned_vehicle_id' in patch else None}
        )
        logger.info(f"Driver {driver_id} status {current.value} -> {target.value} by {changed_by}")

        self.notifier.send(updated['email'], 'driver_status_changed', {
            'first_name': updated['first_name'],
            'status': target.value,
        })
        return updated
