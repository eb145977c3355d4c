"""
Incident Service

Driver incident reports (accidents, theft, damage, safety). Photos are
stored under the driver's scope in the file store.
"""

from typing import Optional, Dict, Any, List
import logging

from models import IncidentType
from timezone_utils import get_operating_timezone
from .audit_service import AuditService
from .business_rules import BusinessRuleService
from .errors import NotFoundError, ValidationError
from .file_service import FileStore
from .record_store import RecordStore
from .validation_service import validate_incident
from .workflow_gate import WorkflowGate, Action

logger = logging.getLogger(__name__)

INCIDENTS = 'incident_reports'
PHOTO_FOLDER = 'photos'


class IncidentService:
    """Service class for incident reporting"""

    def __init__(self, store: Optional[RecordStore] = None, file_store: Optional[FileStore] = None):
        self.store = store or RecordStore()
        self.file_store = file_store or FileStore()
        self.gate = WorkflowGate(BusinessRuleService(self.store))
        self.audit_service = AuditService(self.store)

    def report_incident(self, driver_id: int, payload: Any) -> Dict[str, Any]:
        submission = validate_incident(payload)

        driver = self.store.get('drivers', driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found")
        self.gate.require(driver, Action.REPORT_INCIDENT)

        if not all(photo.has_content for photo in submission.photos):
            raise ValidationError('photos', 'Incident photos must be uploaded as files')
        photo_paths = [self.file_store.upload_file(driver_id, PHOTO_FOLDER, photo)['path']
                       for photo in submission.photos]

        # Stored naive in operating time, like every other timestamp column
        incident_date = submission.incident_date
        if incident_date.tzinfo is not None:
            incident_date = incident_date.astimezone(get_operating_timezone()).replace(tzinfo=None)
        incident_id = self.store.insert(INCIDENTS, {
            'driver_id': driver_id,
            'company_id': driver['company_id'],
            'incident_type': IncidentType(submission.incident_type),
            'description': submission.description,
            'location': submission.location,
            'incident_date': incident_date,
            'photo_paths': photo_paths,
        })['id']

        self.audit_service.log_action(
            action='report_incident',
            actor=f'driver:{driver_id}',
            entity_type='incident_report',
            entity_id=incident_id,
            details={'incident_type': submission.incident_type, 'photos': len(photo_paths)}
        )
        logger.info(f"Incident {incident_id} ({submission.incident_type}) reported by driver {driver_id}")
        return self.store.get(INCIDENTS, incident_id)

    def list_incidents(self, driver_id: int) -> List[Dict[str, Any]]:
        return self.store.query(INCIDENTS, {'driver_id': driver_id})
