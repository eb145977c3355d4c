"""
Audit Service

Audit trail for every state-changing workflow operation. Details are
redacted with AuditDataSanitizer before they are stored. A failure to
write the trail is logged and never fails the operation being audited.
"""

from typing import Optional, Dict, Any, List
import logging
from flask import request, has_request_context
from utils.security import AuditDataSanitizer
from .errors import StoreError

logger = logging.getLogger(__name__)

AUDIT_TABLE = 'audit_logs'


class AuditService:
    """Service class for centralized audit logging"""

    def __init__(self, store):
        self.store = store

    def log_action(self, action: str,
                   actor: str,
                   entity_type: Optional[str] = None,
                   entity_id: Optional[int] = None,
                   details: Optional[Dict[str, Any]] = None) -> bool:
        """
        Record an audit event.

        Args:
            action: Action performed (e.g., 'submit_sod', 'change_status')
            actor: Who performed it (e.g., 'driver:12', 'admin')
            entity_type: Type of entity affected (e.g., 'driver', 'sod_log')
            entity_id: ID of the affected entity
            details: Additional details; sensitive keys are redacted

        Returns:
            bool: True if logging successful, False otherwise
        """
        record = {
            'actor': actor,
            'action': action,
            'entity_type': entity_type,
            'entity_id': entity_id,
            'details': AuditDataSanitizer.sanitize_json_data(details) if details else None,
        }

        # Capture request context if available
        if has_request_context():
            record['ip_address'] = AuditDataSanitizer.mask_ip_address(request.remote_addr or '')
            record['user_agent'] = request.headers.get('User-Agent', '')[:255]

        try:
            self.store.insert(AUDIT_TABLE, record)
        except StoreError as e:
            logger.error(f"Error logging audit action '{action}': {e.detail}")
            return False

        logger.debug(f"Audit logged: {action} by {actor}")
        return True

    def get_entity_history(self, entity_type: str, entity_id: int) -> List[Dict[str, Any]]:
        """Audit entries for one entity, newest first"""
        rows = self.store.query(AUDIT_TABLE, {'entity_type': entity_type, 'entity_id': entity_id})
        return list(reversed(rows))
