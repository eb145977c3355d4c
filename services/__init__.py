"""
Service Layer Architecture

Business logic for the driver daily workflow, kept out of the route
handlers. Routes parse the request, call one service method and map the
result (or a services.errors exception) onto a JSON response.

Services Architecture:
- **validation_service**: Schema validation for every submission kind
- **business_rules / workflow_gate**: Cross-record rules and action gating
- **DailyLogService**: Start-of-day / end-of-day submissions and admin edits
- **DriverService**: Invitation, onboarding, documents, lifecycle status
- **VehicleService**: Vehicle assignment and availability
- **IncidentService**: Incident reports
- **VehicleCheckService**: Daily vehicle checks
- **ReportingService**: Daily report and CSV export
- **RecordStore / FileStore / NotificationService**: Storage and email adapters
- **AuditService**: Audit trail
"""

from .record_store import RecordStore
from .file_service import FileStore
from .notification_service import NotificationService
from .audit_service import AuditService
from .daily_log_service import DailyLogService
from .driver_service import DriverService
from .vehicle_service import VehicleService
from .incident_service import IncidentService
from .vehicle_check_service import VehicleCheckService
from .reporting_service import ReportingService
from .transaction_helper import TransactionHelper

__all__ = [
    'RecordStore',
    'FileStore',
    'NotificationService',
    'AuditService',
    'DailyLogService',
    'DriverService',
    'VehicleService',
    'IncidentService',
    'VehicleCheckService',
    'ReportingService',
    'TransactionHelper'
]
