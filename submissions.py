"""
Typed submissions.

Every payload that enters the workflow is parsed once into one of these
dataclasses by the validation service. Downstream services take the typed
value and never re-validate it.
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, BinaryIO, Dict, List, Optional


class VehicleCheckItem(Enum):
    LIGHTS = 'lights'
    TYRES = 'tyres'
    BRAKES = 'brakes'
    MIRRORS = 'mirrors'
    FUEL = 'fuel'
    CLEANLINESS = 'cleanliness'
    DOCUMENTATION = 'documentation'

    @classmethod
    def names(cls) -> List[str]:
        return [item.value for item in cls]


@dataclass
class FileDescriptor:
    """An uploaded file as the validators see it: name, size and declared type."""
    name: str
    size: int
    content_type: str
    stream: Optional[BinaryIO] = field(default=None, repr=False, compare=False)

    @property
    def extension(self) -> str:
        return self.name.rsplit('.', 1)[-1].lower() if '.' in self.name else ''

    @property
    def has_content(self) -> bool:
        """False for metadata-only descriptors, as sent to /validate"""
        return self.stream is not None

    def read(self) -> bytes:
        if self.stream is None:
            return b''
        self.stream.seek(0)
        return self.stream.read()

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'size': self.size, 'type': self.content_type}


class Submission:
    """Common serialization for the submission dataclasses"""

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        # fields() rather than asdict(): upload streams must not be deep-copied
        for column in fields(self):
            value = getattr(self, column.name)
            if isinstance(value, FileDescriptor):
                value = value.to_dict()
            elif isinstance(value, list) and value and isinstance(value[0], FileDescriptor):
                value = [item.to_dict() for item in value]
            elif isinstance(value, dict):
                value = dict(value)
            elif isinstance(value, (date, datetime)):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            data[column.name] = value
        return data


@dataclass
class StartOfDaySubmission(Submission):
    parcel_count: int
    starting_mileage: int
    van_confirmed: bool
    vehicle_check_completed: bool
    notes: Optional[str] = None
    vehicle_check_items: Optional[Dict[str, bool]] = None
    log_date: Optional[date] = None


@dataclass
class EndOfDaySubmission(Submission):
    parcels_delivered: int
    screenshot: Optional[FileDescriptor] = None
    issues_reported: Optional[str] = None
    log_date: Optional[date] = None


@dataclass
class OnboardingSubmission(Submission):
    first_name: str
    last_name: str
    email: str
    driving_license_number: str
    license_expiry: date
    phone: Optional[str] = None
    employee_id: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None


@dataclass
class InvitationSubmission(Submission):
    email: str
    first_name: str
    last_name: str
    company_id: str
    hourly_rate: Optional[float] = None
    parcel_rate: Optional[float] = None


@dataclass
class IncidentSubmission(Submission):
    incident_type: str
    description: str
    incident_date: datetime
    location: Optional[str] = None
    photos: List[FileDescriptor] = field(default_factory=list)


@dataclass
class FileUploadSubmission(Submission):
    file: FileDescriptor
    document_type: str


@dataclass
class VehicleCheckSubmission(Submission):
    exterior_condition: Optional[str] = None
    interior_condition: Optional[str] = None
    fuel_level: Optional[int] = None
    mileage: Optional[int] = None
    issues_reported: Optional[str] = None
    photos: List[FileDescriptor] = field(default_factory=list)
    log_date: Optional[date] = None
