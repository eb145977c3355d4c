from datetime import datetime, date
from enum import Enum
import uuid
from app import db
from sqlalchemy import Index, CheckConstraint, UniqueConstraint
from sqlalchemy.ext.hybrid import hybrid_property
from timezone_utils import get_operating_time_naive

# Enums for better data integrity
class DriverStatus(Enum):
    INVITED = 'invited'
    PENDING = 'pending'
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    SUSPENDED = 'suspended'
    TERMINATED = 'terminated'
    CANCELLED = 'cancelled'
    REJECTED = 'rejected'

class DocumentType(Enum):
    DRIVING_LICENSE = 'driving_license'
    RIGHT_TO_WORK = 'right_to_work'
    INSURANCE = 'insurance'
    OTHER = 'other'

class IncidentType(Enum):
    ACCIDENT = 'accident'
    THEFT = 'theft'
    DAMAGE = 'damage'
    SAFETY = 'safety'
    OTHER = 'other'

class VehicleCondition(Enum):
    GOOD = 'good'
    MINOR_ISSUES = 'minor_issues'
    MAJOR_ISSUES = 'major_issues'


class SerializableMixin:
    """Flat dict view of a row, the shape the record store hands out"""

    def to_dict(self):
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (datetime, date)):
                value = value.isoformat()
            result[column.key] = value
        return result


class Driver(SerializableMixin, db.Model):
    __tablename__ = 'drivers'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    company_id = db.Column(db.String(36), nullable=False, index=True)
    employee_id = db.Column(db.String(20))

    # Personal Information
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    phone = db.Column(db.String(20))
    emergency_contact_name = db.Column(db.String(100))
    emergency_contact_phone = db.Column(db.String(20))

    # Credentials issued with the invitation
    password_hash = db.Column(db.String(256))
    credentials_sent_at = db.Column(db.DateTime)

    # Licence and documents (storage paths)
    driving_license_number = db.Column(db.String(20))
    license_expiry = db.Column(db.Date)
    driving_license_document = db.Column(db.String(255))
    right_to_work_document = db.Column(db.String(255))
    insurance_document = db.Column(db.String(255))

    # Lifecycle and onboarding
    status = db.Column(db.Enum(DriverStatus), nullable=False, default=DriverStatus.INVITED, index=True)
    requires_onboarding = db.Column(db.Boolean, nullable=False, default=True)
    first_login_completed = db.Column(db.Boolean, nullable=False, default=False)
    onboarding_completed_at = db.Column(db.DateTime)

    # Pay
    parcel_rate = db.Column(db.Float, default=0.0)
    hourly_rate = db.Column(db.Float)
    base_daily_rate = db.Column(db.Float, default=0.0)

    # Current assignment
    assigned_vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id', use_alter=True,
                                                                name='fk_driver_assigned_vehicle'))

    created_at = db.Column(db.DateTime, default=get_operating_time_naive)
    updated_at = db.Column(db.DateTime, default=get_operating_time_naive, onupdate=get_operating_time_naive)

    @hybrid_property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def onboarding_complete(self):
        return bool(not self.requires_onboarding and self.first_login_completed
                    and self.driving_license_document and self.right_to_work_document)

    def to_dict(self):
        data = super().to_dict()
        data.pop('password_hash', None)
        data['onboarding_complete'] = self.onboarding_complete
        return data

    __table_args__ = (
        Index('idx_driver_status_company', 'status', 'company_id'),
    )

    def __repr__(self):
        return f'<Driver {self.full_name}>'


class Vehicle(SerializableMixin, db.Model):
    __tablename__ = 'vehicles'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.String(36), nullable=False, index=True)
    registration_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    make = db.Column(db.String(50))
    model = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # At most one driver at a time
    assigned_driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), unique=True)
    assigned_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=get_operating_time_naive)
    updated_at = db.Column(db.DateTime, default=get_operating_time_naive, onupdate=get_operating_time_naive)

    def __repr__(self):
        return f'<Vehicle {self.registration_number}>'


class StartOfDayLog(SerializableMixin, db.Model):
    __tablename__ = 'sod_logs'

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), nullable=False, index=True)
    company_id = db.Column(db.String(36), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False, index=True)
    log_date = db.Column(db.Date, nullable=False, index=True)

    parcel_count = db.Column(db.Integer, nullable=False)
    starting_mileage = db.Column(db.Integer, nullable=False)
    van_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    vehicle_check_completed = db.Column(db.Boolean, nullable=False, default=False)
    vehicle_check_items = db.Column(db.JSON)
    notes = db.Column(db.String(500))

    # Admin edits
    edited_by = db.Column(db.String(100))
    edited_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=get_operating_time_naive)
    updated_at = db.Column(db.DateTime, default=get_operating_time_naive, onupdate=get_operating_time_naive)

    __table_args__ = (
        # The store is the final word on duplicates; the service pre-check is advisory
        UniqueConstraint('driver_id', 'log_date', name='uq_sod_driver_date'),
        UniqueConstraint('vehicle_id', 'log_date', name='uq_sod_vehicle_date'),
        CheckConstraint('parcel_count >= 0 AND parcel_count <= 9999', name='ck_sod_parcel_count'),
        CheckConstraint('starting_mileage >= 0 AND starting_mileage <= 999999', name='ck_sod_mileage'),
    )


class EndOfDayLog(SerializableMixin, db.Model):
    __tablename__ = 'eod_reports'

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), nullable=False, index=True)
    company_id = db.Column(db.String(36), nullable=False, index=True)
    log_date = db.Column(db.Date, nullable=False, index=True)

    parcels_delivered = db.Column(db.Integer, nullable=False)
    screenshot_path = db.Column(db.String(255))
    screenshot_content_type = db.Column(db.String(100))
    issues_reported = db.Column(db.String(1000))

    edited_by = db.Column(db.String(100))
    edited_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=get_operating_time_naive)
    updated_at = db.Column(db.DateTime, default=get_operating_time_naive, onupdate=get_operating_time_naive)

    __table_args__ = (
        UniqueConstraint('driver_id', 'log_date', name='uq_eod_driver_date'),
        CheckConstraint('parcels_delivered >= 0', name='ck_eod_parcels_delivered'),
    )


class VehicleCheck(SerializableMixin, db.Model):
    """Daily walk-round inspection of the driver's assigned vehicle"""
    __tablename__ = 'vehicle_checks'

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), nullable=False, index=True)
    company_id = db.Column(db.String(36), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False, index=True)
    log_date = db.Column(db.Date, nullable=False, index=True)

    exterior_condition = db.Column(db.Enum(VehicleCondition))
    interior_condition = db.Column(db.Enum(VehicleCondition))
    fuel_level = db.Column(db.Integer)
    mileage = db.Column(db.Integer)
    issues_reported = db.Column(db.String(1000))
    photo_paths = db.Column(db.JSON)
    status = db.Column(db.String(20), nullable=False, default='completed')

    created_at = db.Column(db.DateTime, default=get_operating_time_naive)

    __table_args__ = (
        UniqueConstraint('driver_id', 'log_date', name='uq_vehicle_check_driver_date'),
        CheckConstraint('fuel_level >= 0 AND fuel_level <= 100', name='ck_vehicle_check_fuel'),
        CheckConstraint('mileage >= 0', name='ck_vehicle_check_mileage'),
    )


class IncidentReport(SerializableMixin, db.Model):
    __tablename__ = 'incident_reports'

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('drivers.id'), nullable=False, index=True)
    company_id = db.Column(db.String(36), nullable=False, index=True)
    incident_type = db.Column(db.Enum(IncidentType), nullable=False)
    description = db.Column(db.String(2000), nullable=False)
    location = db.Column(db.String(200))
    incident_date = db.Column(db.DateTime, nullable=False)
    photo_paths = db.Column(db.JSON)

    created_at = db.Column(db.DateTime, default=get_operating_time_naive, index=True)


class AuditLog(SerializableMixin, db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor = db.Column(db.String(100), nullable=False, index=True)

    # Action details
    action = db.Column(db.String(100), nullable=False, index=True)
    entity_type = db.Column(db.String(50), index=True)
    entity_id = db.Column(db.Integer)

    details = db.Column(db.JSON)

    # Request context
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=get_operating_time_naive, index=True)

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
