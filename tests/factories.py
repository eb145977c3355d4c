"""
Test data factories and in-memory doubles shared by the test suites
"""

from collections import defaultdict
from datetime import date, datetime
from enum import Enum

import factory
import requests
from factory import Faker
from werkzeug.security import generate_password_hash

from app import db
from models import Driver, Vehicle, StartOfDayLog, EndOfDayLog, DriverStatus
from timezone_utils import get_operating_date

COMPANY_ID = '3f1c2b7e-8d4a-4e2b-9c1a-5b6d7e8f9a0b'

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64
PDF_BYTES = b'%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n'


class DriverFactory(factory.alchemy.SQLAlchemyModelFactory):
    """An onboarded, active driver with no vehicle"""

    class Meta:
        model = Driver
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    company_id = COMPANY_ID
    email = factory.Sequence(lambda n: f"driver{n}@fleetmail.co.uk")
    first_name = Faker('first_name')
    last_name = factory.Sequence(lambda n: f"Driver{n}")
    password_hash = factory.LazyFunction(lambda: generate_password_hash('Temp1234abcd'))
    driving_license_number = factory.Sequence(lambda n: f"MORGA{n:06d}")
    driving_license_document = factory.Sequence(lambda n: f"{n}/documents/licence_{n}.pdf")
    right_to_work_document = factory.Sequence(lambda n: f"{n}/documents/rtw_{n}.pdf")
    status = DriverStatus.ACTIVE
    requires_onboarding = False
    first_login_completed = True
    parcel_rate = 0.5
    base_daily_rate = 60.0


class InvitedDriverFactory(DriverFactory):
    status = DriverStatus.INVITED
    requires_onboarding = True
    first_login_completed = False
    driving_license_number = None
    driving_license_document = None
    right_to_work_document = None


class VehicleFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = Vehicle
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    company_id = COMPANY_ID
    registration_number = factory.Sequence(lambda n: f"LV23 A{n:03d}")
    make = "Ford"
    model = "Transit Custom"
    is_active = True


class StartOfDayLogFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = StartOfDayLog
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    company_id = COMPANY_ID
    log_date = factory.LazyFunction(get_operating_date)
    parcel_count = 120
    starting_mileage = 45210
    van_confirmed = True
    vehicle_check_completed = True


class EndOfDayLogFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = EndOfDayLog
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"

    company_id = COMPANY_ID
    log_date = factory.LazyFunction(get_operating_date)
    parcels_delivered = 110


def assign(driver, vehicle):
    """Link a driver and vehicle both ways, as VehicleService does"""
    driver.assigned_vehicle_id = vehicle.id
    vehicle.assigned_driver_id = driver.id
    db.session.commit()
    return driver


def sod_payload(**overrides):
    payload = {
        'parcel_count': 120,
        'starting_mileage': 45210,
        'van_confirmed': True,
        'vehicle_check_completed': True,
    }
    payload.update(overrides)
    return payload


def eod_payload(**overrides):
    payload = {
        'parcels_delivered': 110,
        'screenshot': {'name': 'delivery-summary.png', 'type': 'image/png', 'content': PNG_BYTES},
    }
    payload.update(overrides)
    return payload


def driver_row(**overrides):
    """Driver record as the record store returns it"""
    row = {
        'id': 1,
        'company_id': COMPANY_ID,
        'email': 'sam.morgan@fleetmail.co.uk',
        'first_name': 'Sam',
        'last_name': 'Morgan',
        'status': 'active',
        'requires_onboarding': False,
        'first_login_completed': True,
        'driving_license_document': '1/documents/licence.pdf',
        'right_to_work_document': '1/documents/rtw.pdf',
        'assigned_vehicle_id': 7,
        'parcel_rate': 0.5,
        'base_daily_rate': 60.0,
    }
    row.update(overrides)
    return row


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        return self.payload


class Outbox:
    """Captures Resend API calls instead of sending them"""

    def __init__(self):
        self.messages = []
        self.fail = False

    def post(self, url, json=None, headers=None, timeout=None):
        if self.fail:
            raise requests.ConnectionError('Resend API unreachable')
        self.messages.append({'url': url, 'json': json, 'headers': headers, 'timeout': timeout})
        return FakeResponse({'id': f"email_{len(self.messages)}"})


class InMemoryStore:
    """Dict-backed stand-in for RecordStore with the same plain-dict contract"""

    def __init__(self):
        self.tables = defaultdict(dict)
        self._ids = defaultdict(int)

    @staticmethod
    def _plain(value):
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return value

    def insert(self, table, record):
        self._ids[table] += 1
        row = {key: self._plain(value) for key, value in record.items()}
        row.setdefault('id', self._ids[table])
        self.tables[table][row['id']] = row
        return {'id': row['id']}

    def get(self, table, key):
        row = self.tables[table].get(key)
        return dict(row) if row else None

    def query(self, table, filters=None):
        filters = {key: self._plain(value) for key, value in (filters or {}).items()}
        return [dict(row) for _, row in sorted(self.tables[table].items())
                if all(row.get(key) == value for key, value in filters.items())]

    def update(self, table, key, patch):
        row = self.tables[table][key]
        row.update({column: self._plain(value) for column, value in patch.items()})
        return dict(row)

    def update_many(self, changes):
        return [self.update(table, key, patch) for table, key, patch in changes]


def vehicle_check_payload(**overrides):
    payload = {
        'exterior_condition': 'good',
        'interior_condition': 'minor_issues',
        'fuel_level': 75,
        'mileage': 45210,
        'issues_reported': 'Passenger seat belt slow to retract',
    }
    payload.update(overrides)
    return payload
