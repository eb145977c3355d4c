"""
Pytest configuration and fixtures for the driver workflow service
"""

import os

import pytest

# Set test environment before importing app
os.environ.update({
    'FLASK_ENV': 'testing',
    'SESSION_SECRET': 'test_secret_key_for_testing_only_0123456789',
    'DATABASE_URL': 'sqlite://',
})

from app import create_app, db
from services import notification_service
from tests.factories import DriverFactory, InvitedDriverFactory, VehicleFactory, Outbox, assign

ADMIN_TOKEN = 'test-admin-token-0123456789abcdef'


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application for testing"""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'ADMIN_API_TOKEN': ADMIN_TOKEN,
        'RESEND_API_KEY': 're_test_key',
        'NOTIFICATION_FROM_ADDRESS': 'Driver Portal <noreply@fleetmail.co.uk>',
        'OPERATING_TIMEZONE': 'Europe/London',
    })

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing"""
    yield db.session
    db.session.rollback()


@pytest.fixture
def admin_headers():
    return {'X-Admin-Token': ADMIN_TOKEN, 'X-Admin-User': 'ops.lead'}


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """No test ever reaches the real email API"""
    outbox = Outbox()
    monkeypatch.setattr(notification_service.requests, 'post', outbox.post)
    return outbox


@pytest.fixture
def vehicle(db_session):
    return VehicleFactory()


@pytest.fixture
def driver(db_session, vehicle):
    """Onboarded, active driver with a vehicle assigned"""
    return assign(DriverFactory(), vehicle)


@pytest.fixture
def invited_driver(db_session):
    return InvitedDriverFactory()
