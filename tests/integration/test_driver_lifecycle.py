"""
Integration tests for invitation, onboarding, status changes, vehicles and incidents
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app import db
from models import Driver, Vehicle, DriverStatus, IncidentReport
from services import DriverService, VehicleService, IncidentService, ReportingService, DailyLogService
from services.errors import ValidationError, DuplicateEntryError, ActionNotPermitted, NotFoundError, StoreError
from services.record_store import RecordStore
from timezone_utils import get_operating_date
from tests.factories import (COMPANY_ID, PDF_BYTES, PNG_BYTES, DriverFactory, VehicleFactory,
                             sod_payload, eod_payload)


def invitation(**overrides):
    payload = {
        'email': 'Priya.Shah@FleetMail.co.uk',
        'first_name': 'Priya',
        'last_name': 'Shah',
        'company_id': COMPANY_ID,
        'parcel_rate': 0.65,
    }
    payload.update(overrides)
    return payload


def onboarding(**overrides):
    payload = {
        'first_name': 'Priya',
        'last_name': 'Shah',
        'email': 'priya.shah@fleetmail.co.uk',
        'phone': '+447700900456',
        'driving_license_number': 'SHAHP902034PS8AB',
        'license_expiry': (get_operating_date() + timedelta(days=700)).isoformat(),
        'emergency_contact_name': 'Ravi Shah',
        'emergency_contact_phone': '+447700900789',
    }
    payload.update(overrides)
    return payload


def document(document_type, name='scan.pdf', content=PDF_BYTES, content_type='application/pdf'):
    return {
        'document_type': document_type,
        'file': {'name': name, 'size': len(content), 'type': content_type, 'content': content},
    }


class TestInvitation:

    def test_invite_driver(self, db_session, outbox):
        driver, email_sent = DriverService().invite_driver(invitation(), invited_by='admin:ops')

        assert email_sent is True
        assert driver['email'] == 'priya.shah@fleetmail.co.uk'
        assert driver['status'] == 'invited'
        assert driver['requires_onboarding'] is True
        assert driver['credentials_sent_at'] is not None
        assert 'password_hash' not in driver

        message = outbox.messages[0]['json']
        assert message['to'] == ['priya.shah@fleetmail.co.uk']
        assert 'Temporary Password' in message['html']

    def test_duplicate_email(self, db_session):
        service = DriverService()
        service.invite_driver(invitation(), invited_by='admin:ops')

        with pytest.raises(DuplicateEntryError) as exc:
            service.invite_driver(invitation(first_name='Other'), invited_by='admin:ops')
        assert exc.value.field == 'email'

    def test_email_failure_keeps_driver(self, db_session, outbox):
        outbox.fail = True
        driver, email_sent = DriverService().invite_driver(invitation(), invited_by='admin:ops')

        assert email_sent is False
        assert driver['credentials_sent_at'] is None
        assert db.session.get(Driver, driver['id']) is not None

    def test_resend_credentials_rotates_password(self, invited_driver, outbox):
        old_hash = invited_driver.password_hash

        assert DriverService().resend_credentials(invited_driver.id, requested_by='admin:ops') is True

        db.session.refresh(invited_driver)
        assert invited_driver.password_hash != old_hash
        assert len(outbox.messages) == 1


class TestOnboarding:

    def test_documents_required_first(self, invited_driver):
        with pytest.raises(ValidationError) as exc:
            DriverService().complete_onboarding(invited_driver.id, onboarding())
        assert exc.value.field == 'driving_license_document'

    def test_full_onboarding(self, invited_driver):
        service = DriverService()
        licence = service.upload_document(invited_driver.id, document('driving_license', 'licence.pdf'))
        service.upload_document(invited_driver.id, document('right_to_work', 'share-code.png',
                                                            PNG_BYTES, 'image/png'))

        assert licence['path'].startswith(f"{invited_driver.id}/documents/licence_")

        driver = service.complete_onboarding(invited_driver.id, onboarding())

        assert driver['status'] == 'pending'
        assert driver['requires_onboarding'] is False
        assert driver['onboarding_complete'] is True
        assert driver['driving_license_number'] == 'SHAHP902034PS8AB'

        with pytest.raises(ActionNotPermitted) as exc:
            service.complete_onboarding(invited_driver.id, onboarding())
        assert exc.value.message == 'Onboarding already completed'

    def test_email_taken_by_another_driver(self, invited_driver):
        other = DriverFactory()
        with pytest.raises(DuplicateEntryError):
            DriverService().complete_onboarding(invited_driver.id, onboarding(email=other.email))

    def test_malicious_document_rejected(self, invited_driver):
        with pytest.raises(ValidationError) as exc:
            DriverService().upload_document(invited_driver.id, document('insurance', 'policy.pdf',
                                                                        b'<script>alert(1)</script>'))
        assert exc.value.field == 'file'

    def test_document_needs_file_content(self, invited_driver):
        payload = {'document_type': 'driving_license',
                   'file': {'name': 'licence.pdf', 'size': 2048, 'type': 'application/pdf'}}
        with pytest.raises(ValidationError) as exc:
            DriverService().upload_document(invited_driver.id, payload)

        assert exc.value.message == 'Document file must be uploaded'
        assert db.session.get(Driver, invited_driver.id).driving_license_document is None

    def test_unknown_driver(self, db_session):
        with pytest.raises(NotFoundError):
            DriverService().complete_onboarding(999, onboarding())


class TestStatusChanges:

    def test_approve_onboarded_driver(self, db_session, outbox):
        driver = DriverFactory(status=DriverStatus.PENDING)

        updated = DriverService().change_status(driver.id, 'active', changed_by='admin:ops')

        assert updated['status'] == 'active'
        assert 'now active' in outbox.messages[-1]['json']['subject']

    def test_cannot_activate_before_onboarding(self, db_session):
        driver = DriverFactory(status=DriverStatus.PENDING, requires_onboarding=True)
        with pytest.raises(ValidationError) as exc:
            DriverService().change_status(driver.id, 'active', changed_by='admin:ops')
        assert exc.value.message == 'Driver must complete onboarding before activation'

    def test_invalid_transition(self, invited_driver):
        with pytest.raises(ActionNotPermitted) as exc:
            DriverService().change_status(invited_driver.id, 'active', changed_by='admin:ops')
        assert exc.value.message == 'Cannot change driver status from invited to active'

    def test_termination_releases_vehicle(self, driver, vehicle):
        service = DriverService()
        service.change_status(driver.id, 'suspended', changed_by='admin:ops', reason='Licence check')
        updated = service.change_status(driver.id, 'terminated', changed_by='admin:ops')

        assert updated['assigned_vehicle_id'] is None
        db.session.refresh(vehicle)
        assert vehicle.assigned_driver_id is None

        with pytest.raises(ActionNotPermitted):
            service.change_status(driver.id, 'active', changed_by='admin:ops')

    def test_failed_termination_keeps_vehicle_link(self, driver, vehicle, monkeypatch):
        service = DriverService()
        service.change_status(driver.id, 'suspended', changed_by='admin:ops')

        real_apply = RecordStore._apply

        def driver_write_fails(store, table, key, patch):
            if table == 'drivers':
                raise IntegrityError('UPDATE drivers', {}, Exception('CHECK constraint failed'))
            return real_apply(store, table, key, patch)

        monkeypatch.setattr(RecordStore, '_apply', driver_write_fails)
        with pytest.raises(StoreError):
            service.change_status(driver.id, 'terminated', changed_by='admin:ops')

        assert db.session.get(Vehicle, vehicle.id).assigned_driver_id == driver.id
        assert db.session.get(Driver, driver.id).status is DriverStatus.SUSPENDED

    def test_suspended_driver_cannot_log(self, driver):
        DriverService().change_status(driver.id, 'suspended', changed_by='admin:ops')
        with pytest.raises(ActionNotPermitted) as exc:
            DailyLogService().submit_start_of_day(driver.id, sod_payload())
        assert exc.value.message == 'Driver account is suspended'


class TestVehicleAssignment:

    def test_assign_and_reassign(self, db_session):
        driver = DriverFactory()
        first, second = VehicleFactory(), VehicleFactory()
        service = VehicleService()

        service.assign_vehicle(first.id, driver.id, assigned_by='admin:ops')
        updated = service.assign_vehicle(second.id, driver.id, assigned_by='admin:ops')

        assert updated['assigned_driver_id'] == driver.id
        assert db.session.get(Vehicle, first.id).assigned_driver_id is None
        assert db.session.get(Driver, driver.id).assigned_vehicle_id == second.id

    def test_failed_reassignment_keeps_previous_vehicle(self, db_session, monkeypatch):
        driver = DriverFactory()
        first, second = VehicleFactory(), VehicleFactory()
        service = VehicleService()
        service.assign_vehicle(first.id, driver.id, assigned_by='admin:ops')

        real_apply = RecordStore._apply

        def claim_fails(store, table, key, patch):
            if table == 'vehicles' and key == second.id:
                raise IntegrityError('UPDATE vehicles', {},
                                     Exception('UNIQUE constraint failed: vehicles.assigned_driver_id'))
            return real_apply(store, table, key, patch)

        monkeypatch.setattr(RecordStore, '_apply', claim_fails)
        with pytest.raises(ValidationError) as exc:
            service.assign_vehicle(second.id, driver.id, assigned_by='admin:ops')

        assert exc.value.message == 'Vehicle is already assigned to another driver'
        assert db.session.get(Vehicle, first.id).assigned_driver_id == driver.id
        assert db.session.get(Vehicle, second.id).assigned_driver_id is None
        assert db.session.get(Driver, driver.id).assigned_vehicle_id == first.id

    def test_vehicle_held_by_another_driver(self, driver, vehicle):
        other = DriverFactory()
        with pytest.raises(ValidationError) as exc:
            VehicleService().assign_vehicle(vehicle.id, other.id, assigned_by='admin:ops')
        assert exc.value.message == 'Vehicle is already assigned to another driver'

    def test_inactive_vehicle(self, db_session):
        van = VehicleFactory(is_active=False)
        with pytest.raises(ValidationError):
            VehicleService().assign_vehicle(van.id, DriverFactory().id, assigned_by='admin:ops')

    def test_available_vehicles(self, driver, vehicle):
        spare = VehicleFactory()
        VehicleFactory(is_active=False)

        available = VehicleService().get_available_vehicles(company_id=COMPANY_ID)
        assert [row['id'] for row in available] == [spare.id]

    def test_unassign(self, driver, vehicle):
        VehicleService().unassign_vehicle(vehicle.id, unassigned_by='admin:ops')
        assert db.session.get(Driver, driver.id).assigned_vehicle_id is None

    def test_availability_reflects_todays_sod(self, driver, vehicle):
        service = VehicleService()
        assert service.get_availability(vehicle.id)['available'] is True

        DailyLogService().submit_start_of_day(driver.id, sod_payload())
        availability = service.get_availability(vehicle.id)
        assert availability['available'] is False
        assert availability['held_by_driver_id'] == driver.id


class TestIncidents:

    def incident(self, **overrides):
        payload = {
            'incident_type': 'accident',
            'description': 'Reversed into a bollard at the depot gate',
            'incident_date': '2026-10-18T07:45:00Z',
            'location': 'Park Royal depot',
        }
        payload.update(overrides)
        return payload

    def test_report_with_photo(self, driver):
        photo = {'name': 'bumper.jpg', 'size': len(PNG_BYTES), 'type': 'image/jpeg', 'content': PNG_BYTES}
        incident = IncidentService().report_incident(driver.id, self.incident(photos=[photo]))

        assert incident['incident_type'] == 'accident'
        assert len(incident['photo_paths']) == 1
        assert incident['photo_paths'][0].startswith(f"{driver.id}/photos/bumper_")
        # 07:45 UTC is 08:45 in London during summer time
        assert incident['incident_date'] == '2026-10-18T08:45:00'

    def test_photo_metadata_alone_is_rejected(self, driver):
        photo = {'name': 'bumper.jpg', 'size': 2048, 'type': 'image/jpeg'}
        with pytest.raises(ValidationError) as exc:
            IncidentService().report_incident(driver.id, self.incident(photos=[photo]))

        assert exc.value.field == 'photos'
        assert db.session.scalar(db.select(db.func.count()).select_from(IncidentReport)) == 0

    def test_not_onboarded(self, invited_driver):
        with pytest.raises(ActionNotPermitted):
            IncidentService().report_incident(invited_driver.id, self.incident())
        assert db.session.scalar(db.select(db.func.count()).select_from(IncidentReport)) == 0

    def test_list_incidents(self, driver):
        service = IncidentService()
        service.report_incident(driver.id, self.incident())
        service.report_incident(driver.id, self.incident(incident_type='theft'))

        assert [row['incident_type'] for row in service.list_incidents(driver.id)] == ['accident', 'theft']


class TestDailyReport:

    def test_report_covers_logged_and_idle_drivers(self, driver):
        idle = DriverFactory()
        logs = DailyLogService()
        logs.submit_start_of_day(driver.id, sod_payload(parcel_count=100))
        logs.submit_end_of_day(driver.id, eod_payload(parcels_delivered=100))

        report = ReportingService().get_daily_report(company_id=COMPANY_ID)

        rows = {row['driver_id']: row for row in report['rows']}
        assert rows[driver.id]['delivery_rate'] == 100.0
        assert rows[driver.id]['pay'] == 110.0
        assert rows[idle.id]['sod_completed'] is False
        assert report['summary']['eod_completed'] == 1
