"""
Integration tests for the start-of-day / end-of-day workflow against the database
"""

import io
import os
from datetime import timedelta

import pytest

from app import db
from models import StartOfDayLog, EndOfDayLog, VehicleCheck, AuditLog
from services import DailyLogService, VehicleService, VehicleCheckService, AuditService, RecordStore
from services.errors import ValidationError, DuplicateEntryError, ActionNotPermitted
from submissions import FileDescriptor
from timezone_utils import get_operating_date
from tests.factories import (DriverFactory, VehicleFactory, StartOfDayLogFactory,
                             EndOfDayLogFactory, assign, sod_payload, eod_payload, vehicle_check_payload,
                             PNG_BYTES)


def count(model):
    return db.session.scalar(db.select(db.func.count()).select_from(model))


class TestStartOfDay:

    def test_submit_sod(self, driver):
        sod, warnings = DailyLogService().submit_start_of_day(driver.id, sod_payload(notes='Depot 3'))

        assert warnings == []
        assert sod['driver_id'] == driver.id
        assert sod['vehicle_id'] == driver.assigned_vehicle_id
        assert sod['log_date'] == get_operating_date().isoformat()
        assert sod['parcel_count'] == 120
        assert sod['notes'] == 'Depot 3'

    def test_second_sod_rejected(self, driver):
        service = DailyLogService()
        service.submit_start_of_day(driver.id, sod_payload())

        with pytest.raises(DuplicateEntryError) as exc:
            service.submit_start_of_day(driver.id, sod_payload(parcel_count=10))
        assert exc.value.message == 'SOD log already exists for today'
        assert count(StartOfDayLog) == 1

    def test_invalid_payload_writes_nothing(self, driver):
        with pytest.raises(ValidationError):
            DailyLogService().submit_start_of_day(driver.id, sod_payload(van_confirmed=False))
        assert count(StartOfDayLog) == 0
        assert count(AuditLog) == 0

    def test_backdated_log_rejected(self, driver):
        yesterday = (get_operating_date() - timedelta(days=1)).isoformat()
        with pytest.raises(ValidationError) as exc:
            DailyLogService().submit_start_of_day(driver.id, sod_payload(log_date=yesterday))
        assert exc.value.message == 'Can only log for today'

    def test_driver_without_vehicle(self, db_session):
        driver = DriverFactory()
        with pytest.raises(ActionNotPermitted) as exc:
            DailyLogService().submit_start_of_day(driver.id, sod_payload())
        assert exc.value.field == 'vehicle_assignment'

    def test_onboarding_gates_sod(self, invited_driver, vehicle):
        assign(invited_driver, vehicle)
        with pytest.raises(ActionNotPermitted) as exc:
            DailyLogService().submit_start_of_day(invited_driver.id, sod_payload())
        assert exc.value.message == 'Onboarding must be completed first'

    def test_failed_vehicle_check_items(self, driver):
        items = {'lights': True, 'tyres': False}
        with pytest.raises(ValidationError) as exc:
            DailyLogService().submit_start_of_day(driver.id, sod_payload(vehicle_check_items=items))
        assert exc.value.field == 'vehicle_check_items'
        assert exc.value.message.startswith('Vehicle check incomplete: tyres, brakes')

    def test_vehicle_already_used_today(self, driver, vehicle, db_session):
        DailyLogService().submit_start_of_day(driver.id, sod_payload())

        # Van handed over mid-day
        other = DriverFactory()
        vehicles = VehicleService()
        vehicles.unassign_vehicle(vehicle.id, unassigned_by='admin:ops')
        vehicles.assign_vehicle(vehicle.id, other.id, assigned_by='admin:ops')

        with pytest.raises(ValidationError) as exc:
            DailyLogService().submit_start_of_day(other.id, sod_payload())
        assert exc.value.field == 'vehicle_id'
        assert exc.value.message == 'Vehicle is already in use today by another driver'

    def test_store_rejects_racing_duplicate(self, driver, monkeypatch):
        # An SOD written by a concurrent request against a different van
        StartOfDayLogFactory(driver_id=driver.id, vehicle_id=VehicleFactory().id)

        service = DailyLogService()
        monkeypatch.setattr(service.rules, 'find_todays_entry', lambda *args, **kwargs: None)

        with pytest.raises(DuplicateEntryError) as exc:
            service.submit_start_of_day(driver.id, sod_payload())
        assert exc.value.message == 'SOD log already exists for today'
        assert count(StartOfDayLog) == 1

    def test_store_rejects_racing_vehicle_claim(self, driver, vehicle, monkeypatch):
        other = DriverFactory()
        StartOfDayLogFactory(driver_id=other.id, vehicle_id=vehicle.id)

        service = DailyLogService()
        monkeypatch.setattr(service.rules, 'require_vehicle_available', lambda *args, **kwargs: True)

        with pytest.raises(ValidationError) as exc:
            service.submit_start_of_day(driver.id, sod_payload())
        assert exc.value.field == 'vehicle_id'


class TestEndOfDay:

    def test_submit_eod_after_sod(self, driver):
        service = DailyLogService()
        service.submit_start_of_day(driver.id, sod_payload(parcel_count=120))

        eod, warnings = service.submit_end_of_day(driver.id, eod_payload(parcels_delivered=117))

        assert eod['parcels_delivered'] == 117
        assert eod['screenshot_path'].startswith(f"{driver.id}/reports/delivery-summary_")
        assert eod['screenshot_content_type'] == 'image/png'
        assert warnings == ['3 parcels remain undelivered']

    def test_screenshot_metadata_alone_is_not_enough(self, driver):
        screenshot = {'name': 'delivery-summary.png', 'size': 20480, 'type': 'image/png'}
        with pytest.raises(ValidationError) as exc:
            DailyLogService().submit_end_of_day(driver.id, eod_payload(screenshot=screenshot))

        assert exc.value.field == 'screenshot'
        assert exc.value.message == 'Delivery screenshot file must be uploaded'
        assert count(EndOfDayLog) == 0

    def test_oversized_screenshot_rejected_whatever_size_is_declared(self, app, driver):
        content = PNG_BYTES + b'\x00' * (6 * 1024 * 1024)
        screenshot = {'name': 'huge.png', 'size': 1000, 'type': 'image/png', 'content': content}

        with pytest.raises(ValidationError) as exc:
            DailyLogService().submit_end_of_day(driver.id, eod_payload(screenshot=screenshot))

        assert exc.value.field == 'screenshot'
        assert count(EndOfDayLog) == 0
        assert not os.path.exists(os.path.join(app.config['UPLOAD_FOLDER'], 'driver-files', str(driver.id)))

    def test_cannot_deliver_more_than_started(self, driver):
        service = DailyLogService()
        service.submit_start_of_day(driver.id, sod_payload(parcel_count=50))

        with pytest.raises(ValidationError) as exc:
            service.submit_end_of_day(driver.id, eod_payload(parcels_delivered=51))
        assert exc.value.field == 'parcels_delivered'
        assert exc.value.message == 'Cannot deliver more parcels than started with'
        assert count(EndOfDayLog) == 0

    def test_eod_without_sod_warns(self, driver):
        eod, warnings = DailyLogService().submit_end_of_day(driver.id, eod_payload())

        assert eod['parcels_delivered'] == 110
        assert warnings == ['No start of day log found for today; parcel count cross-check skipped']

    def test_eod_without_sod_when_required(self, app, driver):
        app.config['REQUIRE_SOD_BEFORE_EOD'] = True
        with pytest.raises(ActionNotPermitted):
            DailyLogService().submit_end_of_day(driver.id, eod_payload())

    def test_second_eod_rejected(self, driver):
        service = DailyLogService()
        service.submit_start_of_day(driver.id, sod_payload())
        service.submit_end_of_day(driver.id, eod_payload())

        with pytest.raises(DuplicateEntryError) as exc:
            service.submit_end_of_day(driver.id, eod_payload(parcels_delivered=1))
        assert exc.value.message == 'EOD report already exists for today'

    def test_screenshot_is_stored(self, app, driver):
        service = DailyLogService()
        service.submit_start_of_day(driver.id, sod_payload())
        screenshot = FileDescriptor('route-summary.png', len(PNG_BYTES), 'image/png', io.BytesIO(PNG_BYTES))

        eod, _ = service.submit_end_of_day(driver.id, eod_payload(screenshot=screenshot))

        assert eod['screenshot_path'].startswith(f"{driver.id}/reports/route-summary_")
        stored = os.path.join(app.config['UPLOAD_FOLDER'], 'driver-files', *eod['screenshot_path'].split('/'))
        with open(stored, 'rb') as handle:
            assert handle.read() == PNG_BYTES

    def test_daily_status(self, driver):
        service = DailyLogService()
        assert service.get_daily_status(driver.id)['next_action'] == 'submit_sod'

        service.submit_start_of_day(driver.id, sod_payload())
        assert service.get_daily_status(driver.id)['next_action'] == 'submit_eod'

        service.submit_end_of_day(driver.id, eod_payload())
        status = service.get_daily_status(driver.id)
        assert status['next_action'] == 'done'
        assert status['sod_completed'] and status['eod_completed']


class TestVehicleCheck:

    def test_submit_check_with_photo(self, app, driver):
        photo = {'name': 'nearside.png', 'type': 'image/png', 'content': PNG_BYTES}
        check = VehicleCheckService().submit_vehicle_check(driver.id, vehicle_check_payload(photos=[photo]))

        assert check['driver_id'] == driver.id
        assert check['vehicle_id'] == driver.assigned_vehicle_id
        assert check['log_date'] == get_operating_date().isoformat()
        assert check['exterior_condition'] == 'good'
        assert check['fuel_level'] == 75
        assert check['status'] == 'completed'
        assert check['photo_paths'][0].startswith(f"{driver.id}/photos/nearside_")
        stored = os.path.join(app.config['UPLOAD_FOLDER'], 'driver-files', *check['photo_paths'][0].split('/'))
        with open(stored, 'rb') as handle:
            assert handle.read() == PNG_BYTES

    def test_one_check_per_day(self, driver):
        service = VehicleCheckService()
        service.submit_vehicle_check(driver.id, vehicle_check_payload())

        with pytest.raises(DuplicateEntryError) as exc:
            service.submit_vehicle_check(driver.id, vehicle_check_payload(fuel_level=60))
        assert exc.value.message == 'Vehicle check already completed for today'
        assert count(VehicleCheck) == 1

    def test_store_rejects_racing_duplicate(self, driver, monkeypatch):
        service = VehicleCheckService()
        service.submit_vehicle_check(driver.id, vehicle_check_payload())
        monkeypatch.setattr(service.rules, 'find_todays_entry', lambda *args, **kwargs: None)

        with pytest.raises(DuplicateEntryError):
            service.submit_vehicle_check(driver.id, vehicle_check_payload())
        assert count(VehicleCheck) == 1

    def test_needs_assigned_vehicle(self, db_session):
        driver = DriverFactory()
        with pytest.raises(ActionNotPermitted) as exc:
            VehicleCheckService().submit_vehicle_check(driver.id, vehicle_check_payload())
        assert exc.value.field == 'vehicle_assignment'
        assert count(VehicleCheck) == 0

    def test_onboarding_gates_check(self, invited_driver, vehicle):
        assign(invited_driver, vehicle)
        with pytest.raises(ActionNotPermitted) as exc:
            VehicleCheckService().submit_vehicle_check(invited_driver.id, vehicle_check_payload())
        assert exc.value.message == 'Onboarding must be completed first'

    def test_photo_metadata_alone_is_rejected(self, driver):
        photo = {'name': 'nearside.jpg', 'size': 2048, 'type': 'image/jpeg'}
        with pytest.raises(ValidationError) as exc:
            VehicleCheckService().submit_vehicle_check(driver.id, vehicle_check_payload(photos=[photo]))
        assert exc.value.field == 'photos'
        assert count(VehicleCheck) == 0

    def test_todays_check_and_daily_status(self, driver):
        service = VehicleCheckService()
        assert service.get_todays_check(driver.id) is None
        assert DailyLogService().get_daily_status(driver.id)['vehicle_check_completed'] is False

        check = service.submit_vehicle_check(driver.id, vehicle_check_payload())
        assert service.get_todays_check(driver.id)['id'] == check['id']
        assert DailyLogService().get_daily_status(driver.id)['vehicle_check_completed'] is True

    def test_check_is_audited(self, driver):
        check = VehicleCheckService().submit_vehicle_check(driver.id, vehicle_check_payload())
        history = AuditService(RecordStore()).get_entity_history('vehicle_check', check['id'])
        assert [entry['action'] for entry in history] == ['submit_vehicle_check']


class TestAdminCorrections:

    @pytest.fixture
    def logs(self, driver):
        sod = StartOfDayLogFactory(driver_id=driver.id, vehicle_id=driver.assigned_vehicle_id, parcel_count=100)
        eod = EndOfDayLogFactory(driver_id=driver.id, parcels_delivered=90)
        return sod.id, eod.id

    def test_edit_sod(self, logs):
        sod_id, _ = logs
        updated = DailyLogService().admin_update_sod(sod_id, {'parcel_count': 95}, edited_by='admin:ops')

        assert updated['parcel_count'] == 95
        assert updated['edited_by'] == 'admin:ops'
        assert updated['edited_at'] is not None

    def test_sod_edit_cannot_undercut_delivered(self, logs):
        sod_id, _ = logs
        with pytest.raises(ValidationError) as exc:
            DailyLogService().admin_update_sod(sod_id, {'parcel_count': 80}, edited_by='admin:ops')
        assert exc.value.message == 'Parcel count cannot be below parcels already delivered'

    def test_sod_edit_is_revalidated(self, logs):
        sod_id, _ = logs
        with pytest.raises(ValidationError) as exc:
            DailyLogService().admin_update_sod(sod_id, {'parcel_count': 10000}, edited_by='admin:ops')
        assert exc.value.field == 'parcel_count'

    def test_edit_eod(self, logs):
        _, eod_id = logs
        updated, warnings = DailyLogService().admin_update_eod(eod_id, {'parcels_delivered': 98},
                                                               edited_by='admin:ops')
        assert updated['parcels_delivered'] == 98
        assert warnings == ['2 parcels remain undelivered']

    def test_eod_edit_cannot_exceed_started(self, logs):
        _, eod_id = logs
        with pytest.raises(ValidationError):
            DailyLogService().admin_update_eod(eod_id, {'parcels_delivered': 101}, edited_by='admin:ops')

    def test_edits_are_audited(self, logs):
        sod_id, _ = logs
        DailyLogService().admin_update_sod(sod_id, {'starting_mileage': 46000}, edited_by='admin:ops')

        history = AuditService(RecordStore()).get_entity_history('sod_log', sod_id)
        assert history[0]['action'] == 'edit_sod'
        assert history[0]['details']['after']['starting_mileage'] == 46000
