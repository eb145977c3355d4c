"""
JSON API for the driver daily workflow.

Driver endpoints take the driver id from the path. Admin endpoints require
the X-Admin-Token header. Service exceptions are turned into JSON error
responses by the handlers registered in app.create_app.
"""

import hmac
import logging
from datetime import date
from functools import wraps

from flask import Blueprint, Response, current_app, jsonify, request
from werkzeug.datastructures import CombinedMultiDict

from services import (DailyLogService, DriverService, VehicleService, IncidentService,
                      VehicleCheckService, ReportingService, AuditService, RecordStore)
from services.errors import ValidationError
from services.validation_service import validate_submission, SUBMISSION_KINDS

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__)


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('ADMIN_API_TOKEN')
        if not expected:
            return jsonify({
                'success': False,
                'error': 'ADMIN_DISABLED',
                'message': 'Admin API is not configured'
            }), 403
        supplied = request.headers.get('X-Admin-Token', '')
        if not hmac.compare_digest(supplied.encode(), expected.encode()):
            logger.warning(f"Rejected admin request to {request.path} from {request.remote_addr}")
            return jsonify({
                'success': False,
                'error': 'UNAUTHORIZED',
                'message': 'Admin access required'
            }), 401
        return f(*args, **kwargs)
    return decorated_function


def rate_limited(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        limiter = current_app.extensions['rate_limiter']
        allowed, retry_after = limiter.hit(f"{request.endpoint}:{request.remote_addr}")
        if not allowed:
            response = jsonify({
                'success': False,
                'error': 'RATE_LIMITED',
                'message': 'Too many requests. Please try again later.',
                'retry_after': retry_after
            })
            response.headers['Retry-After'] = str(retry_after)
            return response, 429
        return f(*args, **kwargs)
    return decorated_function


def _admin_actor():
    return f"admin:{request.headers.get('X-Admin-User', 'admin')[:80]}"


def _payload():
    """JSON object body, or form fields plus uploaded files for multipart posts"""
    if request.is_json:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError('payload', 'Request body must be a JSON object')
        return data
    return CombinedMultiDict([request.form, request.files])


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('payload', 'Request body must be a JSON object')
    return data


@api_bp.route('/validate', methods=['POST'])
@rate_limited
def validate():
    """Server-side validation of any submission kind without saving it"""
    body = _json_body()
    kind = body.get('type')
    if kind not in SUBMISSION_KINDS:
        return jsonify({'valid': False, 'errors': ['type: Invalid validation type'], 'sanitized_data': {}}), 400

    valid, errors, sanitized = validate_submission(kind, body.get('data'), body.get('user_id'))
    return jsonify({'valid': valid, 'errors': errors, 'sanitized_data': sanitized}), 200 if valid else 400


# Driver workflow

@api_bp.route('/drivers/<int:driver_id>/sod', methods=['POST'])
def submit_sod(driver_id):
    sod, warnings = DailyLogService().submit_start_of_day(driver_id, _payload())
    return jsonify({
        'success': True,
        'message': 'Start of day recorded',
        'sod': sod,
        'warnings': warnings
    }), 201


@api_bp.route('/drivers/<int:driver_id>/eod', methods=['POST'])
def submit_eod(driver_id):
    eod, warnings = DailyLogService().submit_end_of_day(driver_id, _payload())
    return jsonify({
        'success': True,
        'message': 'End of day recorded',
        'eod': eod,
        'warnings': warnings
    }), 201


@api_bp.route('/drivers/<int:driver_id>/vehicle-check', methods=['POST'])
def submit_vehicle_check(driver_id):
    check = VehicleCheckService().submit_vehicle_check(driver_id, _payload())
    return jsonify({
        'success': True,
        'message': 'Vehicle check recorded',
        'vehicle_check': check
    }), 201


@api_bp.route('/drivers/<int:driver_id>/vehicle-check', methods=['GET'])
def todays_vehicle_check(driver_id):
    return jsonify({'success': True, 'vehicle_check': VehicleCheckService().get_todays_check(driver_id)})


@api_bp.route('/drivers/<int:driver_id>/workflow', methods=['GET'])
def workflow_status(driver_id):
    return jsonify({
        'success': True,
        'workflow': DailyLogService().get_daily_status(driver_id)
    })


@api_bp.route('/drivers/<int:driver_id>/onboarding', methods=['POST'])
def complete_onboarding(driver_id):
    driver = DriverService().complete_onboarding(driver_id, _payload())
    return jsonify({
        'success': True,
        'message': 'Onboarding completed',
        'driver': driver
    })


@api_bp.route('/drivers/<int:driver_id>/documents', methods=['POST'])
def upload_document(driver_id):
    document = DriverService().upload_document(driver_id, _payload())
    return jsonify({'success': True, 'document': document}), 201


@api_bp.route('/drivers/<int:driver_id>/incidents', methods=['POST'])
def report_incident(driver_id):
    incident = IncidentService().report_incident(driver_id, _payload())
    return jsonify({'success': True, 'incident': incident}), 201


@api_bp.route('/drivers/<int:driver_id>/incidents', methods=['GET'])
def list_incidents(driver_id):
    return jsonify({'success': True, 'incidents': IncidentService().list_incidents(driver_id)})


@api_bp.route('/vehicles/<int:vehicle_id>/availability', methods=['GET'])
def vehicle_availability(vehicle_id):
    return jsonify({
        'success': True,
        'availability': VehicleService().get_availability(vehicle_id)
    })


# Admin

@api_bp.route('/admin/invitations', methods=['POST'])
@admin_required
@rate_limited
def invite_driver():
    driver, email_sent = DriverService().invite_driver(_json_body(), invited_by=_admin_actor())
    return jsonify({
        'success': True,
        'message': 'Driver invited' if email_sent else 'Driver invited; credentials email was not sent',
        'driver': driver,
        'email_sent': email_sent
    }), 201


@api_bp.route('/admin/drivers/<int:driver_id>/credentials', methods=['POST'])
@admin_required
def resend_credentials(driver_id):
    email_sent = DriverService().resend_credentials(driver_id, requested_by=_admin_actor())
    return jsonify({'success': True, 'email_sent': email_sent})


@api_bp.route('/admin/drivers/<int:driver_id>/status', methods=['POST'])
@admin_required
def change_driver_status(driver_id):
    body = _json_body()
    if not body.get('status'):
        raise ValidationError('status', 'Status is required')
    driver = DriverService().change_status(driver_id, body['status'], changed_by=_admin_actor(),
                                           reason=body.get('reason'))
    return jsonify({'success': True, 'driver': driver})


@api_bp.route('/admin/vehicles/available', methods=['GET'])
@admin_required
def available_vehicles():
    vehicles = VehicleService().get_available_vehicles(company_id=request.args.get('company_id'))
    return jsonify({'success': True, 'vehicles': vehicles})


@api_bp.route('/admin/vehicles/<int:vehicle_id>/assign', methods=['POST'])
@admin_required
def assign_vehicle(vehicle_id):
    body = _json_body()
    driver_id = body.get('driver_id')
    if isinstance(driver_id, bool) or not isinstance(driver_id, int):
        raise ValidationError('driver_id', 'Driver ID is required')
    vehicle = VehicleService().assign_vehicle(vehicle_id, driver_id, assigned_by=_admin_actor())
    return jsonify({'success': True, 'vehicle': vehicle})


@api_bp.route('/admin/vehicles/<int:vehicle_id>/unassign', methods=['POST'])
@admin_required
def unassign_vehicle(vehicle_id):
    vehicle = VehicleService().unassign_vehicle(vehicle_id, unassigned_by=_admin_actor())
    return jsonify({'success': True, 'vehicle': vehicle})


@api_bp.route('/admin/sod/<int:sod_id>', methods=['PATCH'])
@admin_required
def edit_sod(sod_id):
    sod = DailyLogService().admin_update_sod(sod_id, _json_body(), edited_by=_admin_actor())
    return jsonify({'success': True, 'sod': sod})


@api_bp.route('/admin/eod/<int:eod_id>', methods=['PATCH'])
@admin_required
def edit_eod(eod_id):
    eod, warnings = DailyLogService().admin_update_eod(eod_id, _json_body(), edited_by=_admin_actor())
    return jsonify({'success': True, 'eod': eod, 'warnings': warnings})


@api_bp.route('/admin/reports/daily', methods=['GET'])
@admin_required
def daily_report():
    report_date = None
    if request.args.get('date'):
        try:
            report_date = date.fromisoformat(request.args['date'])
        except ValueError:
            raise ValidationError('date', 'Not a valid date')

    service = ReportingService()
    report = service.get_daily_report(report_date, company_id=request.args.get('company_id'))

    if request.args.get('format') == 'csv':
        return Response(
            service.to_csv(report),
            mimetype='text/csv',
            headers={'Content-Disposition': f"attachment; filename=daily_report_{report['date']}.csv"}
        )
    return jsonify({'success': True, 'report': report})


@api_bp.route('/admin/audit/<entity_type>/<int:entity_id>', methods=['GET'])
@admin_required
def audit_history(entity_type, entity_id):
    entries = AuditService(RecordStore()).get_entity_history(entity_type, entity_id)
    return jsonify({'success': True, 'entries': entries})
