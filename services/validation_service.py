"""
Validation Service

Schema validation for every submission kind. Each validator takes a loosely
typed payload (JSON body, form post or plain dict), runs the matching WTForms
schema and returns a typed submission. On failure it raises ValidationError
naming the first failing field in declaration order, with every field error
attached in ``errors``.

Validators are pure: the only inputs are the payload and the explicit limits.
"""

from typing import Any, Dict, List, Optional, Tuple
import logging
import re
from datetime import date
from flask import current_app, has_app_context
from werkzeug.datastructures import MultiDict

import forms
from submissions import (StartOfDaySubmission, EndOfDaySubmission, OnboardingSubmission,
                         InvitationSubmission, IncidentSubmission, FileUploadSubmission,
                         VehicleCheckSubmission)
from timezone_utils import get_operating_date
from utils.security import sanitize_text, sanitize_file_name, generate_secure_file_path
from .errors import ValidationError

logger = logging.getLogger(__name__)

SUBMISSION_KINDS = ('invitation', 'onboarding', 'sod', 'eod', 'incident', 'file_upload', 'vehicle_check')

_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])([A-Z])')


def to_snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r'_\1', key).lower()


def to_formdata(payload: Any) -> MultiDict:
    """
    Normalize a payload into the MultiDict WTForms expects.

    camelCase keys are accepted alongside snake_case, and null values count
    as absent.
    """
    if payload is None:
        payload = {}
    if isinstance(payload, MultiDict):
        items = payload.items(multi=True)
    elif isinstance(payload, dict):
        items = payload.items()
    else:
        raise ValidationError('payload', 'Submission must be an object')

    formdata = MultiDict()
    for key, value in items:
        if value is None:
            continue
        name = to_snake_case(str(key))
        if isinstance(value, (list, tuple)):
            for item in value:
                formdata.add(name, item)
        else:
            formdata.add(name, value)
    return formdata


def _raise_for(form) -> None:
    errors = {name: list(messages) for name, messages in form.errors.items() if messages}
    field = next(iter(errors))
    message = errors[field][0]
    logger.debug(f"{form.__class__.__name__} rejected: {errors}")
    raise ValidationError(field, message, errors)


def _run(form) -> None:
    if not form.validate():
        _raise_for(form)


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key) or default
    return default


def _optional_text(value: Optional[str]) -> Optional[str]:
    return sanitize_text(value) if value else None


def validate_sod(payload: Any) -> StartOfDaySubmission:
    form = forms.StartOfDayForm(to_formdata(payload))
    _run(form)
    return StartOfDaySubmission(
        parcel_count=form.parcel_count.data,
        starting_mileage=form.starting_mileage.data,
        van_confirmed=form.van_confirmed.data,
        vehicle_check_completed=form.vehicle_check_completed.data,
        notes=_optional_text(form.notes.data),
        vehicle_check_items=form.vehicle_check_items.data,
        log_date=form.log_date.data,
    )


def validate_eod(payload: Any, screenshot_max_bytes: Optional[int] = None) -> EndOfDaySubmission:
    max_bytes = screenshot_max_bytes or _config('SCREENSHOT_MAX_BYTES', forms.DEFAULT_SCREENSHOT_MAX_BYTES)
    form = forms.EndOfDayForm(to_formdata(payload), screenshot_max_bytes=max_bytes)
    _run(form)
    return EndOfDaySubmission(
        parcels_delivered=form.parcels_delivered.data,
        screenshot=form.screenshot.data,
        issues_reported=_optional_text(form.issues_reported.data),
        log_date=form.log_date.data,
    )


def validate_eod_details(payload: Any) -> Dict[str, Any]:
    """Parcel and issue fields only, used when an admin corrects a report"""
    form = forms.EndOfDayDetailsForm(to_formdata(payload))
    _run(form)
    return {
        'parcels_delivered': form.parcels_delivered.data,
        'issues_reported': _optional_text(form.issues_reported.data),
    }


def validate_onboarding(payload: Any, today: Optional[date] = None) -> OnboardingSubmission:
    form = forms.OnboardingForm(to_formdata(payload), today=today or get_operating_date())
    _run(form)
    return OnboardingSubmission(
        first_name=sanitize_text(form.first_name.data),
        last_name=sanitize_text(form.last_name.data),
        email=form.email.data.lower(),
        driving_license_number=sanitize_text(form.driving_license_number.data).upper(),
        license_expiry=form.license_expiry.data,
        phone=form.phone.data,
        employee_id=_optional_text(form.employee_id.data),
        emergency_contact_name=_optional_text(form.emergency_contact_name.data),
        emergency_contact_phone=form.emergency_contact_phone.data,
    )


def validate_invitation(payload: Any) -> InvitationSubmission:
    form = forms.InvitationForm(to_formdata(payload))
    _run(form)
    return InvitationSubmission(
        email=form.email.data.lower(),
        first_name=sanitize_text(form.first_name.data),
        last_name=sanitize_text(form.last_name.data),
        company_id=form.company_id.data.lower(),
        hourly_rate=form.hourly_rate.data,
        parcel_rate=form.parcel_rate.data,
    )


def validate_incident(payload: Any) -> IncidentSubmission:
    form = forms.IncidentForm(to_formdata(payload))
    _run(form)
    return IncidentSubmission(
        incident_type=form.incident_type.data,
        description=sanitize_text(form.description.data),
        incident_date=form.incident_date.data,
        location=_optional_text(form.location.data),
        photos=form.photos.data,
    )


def validate_daily_vehicle_check(payload: Any) -> VehicleCheckSubmission:
    form = forms.VehicleCheckForm(to_formdata(payload))
    _run(form)
    return VehicleCheckSubmission(
        exterior_condition=form.exterior_condition.data,
        interior_condition=form.interior_condition.data,
        fuel_level=form.fuel_level.data,
        mileage=form.mileage.data,
        issues_reported=_optional_text(form.issues_reported.data),
        photos=form.photos.data,
        log_date=form.log_date.data,
    )


def validate_file_upload(payload: Any, max_bytes: Optional[int] = None) -> FileUploadSubmission:
    max_bytes = max_bytes or _config('DOCUMENT_MAX_BYTES', forms.DEFAULT_DOCUMENT_MAX_BYTES)
    form = forms.FileUploadForm(to_formdata(payload), max_bytes=max_bytes)
    _run(form)
    return FileUploadSubmission(file=form.file.data, document_type=form.document_type.data)


VALIDATORS = {
    'invitation': validate_invitation,
    'onboarding': validate_onboarding,
    'sod': validate_sod,
    'eod': validate_eod,
    'incident': validate_incident,
    'file_upload': validate_file_upload,
    'vehicle_check': validate_daily_vehicle_check,
}


def validate_submission(kind: str, payload: Any, user_id: Optional[str] = None) -> Tuple[bool, List[str], Dict[str, Any]]:
    """
    Server-side validation dispatcher.

    Returns:
        tuple: (valid: bool, errors: ["field: message", ...], sanitized_data: dict)
    """
    validator = VALIDATORS.get(kind)
    if validator is None:
        return False, ['type: Invalid validation type'], {}

    try:
        submission = validator(payload)
    except ValidationError as e:
        messages = [f"{field}: {message}" for field, field_errors in e.errors.items()
                    for message in field_errors]
        return False, messages, {}

    sanitized = submission.to_dict()
    if kind == 'file_upload':
        sanitized['sanitized_name'] = sanitize_file_name(submission.file.name)
        if user_id:
            sanitized['secure_path'] = generate_secure_file_path(
                str(user_id), 'documents', submission.file.name)
    return True, [], sanitized
