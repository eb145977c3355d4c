import io
import json
import os
import re
from datetime import date, datetime

from werkzeug.datastructures import FileStorage
from wtforms import Form, Field, SelectField
from wtforms.validators import (AnyOf, Email, Length, NumberRange, Optional, Regexp, UUID,
                                StopValidation, ValidationError)

from models import DocumentType, IncidentType, VehicleCondition
from submissions import FileDescriptor, VehicleCheckItem
from timezone_utils import get_operating_timezone

PHONE_PATTERN = r'^\+?[1-9]\d{1,14}$'
NAME_PATTERN = r'^[^\W\d_]+(?:[ ][^\W\d_]+)*$'

DEFAULT_SCREENSHOT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_DOCUMENT_MAX_BYTES = 10 * 1024 * 1024
PHOTO_MAX_BYTES = 5 * 1024 * 1024
INCIDENT_MAX_PHOTOS = 5
VEHICLE_CHECK_MAX_PHOTOS = 10

PHOTO_CONTENT_TYPES = ('image/jpeg', 'image/jpg', 'image/png')
DOCUMENT_CONTENT_TYPES = PHOTO_CONTENT_TYPES + (
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
)
DOCUMENT_EXTENSIONS = ('jpg', 'jpeg', 'png', 'pdf', 'doc', 'docx')
CONDITION_VALUES = [condition.value for condition in VehicleCondition]
UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

TRUE_VALUES = ('true', '1', 'yes', 'on')
FALSE_VALUES = ('false', '0', 'no', 'off')


def _blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


# Custom validators

class Required:
    """
    Presence check on the processed value.

    InputRequired/DataRequired treat 0 and False as missing, which is wrong for
    parcel counts and checkbox answers.
    """
    field_flags = {'required': True}

    def __init__(self, message=None):
        self.message = message

    def __call__(self, form, field):
        if not _blank(field.data) and field.data != []:
            return
        message = self.message or field.gettext('This field is required.')
        field.errors[:] = []
        raise StopValidation(message)


class MustBeTrue:
    def __init__(self, message):
        self.message = message

    def __call__(self, form, field):
        if field.data is not True:
            raise ValidationError(self.message)


# Custom fields. Payloads arrive as JSON, so values are not always strings.

class StrictField(Field):
    """Field whose coercion errors stop the rest of its validation chain"""

    def pre_validate(self, form):
        if self.process_errors:
            raise StopValidation()


class StrictStringField(StrictField):
    def process_formdata(self, valuelist):
        if not valuelist or _blank(valuelist[0]):
            self.data = None
            return
        value = valuelist[0]
        if not isinstance(value, str):
            self.data = None
            raise ValueError(self.gettext('Must be text'))
        self.data = value.strip()


class StrictIntegerField(StrictField):
    def process_formdata(self, valuelist):
        if not valuelist or _blank(valuelist[0]):
            self.data = None
            return
        value = valuelist[0]
        self.data = None
        if isinstance(value, bool):
            raise ValueError(self.gettext('Must be a whole number'))
        if isinstance(value, int):
            self.data = value
        elif isinstance(value, float) and value.is_integer():
            self.data = int(value)
        elif isinstance(value, str) and re.fullmatch(r'[+-]?\d+', value.strip()):
            self.data = int(value.strip())
        else:
            raise ValueError(self.gettext('Must be a whole number'))


class StrictDecimalField(StrictField):
    def process_formdata(self, valuelist):
        if not valuelist or _blank(valuelist[0]):
            self.data = None
            return
        value = valuelist[0]
        self.data = None
        if isinstance(value, bool):
            raise ValueError(self.gettext('Must be a number'))
        if isinstance(value, (int, float)):
            self.data = float(value)
            return
        try:
            self.data = float(str(value).strip())
        except ValueError:
            raise ValueError(self.gettext('Must be a number'))


class StrictBooleanField(StrictField):
    def process_formdata(self, valuelist):
        if not valuelist or _blank(valuelist[0]):
            self.data = None
            return
        value = valuelist[0]
        if isinstance(value, bool):
            self.data = value
        elif isinstance(value, str) and value.strip().lower() in TRUE_VALUES:
            self.data = True
        elif isinstance(value, str) and value.strip().lower() in FALSE_VALUES:
            self.data = False
        else:
            self.data = None
            raise ValueError(self.gettext('Must be true or false'))


def parse_iso_date(value):
    """Calendar date; offset-aware timestamps are read in the operating timezone"""
    if isinstance(value, str):
        value = value.strip()
        if 'T' not in value:
            return date.fromisoformat(value)
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(get_operating_timezone())
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Cannot read a date from {type(value).__name__}")


def parse_iso_datetime(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(value.strip().replace('Z', '+00:00'))


class IsoDateField(StrictField):
    def process_formdata(self, valuelist):
        if not valuelist or _blank(valuelist[0]):
            self.data = None
            return
        try:
            self.data = parse_iso_date(valuelist[0])
        except (TypeError, ValueError, AttributeError):
            self.data = None
            raise ValueError(self.gettext('Not a valid date'))


class IsoDateTimeField(StrictField):
    def process_formdata(self, valuelist):
        if not valuelist or _blank(valuelist[0]):
            self.data = None
            return
        try:
            self.data = parse_iso_datetime(valuelist[0])
        except (TypeError, ValueError, AttributeError):
            self.data = None
            raise ValueError(self.gettext('Invalid date format'))


def to_file_descriptor(value):
    """
    Accept a werkzeug FileStorage or a {name, size, type[, content]} mapping.

    When content is present its length is the size; a declared size is only
    trusted for metadata-only checks.
    """
    if isinstance(value, FileDescriptor):
        return value
    if isinstance(value, FileStorage):
        if not value.filename:
            return None
        stream = value.stream
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        return FileDescriptor(name=value.filename, size=size,
                              content_type=value.mimetype or '', stream=stream)
    if isinstance(value, dict):
        name = value.get('name')
        size = value.get('size')
        content_type = value.get('type', value.get('content_type'))
        if not isinstance(name, str) or not isinstance(content_type, str):
            raise ValueError('File must have a name and a type')
        content = value.get('content')
        if content is not None and not isinstance(content, bytes):
            raise ValueError('File content must be bytes')
        if content is not None:
            return FileDescriptor(name=name, size=len(content), content_type=content_type,
                                  stream=io.BytesIO(content))
        if isinstance(size, bool) or not isinstance(size, int):
            raise ValueError('File size must be a whole number of bytes')
        return FileDescriptor(name=name, size=size, content_type=content_type)
    raise ValueError('Not a valid file')


class UploadField(StrictField):
    def process_formdata(self, valuelist):
        if not valuelist or _blank(valuelist[0]):
            self.data = None
            return
        try:
            self.data = to_file_descriptor(valuelist[0])
        except ValueError as e:
            self.data = None
            raise ValueError(self.gettext(str(e)))


class MultipleUploadField(StrictField):
    def process_data(self, value):
        self.data = list(value) if value else []

    def process_formdata(self, valuelist):
        files = []
        for value in valuelist:
            if _blank(value):
                continue
            descriptor = to_file_descriptor(value)
            if descriptor is not None:
                files.append(descriptor)
        self.data = files


class VehicleCheckField(StrictField):
    """Checklist answers keyed by item name, e.g. {"lights": true, ...}"""

    def process_formdata(self, valuelist):
        if not valuelist or _blank(valuelist[0]):
            self.data = None
            return
        value = valuelist[0]
        self.data = None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                raise ValueError(self.gettext('Vehicle check must be a map of item to true/false'))
        if not isinstance(value, dict):
            raise ValueError(self.gettext('Vehicle check must be a map of item to true/false'))
        known = set(VehicleCheckItem.names())
        unknown = sorted(key for key in value if key not in known)
        if unknown:
            raise ValueError(f"Unknown vehicle check item: {', '.join(unknown)}")
        if not all(isinstance(answer, bool) for answer in value.values()):
            raise ValueError(self.gettext('Vehicle check answers must be true or false'))
        self.data = dict(value)


# Schema forms

class StartOfDayForm(Form):
    parcel_count = StrictIntegerField('Parcel Count', validators=[
        Required(), NumberRange(min=0, max=9999, message='Parcel count must be between 0 and 9999')])
    starting_mileage = StrictIntegerField('Starting Mileage', validators=[
        Required(), NumberRange(min=0, max=999999, message='Starting mileage must be between 0 and 999999')])
    van_confirmed = StrictBooleanField('Van Confirmed', validators=[
        Required(), MustBeTrue('Van confirmation required')])
    vehicle_check_completed = StrictBooleanField('Vehicle Check Completed', validators=[
        Required(), MustBeTrue('Vehicle check must be completed')])
    notes = StrictStringField('Notes', validators=[
        Optional(), Length(max=500, message='Notes must be 500 characters or less')])
    vehicle_check_items = VehicleCheckField('Vehicle Check Items', validators=[Optional()])
    log_date = IsoDateField('Log Date', validators=[Optional()])


class EndOfDayDetailsForm(Form):
    """Fields an admin may correct after submission"""
    parcels_delivered = StrictIntegerField('Parcels Delivered', validators=[
        Required(), NumberRange(min=0, max=9999, message='Parcels delivered must be between 0 and 9999')])
    issues_reported = StrictStringField('Issues Reported', validators=[
        Optional(), Length(max=1000, message='Issues report must be 1000 characters or less')])


class EndOfDayForm(EndOfDayDetailsForm):
    screenshot = UploadField('Screenshot', validators=[Required('Delivery screenshot is required')])
    log_date = IsoDateField('Log Date', validators=[Optional()])

    def __init__(self, *args, **kwargs):
        self.screenshot_max_bytes = kwargs.pop('screenshot_max_bytes', None) or DEFAULT_SCREENSHOT_MAX_BYTES
        super().__init__(*args, **kwargs)

    def validate_screenshot(self, field):
        if field.data.size > self.screenshot_max_bytes:
            limit_mb = self.screenshot_max_bytes / (1024 * 1024)
            raise ValidationError(f'File size must be less than {limit_mb:g}MB')
        if not field.data.content_type.lower().startswith('image/'):
            raise ValidationError('File must be an image')


class OnboardingForm(Form):
    first_name = StrictStringField('First Name', validators=[
        Required(), Length(min=2, max=50, message='Name must be 2-50 characters'),
        Regexp(NAME_PATTERN, message='Name may only contain letters and spaces')])
    last_name = StrictStringField('Last Name', validators=[
        Required(), Length(min=2, max=50, message='Name must be 2-50 characters'),
        Regexp(NAME_PATTERN, message='Name may only contain letters and spaces')])
    email = StrictStringField('Email', validators=[Required(), Email(message='Invalid email format')])
    phone = StrictStringField('Phone', validators=[Optional(), Regexp(PHONE_PATTERN, message='Invalid phone format')])
    driving_license_number = StrictStringField('Driving License Number', validators=[
        Required(), Length(min=5, max=20, message='License number must be 5-20 characters')])
    license_expiry = IsoDateField('License Expiry', validators=[Required()])
    employee_id = StrictStringField('Employee ID', validators=[
        Optional(), Length(max=20, message='Employee ID must be 20 characters or less')])
    emergency_contact_name = StrictStringField('Emergency Contact Name', validators=[Optional(), Length(max=100)])
    emergency_contact_phone = StrictStringField('Emergency Contact Phone', validators=[
        Optional(), Regexp(PHONE_PATTERN, message='Invalid phone format')])

    def __init__(self, *args, **kwargs):
        self.today = kwargs.pop('today', None) or date.today()
        super().__init__(*args, **kwargs)

    def validate_license_expiry(self, field):
        if field.data <= self.today:
            raise ValidationError('License must not be expired')


class InvitationForm(Form):
    email = StrictStringField('Email', validators=[Required(), Email(message='Invalid email format')])
    first_name = StrictStringField('First Name', validators=[
        Required('First name is required'), Length(max=50, message='First name too long')])
    last_name = StrictStringField('Last Name', validators=[
        Required('Last name is required'), Length(max=50, message='Last name too long')])
    phone = StrictStringField('Phone', validators=[Optional(), Regexp(PHONE_PATTERN, message='Invalid phone format')])
    company_id = StrictStringField('Company ID', validators=[Required(), UUID(message='Invalid company ID')])
    hourly_rate = StrictDecimalField('Hourly Rate', validators=[
        Optional(), NumberRange(min=0, max=1000, message='Hourly rate must be between 0 and 1000')])
    parcel_rate = StrictDecimalField('Parcel Rate', validators=[
        Optional(), NumberRange(min=0, message='Parcel rate must be positive')])


class IncidentForm(Form):
    incident_type = SelectField('Incident Type', choices=[(t.value, t.value.title()) for t in IncidentType],
                                validators=[Required()])
    description = StrictStringField('Description', validators=[
        Required(), Length(min=10, max=2000, message='Description must be 10-2000 characters')])
    location = StrictStringField('Location', validators=[
        Optional(), Length(max=200, message='Location must be 200 characters or less')])
    incident_date = IsoDateTimeField('Incident Date', validators=[Required('Incident date is required')])
    photos = MultipleUploadField('Photos')

    def validate_photos(self, field):
        if len(field.data) > INCIDENT_MAX_PHOTOS:
            raise ValidationError(f'Maximum {INCIDENT_MAX_PHOTOS} photos allowed')
        for photo in field.data:
            if photo.content_type.lower() not in PHOTO_CONTENT_TYPES:
                raise ValidationError('Only JPEG/PNG images allowed')
            if photo.size > PHOTO_MAX_BYTES:
                raise ValidationError('Image too large (max 5MB)')


class VehicleCheckForm(Form):
    exterior_condition = StrictStringField('Exterior Condition', validators=[
        Optional(), AnyOf(CONDITION_VALUES, message='Invalid exterior condition')])
    interior_condition = StrictStringField('Interior Condition', validators=[
        Optional(), AnyOf(CONDITION_VALUES, message='Invalid interior condition')])
    fuel_level = StrictIntegerField('Fuel Level', validators=[
        Optional(), NumberRange(min=0, max=100, message='Fuel level must be 0-100%%')])
    mileage = StrictIntegerField('Mileage', validators=[
        Optional(), NumberRange(min=0, message='Mileage must be non-negative')])
    issues_reported = StrictStringField('Issues Reported', validators=[
        Optional(), Length(max=1000, message='Issues report too long')])
    photos = MultipleUploadField('Photos')
    log_date = IsoDateField('Log Date', validators=[Optional()])

    def validate_photos(self, field):
        if len(field.data) > VEHICLE_CHECK_MAX_PHOTOS:
            raise ValidationError(f'Maximum {VEHICLE_CHECK_MAX_PHOTOS} photos allowed')
        for photo in field.data:
            if photo.content_type.lower() not in PHOTO_CONTENT_TYPES:
                raise ValidationError('Only JPEG/PNG images allowed')
            if photo.size > PHOTO_MAX_BYTES:
                raise ValidationError('Image too large (max 5MB)')


class FileUploadForm(Form):
    file = UploadField('File', validators=[Required('File is required')])
    document_type = SelectField('Document Type', choices=[(t.value, t.value.replace('_', ' ').title())
                                                          for t in DocumentType],
                                validators=[Required()])

    def __init__(self, *args, **kwargs):
        self.max_bytes = kwargs.pop('max_bytes', None) or DEFAULT_DOCUMENT_MAX_BYTES
        super().__init__(*args, **kwargs)

    def validate_file(self, field):
        # Every problem with the file is reported, not just the first
        upload = field.data
        if upload.size > self.max_bytes:
            field.errors.append(f'File too large (max {self.max_bytes / (1024 * 1024):g}MB)')
        if upload.size <= 0:
            field.errors.append('File is empty')
        if upload.content_type.lower() not in DOCUMENT_CONTENT_TYPES:
            field.errors.append('Invalid file type')
        if upload.extension not in DOCUMENT_EXTENSIONS:
            field.errors.append('Invalid file extension')
        if not 1 <= len(upload.name) <= 100:
            field.errors.append('Invalid filename length')
        if UNSAFE_FILENAME_CHARS.search(upload.name):
            field.errors.append('Filename contains invalid characters')
