from datetime import datetime, date
import pytz
from flask import current_app, has_app_context

DEFAULT_TIMEZONE = 'Europe/London'


def get_operating_timezone():
    """Timezone used to decide what "today" means for daily logs"""
    name = DEFAULT_TIMEZONE
    if has_app_context():
        name = current_app.config.get('OPERATING_TIMEZONE') or DEFAULT_TIMEZONE
    return pytz.timezone(name)


def get_operating_time():
    return datetime.now(get_operating_timezone())


def get_operating_time_naive():
    """Get current operating-timezone time as naive datetime for database storage"""
    return get_operating_time().replace(tzinfo=None)


def get_operating_date() -> date:
    return get_operating_time().date()
