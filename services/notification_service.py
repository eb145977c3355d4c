"""
Notification Service

Outbound email for the driver workflow, rendered from Jinja2 templates and
delivered through the Resend HTTP API. Sending is fire-and-forget: failures
are logged and reported back as (False, reason), never raised.
"""

from typing import Optional, Dict, Any, Tuple
import logging
import requests
from flask import current_app, has_app_context
from jinja2 import Environment, DictLoader, TemplateNotFound, StrictUndefined
from jinja2.exceptions import UndefinedError
from .errors import NotificationError

logger = logging.getLogger(__name__)

RESEND_API_URL = 'https://api.resend.com/emails'
REQUEST_TIMEOUT = 10

TEMPLATES = {
    'driver_credentials.subject': 'Welcome to {{ company_name or "the Driver Team" }} - Your Login Credentials',
    'driver_credentials.html': """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1>Welcome to the Team!</h1>
  <p>Hi <strong>{{ first_name }}</strong>,</p>
  <p>Your driver account has been created. Log in with the credentials below.</p>
  <p><strong>Email:</strong> {{ email }}<br>
     <strong>Temporary Password:</strong> <code>{{ temp_password }}</code></p>
  <p><a href="{{ login_url }}">Log in now</a></p>
  <p>This is a temporary password. On first login you will be asked to complete your
     profile and upload your driving licence and right-to-work documents.</p>
  <p style="color: #718096; font-size: 12px;">Please do not reply to this email.</p>
</div>
""",
    'driver_status_changed.subject': 'Your driver account is now {{ status }}',
    'driver_status_changed.html': """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <p>Hi <strong>{{ first_name }}</strong>,</p>
  <p>Your driver account status has changed to <strong>{{ status }}</strong>.</p>
  {% if status == 'active' %}<p>You can now log your start of day from the driver portal.</p>{% endif %}
</div>
""",
}

_environment = Environment(loader=DictLoader(TEMPLATES), autoescape=True, undefined=StrictUndefined)


def render_template(template: str, variables: Dict[str, Any]) -> Tuple[str, str]:
    """Render (subject, html) for a named template"""
    try:
        subject = _environment.get_template(f'{template}.subject').render(**variables)
        html = _environment.get_template(f'{template}.html').render(**variables)
    except TemplateNotFound:
        raise NotificationError(f"Unknown email template: {template}")
    except UndefinedError as e:
        raise NotificationError(f"Missing variable for template {template}: {e.message}")
    return subject.strip(), html.strip()


class NotificationService:
    """Service class for outbound email"""

    def __init__(self, api_key: Optional[str] = None, from_address: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        config = current_app.config if has_app_context() else {}
        self.api_key = api_key or config.get('RESEND_API_KEY')
        self.from_address = from_address or config.get('NOTIFICATION_FROM_ADDRESS')
        self.login_url = config.get('APP_LOGIN_URL')
        self.http = session or requests

    def send(self, to: str, template: str, variables: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """
        Send a templated email.

        Args:
            to: Recipient address
            template: Template name (e.g. 'driver_credentials')
            variables: Template variables

        Returns:
            tuple: (success: bool, error_message: str)
        """
        try:
            message_id = self._deliver(to, template, variables)
        except NotificationError as e:
            logger.error(f"Notification '{template}' to {self._mask(to)} failed: {str(e)}")
            return False, str(e)

        logger.info(f"Notification '{template}' sent to {self._mask(to)} (id: {message_id})")
        return True, None

    def _deliver(self, to: str, template: str, variables: Dict[str, Any]) -> Optional[str]:
        if not self.api_key:
            raise NotificationError('Email delivery is not configured')

        context = {'login_url': self.login_url, 'company_name': None}
        context.update(variables)
        subject, html = render_template(template, context)

        try:
            response = self.http.post(
                RESEND_API_URL,
                json={
                    'from': self.from_address,
                    'to': [to],
                    'subject': subject,
                    'html': html,
                },
                headers={'Authorization': f'Bearer {self.api_key}'},
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f"Email API request failed: {str(e)}") from e

        try:
            return response.json().get('id')
        except ValueError:
            return None

    @staticmethod
    def _mask(address: str) -> str:
        local, _, domain = (address or '').partition('@')
        return f"{local[:1]}***@{domain}" if domain else '***'
