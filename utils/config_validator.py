"""
Production configuration validation for the driver workflow service
Checks secrets, email delivery and upload limits at startup
"""
import os
import logging
import pytz
from typing import Dict, List, Tuple, Any, Mapping

logger = logging.getLogger(__name__)


def validate_email_config(config: Mapping[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate outbound email configuration (Resend API).

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    if not config.get('RESEND_API_KEY'):
        issues.append("Missing Resend API key (RESEND_API_KEY) - credential emails will not be sent")

    from_address = config.get('NOTIFICATION_FROM_ADDRESS') or ''
    if '@' not in from_address:
        issues.append("NOTIFICATION_FROM_ADDRESS must contain an email address")

    return len(issues) == 0, issues


def validate_flask_config(config: Mapping[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate Flask configuration for production.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    # Check session secret
    session_secret = os.getenv('SESSION_SECRET')
    if not session_secret:
        issues.append("Missing SESSION_SECRET environment variable")
    elif len(session_secret) < 32:
        issues.append("SESSION_SECRET should be at least 32 characters for security")

    admin_token = config.get('ADMIN_API_TOKEN')
    if not admin_token:
        issues.append("ADMIN_API_TOKEN is not set - admin endpoints are disabled")
    elif len(admin_token) < 24:
        issues.append("ADMIN_API_TOKEN should be at least 24 characters")

    # Check DEBUG mode in production
    debug_mode = os.getenv('DEBUG', 'False').lower()
    if debug_mode in ('true', '1', 'yes'):
        issues.append("DEBUG mode is enabled - should be disabled in production")

    return len(issues) == 0, issues


def validate_workflow_config(config: Mapping[str, Any]) -> Tuple[bool, List[str]]:
    """Sanity checks on timezone, upload limits and throttling"""
    issues = []

    timezone_name = config.get('OPERATING_TIMEZONE')
    if timezone_name not in pytz.all_timezones_set:
        issues.append(f"OPERATING_TIMEZONE {timezone_name!r} is not a known timezone")

    max_request = config.get('MAX_CONTENT_LENGTH') or 0
    for key in ('SCREENSHOT_MAX_BYTES', 'DOCUMENT_MAX_BYTES'):
        value = config.get(key) or 0
        if value <= 0:
            issues.append(f"{key} must be positive")
        elif max_request and value > max_request:
            issues.append(f"{key} exceeds MAX_CONTENT_LENGTH; such uploads will be rejected by the server")

    if (config.get('RATE_LIMIT_MAX_ATTEMPTS') or 0) <= 0:
        issues.append("RATE_LIMIT_MAX_ATTEMPTS must be positive")
    if (config.get('RATE_LIMIT_WINDOW_SECONDS') or 0) <= 0:
        issues.append("RATE_LIMIT_WINDOW_SECONDS must be positive")

    return len(issues) == 0, issues


def check_production_readiness(config: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Comprehensive check of production readiness.

    Returns:
        dict: Status information including issues and recommendations
    """
    debug_mode = os.getenv('DEBUG', 'False').lower() in ('true', '1', 'yes')

    email_valid, email_issues = validate_email_config(config)
    flask_valid, flask_issues = validate_flask_config(config)
    workflow_valid, workflow_issues = validate_workflow_config(config)

    all_issues = email_issues + flask_issues + workflow_issues
    is_production_ready = bool(len(all_issues) == 0 and not debug_mode)

    result = {
        'production_ready': is_production_ready,
        'debug_mode': debug_mode,
        'email_configured': email_valid,
        'issues': all_issues,
        'recommendations': []
    }

    if debug_mode:
        result['recommendations'].append("Disable DEBUG mode for production deployment")

    if not email_valid:
        result['recommendations'].append("Configure RESEND_API_KEY so drivers receive their credentials")

    if not is_production_ready:
        result['recommendations'].append("Address configuration issues before deploying to production")

    # Log the status
    if is_production_ready:
        logger.info("CONFIG: Production readiness check PASSED")
    else:
        logger.warning(f"CONFIG: Production readiness check FAILED - Issues: {len(all_issues)}")
        for issue in all_issues:
            logger.warning(f"CONFIG: Issue - {issue}")

    return result
