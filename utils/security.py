"""
Security utilities for data sanitization and protection
"""
import re
import json
import time
from typing import Dict, Any, Union, List, Optional, Tuple

ALLOWED_STORAGE_FOLDERS = ('documents', 'photos', 'avatars', 'reports')
MAX_STORAGE_PATH_LENGTH = 200

# Leading bytes of native executables
EXECUTABLE_SIGNATURES = (
    b'MZ',                  # PE (Windows)
    b'\x7fELF',             # ELF (Linux)
    b'\xfe\xed\xfa\xce',    # Mach-O (macOS)
)

SUSPICIOUS_CONTENT_PATTERNS = [
    re.compile(rb'javascript:', re.IGNORECASE),
    re.compile(rb'<script', re.IGNORECASE),
    re.compile(rb'eval\(', re.IGNORECASE),
    re.compile(rb'document\.write', re.IGNORECASE),
    re.compile(rb'window\.location', re.IGNORECASE),
]


def sanitize_text(text: str) -> str:
    """Strip markup brackets and script/data URL schemes, trim, cap at 1000 chars"""
    if not text:
        return ''
    text = re.sub(r'[<>]', '', text)
    text = re.sub(r'javascript:', '', text, flags=re.IGNORECASE)
    text = re.sub(r'data:', '', text, flags=re.IGNORECASE)
    return text.strip()[:1000]


def sanitize_file_name(file_name: str) -> str:
    name = re.sub(r'[^a-zA-Z0-9.-]', '_', file_name or '')
    name = re.sub(r'\.{2,}', '.', name)
    name = name.strip('.')
    return name[:100]


def generate_secure_file_path(user_id: str, folder: str, original_name: str,
                              timestamp: Optional[int] = None) -> str:
    """
    Build ``<user>/<folder>/<name>_<timestamp>.<ext>`` from an untrusted file name.
    """
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    sanitized = sanitize_file_name(original_name) or 'file'
    if '.' in sanitized:
        stem, extension = sanitized.rsplit('.', 1)
        return f"{user_id}/{folder}/{stem or 'file'}_{timestamp}.{extension}"
    return f"{user_id}/{folder}/{sanitized}_{timestamp}"


def validate_storage_path(path: str, user_id: str) -> bool:
    """A storage path must be scoped under the user and an allowed folder"""
    if not path or not user_id:
        return False

    # Check for directory traversal
    if '..' in path or '//' in path or '\\' in path or '\x00' in path:
        return False

    if not path.startswith(f"{user_id}/"):
        return False

    if len(path) > MAX_STORAGE_PATH_LENGTH:
        return False

    parts = path.split('/')
    if len(parts) < 3 or parts[1] not in ALLOWED_STORAGE_FOLDERS or not parts[-1]:
        return False

    return True


def scan_for_threats(content: bytes) -> Tuple[bool, Optional[str]]:
    """
    Cheap content screen run before anything is written to storage.

    Returns:
        tuple: (is_safe: bool, threat: str)
    """
    for signature in EXECUTABLE_SIGNATURES:
        if content.startswith(signature):
            return False, 'Executable file detected'

    head = content[:1024]
    for pattern in SUSPICIOUS_CONTENT_PATTERNS:
        if pattern.search(head):
            return False, 'Suspicious script content detected'

    return True, None


class AuditDataSanitizer:
    """Handles sanitization of audit log data to protect sensitive information"""

    # Sensitive field patterns to redact
    SENSITIVE_PATTERNS = [
        r'password',
        r'secret',
        r'token',
        r'api_key',
        r'authorization',
        r'credential',
        r'private',
        r'session',
        r'salt',
        r'hash'
    ]

    # Email and phone patterns
    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    PHONE_PATTERN = re.compile(r'\+?\d[\d\s().-]{8,}\d')

    @classmethod
    def sanitize_json_data(cls, data: Union[str, Dict, None]) -> Dict[str, Any]:
        """
        Sanitize JSON data by redacting sensitive fields
        """
        if not data:
            return {}

        try:
            if isinstance(data, str):
                data = json.loads(data)

            if not isinstance(data, dict):
                return {}

            sanitized = {}
            for key, value in data.items():
                if cls._is_sensitive_field(key):
                    sanitized[key] = "[REDACTED]"
                elif isinstance(value, str):
                    sanitized[key] = cls._sanitize_string_value(value)
                elif isinstance(value, dict):
                    sanitized[key] = cls.sanitize_json_data(value)
                elif isinstance(value, list):
                    sanitized[key] = [cls.sanitize_json_data(item) if isinstance(item, dict)
                                      else cls._sanitize_string_value(item) if isinstance(item, str)
                                      else item for item in value]
                else:
                    sanitized[key] = value

            return sanitized

        except (json.JSONDecodeError, TypeError, AttributeError):
            return {"error": "Invalid JSON data"}

    @classmethod
    def _is_sensitive_field(cls, field_name: str) -> bool:
        """Check if a field name indicates sensitive data"""
        field_lower = str(field_name).lower()
        return any(pattern in field_lower for pattern in cls.SENSITIVE_PATTERNS)

    @classmethod
    def _sanitize_string_value(cls, value: str) -> str:
        """Sanitize string values by masking emails and phone numbers"""
        value = cls.EMAIL_PATTERN.sub(lambda m: cls._mask_email(m.group()), value)
        value = cls.PHONE_PATTERN.sub(lambda m: cls._mask_phone(m.group()), value)
        return value

    @classmethod
    def _mask_email(cls, email: str) -> str:
        """Mask email address for privacy"""
        try:
            local, domain = email.split('@')
            if len(local) <= 2:
                masked_local = '*' * len(local)
            else:
                masked_local = local[0] + '*' * (len(local) - 2) + local[-1]
            return f"{masked_local}@{domain}"
        except ValueError:
            return email

    @classmethod
    def _mask_phone(cls, phone: str) -> str:
        """Mask phone number for privacy"""
        digits = re.sub(r'\D', '', phone)
        if len(digits) >= 4:
            return f"***-***-{digits[-4:]}"
        return "*" * len(phone)

    @classmethod
    def mask_ip_address(cls, ip_address: str) -> str:
        """Partially mask IP address for privacy"""
        if not ip_address:
            return ip_address

        # IPv4 masking
        if '.' in ip_address:
            parts = ip_address.split('.')
            if len(parts) == 4:
                return f"{parts[0]}.{parts[1]}.xxx.xxx"

        # IPv6 masking
        if ':' in ip_address:
            parts = ip_address.split(':')
            if len(parts) >= 4:
                return f"{parts[0]}:{parts[1]}:xxxx:xxxx"

        return ip_address


class CSVSanitizer:
    """Handles CSV injection protection"""

    INJECTION_PREFIXES = ['=', '+', '-', '@', '\t', '\r']

    @classmethod
    def sanitize_csv_cell(cls, value: Any) -> str:
        """Sanitize a single CSV cell to prevent injection attacks"""
        if value is None:
            return ""

        str_value = str(value)

        # Prefix with single quote to neutralize formula injection
        if str_value and str_value[0] in cls.INJECTION_PREFIXES:
            return f"'{str_value}"

        return str_value

    @classmethod
    def sanitize_csv_row(cls, row: List[Any]) -> List[str]:
        """Sanitize an entire CSV row"""
        return [cls.sanitize_csv_cell(cell) for cell in row]
