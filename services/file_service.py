"""
File Service

File-object store for driver uploads (documents, EOD screenshots, incident
photos). Objects live under ``<root>/<bucket>/<owner>/<folder>/<name>``.
Every path is checked against the uploading owner and screened for
executable or script content before anything touches the disk.
"""

from typing import Optional, Dict, Any, Tuple
import json
import logging
import os
import re
from flask import current_app
from werkzeug.security import safe_join
from submissions import FileDescriptor
from timezone_utils import get_operating_time
from utils.security import validate_storage_path, scan_for_threats, generate_secure_file_path
from .errors import ValidationError, StoreError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = 'driver-files'
BUCKET_PATTERN = re.compile(r'^[a-z0-9][a-z0-9-]{1,62}$')
METADATA_SUFFIX = '.meta.json'


class FileStore:
    """Local-disk object store with per-owner path scoping"""

    def __init__(self, root: Optional[str] = None):
        self.root = root or current_app.config['UPLOAD_FOLDER']

    def _resolve(self, bucket: str, path: str) -> str:
        if not BUCKET_PATTERN.match(bucket or ''):
            raise ValidationError('bucket', 'Invalid storage bucket')
        full_path = safe_join(self.root, bucket, *path.split('/'))
        if full_path is None:
            raise ValidationError('path', 'Invalid storage path')
        return full_path

    def upload(self, bucket: str, path: str, data: bytes, content_type: str,
               owner_id: str) -> Dict[str, Any]:
        """
        Store ``data`` at ``path`` inside ``bucket``.

        Returns:
            dict: {'path': path}
        """
        if not validate_storage_path(path, str(owner_id)):
            logger.warning(f"Rejected storage path {path!r} for owner {owner_id}")
            raise ValidationError('path', 'Invalid storage path')

        is_safe, threat = scan_for_threats(data)
        if not is_safe:
            logger.warning(f"Upload blocked for owner {owner_id}: {threat}")
            raise ValidationError('file', f"Security threat detected: {threat}")

        full_path = self._resolve(bucket, path)
        if os.path.exists(full_path):
            raise StoreError('File already exists', detail=f"{bucket}/{path} exists",
                             constraint_violation=True)

        metadata = {
            'content_type': content_type,
            'size': len(data),
            'uploaded_by': str(owner_id),
            'uploaded_at': get_operating_time().isoformat(),
        }
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, 'xb') as handle:
                handle.write(data)
            with open(full_path + METADATA_SUFFIX, 'w') as handle:
                json.dump(metadata, handle)
        except FileExistsError:
            raise StoreError('File already exists', detail=f"{bucket}/{path} exists",
                             constraint_violation=True)
        except OSError as e:
            raise StoreError('File upload failed', detail=str(e)) from e

        logger.info(f"Stored {bucket}/{path} ({len(data)} bytes)")
        return {'path': path}

    def retrieve(self, bucket: str, path: str) -> Tuple[bytes, Optional[str]]:
        """
        Returns:
            tuple: (data: bytes, content_type: str)
        """
        full_path = self._resolve(bucket, path)
        if not os.path.isfile(full_path):
            raise NotFoundError(f"File {path} not found")

        try:
            with open(full_path, 'rb') as handle:
                data = handle.read()
            content_type = None
            if os.path.exists(full_path + METADATA_SUFFIX):
                with open(full_path + METADATA_SUFFIX) as handle:
                    content_type = json.load(handle).get('content_type')
        except (OSError, ValueError) as e:
            raise StoreError('File retrieval failed', detail=str(e)) from e
        return data, content_type

    def upload_file(self, owner_id, folder: str, upload: FileDescriptor,
                    bucket: str = DEFAULT_BUCKET) -> Dict[str, Any]:
        """Store a validated upload under a freshly generated secure path"""
        path = generate_secure_file_path(str(owner_id), folder, upload.name)
        return self.upload(bucket, path, upload.read(), upload.content_type, str(owner_id))
