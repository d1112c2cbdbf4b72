from __future__ import annotations
"""Opaque blob storage for order attachments and completion images.

Rows only keep metadata and the URL returned by ``put``; the bytes live in the
store. ``LocalBlobStore`` writes below ``UPLOAD_DIR`` and is served by the
``/blobs/<key>`` route.
"""
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from flask import current_app
from werkzeug.utils import secure_filename

from app.config.ordering import EXTENSION_TYPES
from app.errors import ValidationError, InfrastructureError
from app.utils.clock import utcnow


@dataclass(frozen=True)
class Upload:
    filename: str
    content_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_file_storage(cls, fs) -> 'Upload':
        return cls(filename=fs.filename or '', content_type=fs.mimetype or None, data=fs.read())


class LocalBlobStore:
    def __init__(self, root: str, base_url: str = '/blobs'):
        self.root = Path(root)
        self.base_url = base_url.rstrip('/')

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValidationError('invalid blob key')
        return path

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            current_app.logger.exception('blob write failed key=%s', key)
            raise InfrastructureError('File storage unavailable') from e
        return self.url_for(key)

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError:
            current_app.logger.warning('blob delete failed key=%s', key)
            return False
        return True

    def url_for(self, key: str) -> str:
        return f'{self.base_url}/{key}'

    def key_from_url(self, url: Optional[str]) -> Optional[str]:
        prefix = self.base_url + '/'
        return url[len(prefix):] if url and url.startswith(prefix) else None


def get_blob_store() -> LocalBlobStore:
    return current_app.extensions['blob_store']


def detect_content_type(upload: Upload) -> Optional[str]:
    """Declared MIME type, falling back to the file extension."""
    if upload.content_type and upload.content_type != 'application/octet-stream':
        return upload.content_type.lower()
    ext = upload.filename.rsplit('.', 1)[-1].lower() if '.' in upload.filename else ''
    return EXTENSION_TYPES.get(ext)


def validate_upload(upload: Upload, allowed_types: Iterable[str], max_bytes: int, label: str = 'file') -> str:
    content_type = detect_content_type(upload)
    if content_type not in allowed_types:
        raise ValidationError(f'{label} "{upload.filename}" has unsupported type {content_type or "unknown"}')
    if upload.size == 0:
        raise ValidationError(f'{label} "{upload.filename}" is empty')
    if upload.size > max_bytes:
        raise ValidationError(f'{label} "{upload.filename}" exceeds {max_bytes // (1024 * 1024)} MB')
    return content_type


def build_blob_key(prefix: str, filename: str) -> str:
    """'<prefix>/<epoch ms>-<random>-<safe name>', unique per upload."""
    safe = secure_filename(filename) or 'upload.bin'
    stamp = int(utcnow().timestamp() * 1000)
    return f'{prefix}/{stamp}-{secrets.token_hex(4)}-{safe[:120]}'
