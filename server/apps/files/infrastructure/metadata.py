"""Metadata extraction and name validation utilities for files."""

import hashlib
import mimetypes
import re
from typing import BinaryIO, Final

from django.core.files.base import File as DjangoFile

from server.apps.files.exceptions import InvalidInputError

_CHUNK_SIZE: Final = 8192  # 8KB chunks for checksum calculation
_DEFAULT_CONTENT_TYPE: Final = 'application/octet-stream'

FOLDER_NAME_MAX_LENGTH: Final = 255
FILE_NAME_MAX_LENGTH: Final = 500

_RESERVED_NAMES: Final = frozenset(('.', '..'))
_SEPARATORS: Final = ('/', '\\')
_CONTROL_CHARACTERS: Final = re.compile(r'[\x00-\x1f\x7f]')


def validate_folder_name(name: str | None) -> str:
    """Validate a folder name.

    Folder names are stored as given: they are never part of a
    materialized path, but they must still be safe to show as a path
    component to clients.

    Args:
        name: Proposed folder name.

    Returns:
        The validated name.

    Raises:
        InvalidInputError: If the name is blank, reserved, too long
            or contains separators or control characters.
    """
    if name is None or not name.strip():
        raise InvalidInputError('Folder name is required')
    if name in _RESERVED_NAMES:
        raise InvalidInputError(f'Invalid folder name: {name}')
    if any(separator in name for separator in _SEPARATORS):
        raise InvalidInputError('Folder name cannot contain path separators')
    if _CONTROL_CHARACTERS.search(name):
        raise InvalidInputError('Folder name contains control characters')
    if len(name) > FOLDER_NAME_MAX_LENGTH:
        raise InvalidInputError(
            f'Folder name is longer than {FOLDER_NAME_MAX_LENGTH} characters',
        )
    return name


def sanitize_filename(original: str | None) -> str:
    """Turn a client-supplied filename into a safe display name.

    Directory components are dropped (both separators count),
    control characters are stripped and overlong names are cut
    to the maximum length keeping their extension.

    Example: 'C:\\Users\\me\\report.pdf' -> 'report.pdf'

    Args:
        original: Filename claimed by the client.

    Returns:
        Sanitized filename.

    Raises:
        InvalidInputError: If nothing usable is left.
    """
    if original is None or not original.strip():
        raise InvalidInputError('Filename is required')

    sanitized = original.replace('\\', '/').rsplit('/', 1)[-1]
    sanitized = _CONTROL_CHARACTERS.sub('', sanitized)
    if not sanitized.strip() or sanitized in _RESERVED_NAMES:
        raise InvalidInputError(f'Invalid filename: {original!r}')

    if len(sanitized) > FILE_NAME_MAX_LENGTH:
        extension = ''
        dot_index = sanitized.rfind('.')
        if dot_index > 0 and len(sanitized) - dot_index < FILE_NAME_MAX_LENGTH:
            extension = sanitized[dot_index:]
        keep = FILE_NAME_MAX_LENGTH - len(extension)
        sanitized = sanitized[:keep] + extension

    return sanitized


def detect_content_type(filename: str, claimed_type: str | None = None) -> str:
    """Resolve the content type of an upload.

    The server-side guess from the filename extension wins, the
    type claimed by the client is the fallback.

    Args:
        filename: Sanitized filename with extension.
        claimed_type: Content type sent by the client, if any.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type is not None:
        return mime_type
    if claimed_type and claimed_type.strip():
        return claimed_type.strip()
    return _DEFAULT_CONTENT_TYPE


def calculate_checksum(file_obj: BinaryIO | DjangoFile) -> str:
    """Calculate SHA256 checksum of file.

    Reads file in chunks to handle large files efficiently.
    Resets file pointer to beginning after calculation.

    Args:
        file_obj: File-like object to checksum.

    Returns:
        Hex-encoded SHA256 hash string.
    """
    sha256_hash = hashlib.sha256()

    file_obj.seek(0)
    for chunk in iter(lambda: file_obj.read(_CHUNK_SIZE), b''):
        sha256_hash.update(chunk)
    file_obj.seek(0)

    return sha256_hash.hexdigest()


def get_file_size(file_obj: BinaryIO | DjangoFile) -> int:
    """Get file size from file object.

    Args:
        file_obj: File-like object.

    Returns:
        File size in bytes.
    """
    if hasattr(file_obj, 'size'):
        return file_obj.size
    file_size = len(file_obj.read())
    file_obj.seek(0)
    return file_size
