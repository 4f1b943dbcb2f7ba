"""Asynchronous placement of file bytes.

These functions are the bodies of the Celery tasks in ``tasks.py``.
They run long after the request transaction is gone, so every status
write opens its own transaction. Status writes are best-effort: a lost
write is logged and left for the sweeper, never retried inline.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, final

from django.db import DatabaseError, transaction
from django.utils import timezone

from server.apps.files.infrastructure.storage import get_storage
from server.apps.files.models import File, UploadStatus

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True)
class PlacementResult:
    """Outcome of one placement or copy task.

    Attributes:
        file_id: Row the task worked on.
        status: Status the task tried to set.
        status_persisted: Whether the status write changed the row.
        error: Text of the placement error, if placement failed.
    """

    file_id: int
    status: str
    status_persisted: bool
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """JSON-friendly form stored by the Celery result backend."""
        return asdict(self)


def set_status(file_id: int, status: UploadStatus, **extra: Any) -> bool:
    """Finish a PENDING row in its own transaction.

    Only PENDING rows are updated, so a terminal status is never
    overwritten. Failures to write are logged and swallowed.

    Args:
        file_id: Row to update.
        status: Terminal status to set.
        extra: Additional columns to write along with the status.

    Returns:
        True if the row was updated.
    """
    try:
        with transaction.atomic():
            updated = File.objects.filter(
                id=file_id,
                upload_status=UploadStatus.PENDING,
            ).update(
                upload_status=status,
                modified_at=timezone.now(),
                **extra,
            )
    except DatabaseError as error:
        logger.warning(
            'Failed to update upload status to %s for file %d: %s',
            status,
            file_id,
            error,
        )
        return False

    if not updated:
        logger.warning(
            'Upload status of file %d not updated to %s: row gone or not PENDING',
            file_id,
            status,
        )
    return bool(updated)


def place_staged_upload(
    file_id: int,
    staging_key: str,
    blob_key: str,
) -> PlacementResult:
    """Move staged bytes to their final key and complete the row.

    On failure the staged object is discarded and the row is marked
    FAILED.

    Args:
        file_id: Row of the upload.
        staging_key: Key of the staged bytes.
        blob_key: Final key recorded on the row.

    Returns:
        PlacementResult describing the outcome.
    """
    storage = get_storage()
    try:
        storage.commit(staging_key, blob_key)
    except Exception as error:
        logger.exception('Async placement failed for file %d', file_id)
        storage.discard_staged(staging_key)
        persisted = set_status(file_id, UploadStatus.FAILED)
        return PlacementResult(
            file_id=file_id,
            status=UploadStatus.FAILED.value,
            status_persisted=persisted,
            error=str(error),
        )

    persisted = set_status(file_id, UploadStatus.COMPLETED, staging_key='')
    logger.info('Upload placed: file %d -> %s', file_id, blob_key)
    return PlacementResult(
        file_id=file_id,
        status=UploadStatus.COMPLETED.value,
        status_persisted=persisted,
    )


def copy_blob(file_id: int, source_key: str, blob_key: str) -> PlacementResult:
    """Copy the bytes of a source blob for a PENDING copy row.

    Args:
        file_id: Row of the copy.
        source_key: Blob key of the source file.
        blob_key: Blob key recorded on the copy.

    Returns:
        PlacementResult describing the outcome.
    """
    storage = get_storage()
    try:
        storage.copy(source_key, blob_key)
    except Exception as error:
        logger.exception('Async copy failed for file %d', file_id)
        persisted = set_status(file_id, UploadStatus.FAILED)
        return PlacementResult(
            file_id=file_id,
            status=UploadStatus.FAILED.value,
            status_persisted=persisted,
            error=str(error),
        )

    persisted = set_status(file_id, UploadStatus.COMPLETED)
    logger.info('Copy placed: file %d -> %s', file_id, blob_key)
    return PlacementResult(
        file_id=file_id,
        status=UploadStatus.COMPLETED.value,
        status_persisted=persisted,
    )
