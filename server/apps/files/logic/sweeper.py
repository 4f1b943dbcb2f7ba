"""Retention and recovery sweeper.

Runs periodically (Celery beat) and reconciles metadata with the blob
store in three independent passes:

1. Recover uploads stuck in PENDING/FAILED whose blob exists. This
   repairs crashes between byte placement and the status write.
2. Purge uploads still unresolved after twice the recovery window.
   Doubling the window keeps the purge clear of pass 1.
3. Reclaim soft-deleted rows after the retention window: rows are
   hard-deleted first, blobs afterwards. A crash in between leaves
   orphan blobs, never rows pointing at missing blobs.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Final, final

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from server.apps.files.infrastructure.storage import get_storage
from server.apps.files.models import File, Folder, UploadStatus

logger = logging.getLogger(__name__)

_DEFAULT_BATCH_SIZE: Final = 1000
_UNRESOLVED: Final = (UploadStatus.PENDING, UploadStatus.FAILED)


@final
@dataclass
class ReclaimReport:
    """What the soft-delete reclamation pass removed."""

    files: int = 0
    folders: int = 0
    blobs_deleted: int = 0
    blobs_failed: int = 0


@final
@dataclass
class SweepReport:
    """Outcome of one sweep over all passes."""

    recovered: int = 0
    purged: int = 0
    reclaimed: ReclaimReport = field(default_factory=ReclaimReport)
    failed_passes: list[str] = field(default_factory=list)


def get_stale_upload_window() -> timedelta:
    """Get the age after which unresolved uploads are recovered.

    Returns:
        Window from settings or default of 60 minutes.
    """
    minutes = getattr(settings, 'STORAGE_STALE_UPLOAD_MINUTES', 60)
    return timedelta(minutes=minutes)


def get_delete_retention() -> timedelta:
    """Get how long soft-deleted rows are kept.

    Returns:
        Retention from settings or default of 30 minutes.
    """
    minutes = getattr(settings, 'STORAGE_DELETE_RETENTION_MINUTES', 30)
    return timedelta(minutes=minutes)


def recover_stale_uploads(
    now: datetime | None = None,
    dry_run: bool = False,
    batch_size: int = _DEFAULT_BATCH_SIZE,
) -> int:
    """Complete stale PENDING/FAILED uploads whose blob exists.

    Args:
        now: Reference time, defaults to the current time.
        dry_run: Only count what would be recovered.
        batch_size: Max rows to inspect.

    Returns:
        Number of rows recovered (or recoverable, in a dry run).
    """
    now = now or timezone.now()
    threshold = now - get_stale_upload_window()
    storage = get_storage()

    stale = File.objects.filter(
        upload_status__in=_UNRESOLVED,
        created_at__lt=threshold,
    ).order_by('created_at').values_list('id', 'blob_key')[:batch_size]

    recovered = 0
    for file_id, blob_key in stale:
        if not storage.exists(blob_key):
            continue
        if dry_run:
            recovered += 1
            continue

        updated = File.objects.filter(
            id=file_id,
            upload_status__in=_UNRESOLVED,
        ).update(
            upload_status=UploadStatus.COMPLETED,
            staging_key='',
            modified_at=now,
        )
        if updated:
            recovered += 1
            logger.info('Recovered stale upload: %s (ID: %d)', blob_key, file_id)

    return recovered


def purge_stale_uploads(
    now: datetime | None = None,
    dry_run: bool = False,
    batch_size: int = _DEFAULT_BATCH_SIZE,
) -> int:
    """Hard-delete uploads unresolved for twice the recovery window.

    Staged objects left by these uploads are discarded after the rows
    are gone.

    Args:
        now: Reference time, defaults to the current time.
        dry_run: Only count what would be purged.
        batch_size: Max rows to purge.

    Returns:
        Number of rows purged (or purgeable, in a dry run).
    """
    now = now or timezone.now()
    threshold = now - 2 * get_stale_upload_window()

    candidates = list(
        File.objects.filter(
            upload_status__in=_UNRESOLVED,
            created_at__lt=threshold,
        ).order_by('created_at').values_list('id', 'staging_key')[:batch_size],
    )
    if dry_run or not candidates:
        return len(candidates)

    with transaction.atomic():
        _, per_model = File.objects.filter(
            id__in=[file_id for file_id, _ in candidates],
            upload_status__in=_UNRESOLVED,
        ).delete()
    purged = per_model.get(File._meta.label, 0)

    storage = get_storage()
    for _, staging_key in candidates:
        if staging_key:
            storage.discard_staged(staging_key)

    if purged:
        logger.info('Cleaned %d stale upload records', purged)
    return purged


def _delete_empty_folders(folder_ids: list[int]) -> int:
    """Hard-delete folders that no longer hold any rows, leaves first.

    Deleting a folder cascades to its files and subfolders. A folder
    that still has file rows (outside this batch) or child folders is
    kept for a later sweep, so no file row ever disappears without its
    blob key having been collected.

    Args:
        folder_ids: Candidate folders.

    Returns:
        Number of folders deleted.
    """
    remaining = set(folder_ids)
    deleted = 0
    while remaining:
        leaves = set(
            Folder.objects.filter(
                id__in=remaining,
                files__isnull=True,
                children__isnull=True,
            ).values_list('id', flat=True),
        )
        if not leaves:
            break
        Folder.objects.filter(id__in=leaves).delete()
        remaining -= leaves
        deleted += len(leaves)
    return deleted


def reclaim_deleted(
    now: datetime | None = None,
    dry_run: bool = False,
    batch_size: int = _DEFAULT_BATCH_SIZE,
) -> ReclaimReport:
    """Hard-delete soft-deleted rows past retention, then their blobs.

    Args:
        now: Reference time, defaults to the current time.
        dry_run: Only count what would be reclaimed.
        batch_size: Max rows per table to reclaim.

    Returns:
        ReclaimReport with row and blob counts.
    """
    now = now or timezone.now()
    threshold = now - get_delete_retention()

    files = list(
        File.objects.filter(
            is_deleted=True,
            deleted_at__lt=threshold,
        ).order_by('deleted_at').values_list('id', 'blob_key')[:batch_size],
    )
    folder_ids = list(
        Folder.objects.filter(
            is_deleted=True,
            deleted_at__lt=threshold,
        ).order_by('deleted_at').values_list('id', flat=True)[:batch_size],
    )
    if dry_run:
        return ReclaimReport(files=len(files), folders=len(folder_ids))

    report = ReclaimReport()
    blob_keys = [blob_key for _, blob_key in files]

    # Metadata goes first: a crash after this block leaves orphan blobs only
    with transaction.atomic():
        _, deleted_files = File.objects.filter(
            id__in=[file_id for file_id, _ in files],
        ).delete()
        report.files = deleted_files.get(File._meta.label, 0)
        report.folders = _delete_empty_folders(folder_ids)

    storage = get_storage()
    for blob_key in blob_keys:
        try:
            if storage.delete(blob_key):
                report.blobs_deleted += 1
        except Exception:
            logger.warning(
                'Failed to delete blob (orphaned): %s',
                blob_key,
                exc_info=True,
            )
            report.blobs_failed += 1

    if report.files or report.folders:
        logger.info(
            'Cleanup: %d files, %d folders hard-deleted, %d blobs removed',
            report.files,
            report.folders,
            report.blobs_deleted,
        )
    return report


def run_sweep(now: datetime | None = None, dry_run: bool = False) -> SweepReport:
    """Run all sweeper passes.

    Passes are independent: a failing pass is logged and the
    remaining passes still run.

    Args:
        now: Reference time, defaults to the current time.
        dry_run: Only count what each pass would do.

    Returns:
        SweepReport for the whole sweep.
    """
    now = now or timezone.now()
    report = SweepReport()

    try:
        report.recovered = recover_stale_uploads(now, dry_run=dry_run)
    except Exception:
        logger.exception('Stale upload recovery failed')
        report.failed_passes.append('recover')

    try:
        report.purged = purge_stale_uploads(now, dry_run=dry_run)
    except Exception:
        logger.exception('Stale upload purge failed')
        report.failed_passes.append('purge')

    try:
        report.reclaimed = reclaim_deleted(now, dry_run=dry_run)
    except Exception:
        logger.exception('Soft-delete reclamation failed')
        report.failed_passes.append('reclaim')

    return report
