"""Celery tasks of the files app.

Tasks are thin: the work lives in ``logic`` so it can be called and
tested without a broker.
"""

import logging
from dataclasses import asdict
from typing import Any

from celery import shared_task

from server.apps.files.logic import placement, sweeper

logger = logging.getLogger(__name__)


@shared_task(name='files.place_staged_upload')
def place_staged_upload(
    file_id: int,
    staging_key: str,
    blob_key: str,
) -> dict[str, Any]:
    """Move staged upload bytes to their final key."""
    return placement.place_staged_upload(file_id, staging_key, blob_key).as_dict()


@shared_task(name='files.copy_blob')
def copy_blob(file_id: int, source_key: str, blob_key: str) -> dict[str, Any]:
    """Copy the bytes of an existing blob for a copied file."""
    return placement.copy_blob(file_id, source_key, blob_key).as_dict()


@shared_task(name='files.sweep_storage')
def sweep_storage(dry_run: bool = False) -> dict[str, Any]:
    """Periodic recovery, purge and reclamation sweep."""
    report = sweeper.run_sweep(dry_run=dry_run)
    if report.failed_passes:
        logger.warning('Sweep finished with failed passes: %s', report.failed_passes)
    return asdict(report)
