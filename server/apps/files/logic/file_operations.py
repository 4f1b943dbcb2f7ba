"""Business logic for file operations.

Uploads and copies follow a write-ahead pattern: the metadata row is
committed as PENDING first, and the bytes are placed by a Celery task
that is only enqueued once the enclosing transaction has committed.
Until placement finishes the file is invisible to downloads.
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import IO, Any, BinaryIO, final

from django.core.files.base import File as DjangoFile
from django.db import IntegrityError, transaction
from django.utils import timezone

from server.apps.files import tasks
from server.apps.files.exceptions import (
    ConflictError,
    InternalError,
    NotFoundError,
    StorageIOError,
)
from server.apps.files.infrastructure.metadata import (
    calculate_checksum,
    detect_content_type,
    get_file_size,
    sanitize_filename,
)
from server.apps.files.infrastructure.storage import (
    generate_blob_key,
    get_storage,
)
from server.apps.files.logic.locking import lock_folders
from server.apps.files.models import File, Folder, UploadStatus

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True)
class Download:
    """A file ready to be streamed to its owner."""

    file: File
    stream: IO[Any]


def _resolve_folder(
    owner_id: int,
    folder_id: int | None,
) -> tuple[Folder | None, str | None]:
    """Lock a target folder and read its current path (None = root).

    The row stays locked until the enclosing transaction ends, so a
    concurrent folder move either rewrites the new row too or has
    already committed the path read here. Must run inside
    ``transaction.atomic()``.
    """
    if folder_id is None:
        return None, None
    folder = lock_folders(owner_id, folder_id)[folder_id]
    return folder, folder.path


def file_name_taken(
    owner_id: int,
    folder_id: int | None,
    name: str,
    exclude_id: int | None = None,
) -> bool:
    """Check sibling-uniqueness of a file name.

    Args:
        owner_id: Owner of the files.
        folder_id: Folder to check in, None for the root.
        name: Candidate filename.
        exclude_id: File to ignore (the one being moved).

    Returns:
        True if a live file in the folder already uses the name.
    """
    siblings = File.objects.filter(
        owner_id=owner_id,
        folder_id=folder_id,
        original_name=name,
        is_deleted=False,
    )
    if exclude_id is not None:
        siblings = siblings.exclude(id=exclude_id)
    return siblings.exists()


def _insert_pending(**fields: Any) -> File:
    """Insert a PENDING file row.

    The unique constraint on live sibling names is the final arbiter
    when two uploads of the same name pass the pre-check concurrently:
    the loser gets ConflictError.

    Raises:
        ConflictError: If the row violates a unique constraint.
    """
    try:
        with transaction.atomic():
            return File.objects.create(
                upload_status=UploadStatus.PENDING,
                blob_key=generate_blob_key(),
                **fields,
            )
    except IntegrityError as error:
        raise ConflictError(fields['original_name']) from error


def get_file(owner_id: int, file_id: int) -> File:
    """Get metadata of a live file owned by the user, in any status.

    Args:
        owner_id: Owner of the file.
        file_id: ID of the file.

    Returns:
        File instance.

    Raises:
        NotFoundError: If the file is missing, deleted or foreign.
    """
    try:
        return File.objects.get(id=file_id, owner_id=owner_id, is_deleted=False)
    except File.DoesNotExist as error:
        raise NotFoundError(f'File not found: {file_id}') from error


def upload_file(  # noqa: WPS211
    owner_id: int,
    file_obj: BinaryIO | DjangoFile,
    claimed_name: str | None,
    claimed_content_type: str | None = None,
    folder_id: int | None = None,
) -> File:
    """Accept an upload and schedule placement of its bytes.

    Transaction safety: the PENDING row is inserted and the bytes are
    staged inside one transaction. The placement task is registered
    with ``transaction.on_commit`` and is only enqueued once the row is
    durable, so a worker never acts on a row that could still be
    rolled back. The PENDING row is returned before placement runs.

    Args:
        owner_id: Owner of the file.
        file_obj: File-like object with the uploaded bytes.
        claimed_name: Filename sent by the client.
        claimed_content_type: Content type sent by the client.
        folder_id: Target folder, None for the root.

    Returns:
        The PENDING File instance.

    Raises:
        InvalidInputError: If the filename is unusable.
        NotFoundError: If the folder is missing or foreign.
        ConflictError: If the folder already has a file with this name.
        StorageIOError: If the bytes could not be staged. The row is
            kept in FAILED state.
    """
    original_name = sanitize_filename(claimed_name)
    content_type = detect_content_type(original_name, claimed_content_type)

    logger.info('Calculating metadata for upload: %s', original_name)
    checksum = calculate_checksum(file_obj)
    file_size = get_file_size(file_obj)

    storage = get_storage()
    staging_failed = False

    with transaction.atomic():
        folder, folder_path = _resolve_folder(owner_id, folder_id)

        if file_name_taken(owner_id, folder_id, original_name):
            raise ConflictError(original_name)

        file_instance = _insert_pending(
            owner_id=owner_id,
            original_name=original_name,
            folder=folder,
            folder_path=folder_path,
            size_bytes=file_size,
            content_type=content_type,
            checksum_sha256=checksum,
        )

        try:
            staging_key = storage.stage(file_obj)
        except Exception:
            logger.exception(
                'Failed to stage upload, marking FAILED: %s (ID: %d)',
                original_name,
                file_instance.id,
            )
            file_instance.upload_status = UploadStatus.FAILED
            file_instance.save(update_fields=['upload_status', 'modified_at'])
            staging_failed = True
        else:
            file_instance.staging_key = staging_key
            file_instance.save(update_fields=['staging_key', 'modified_at'])
            transaction.on_commit(partial(
                tasks.place_staged_upload.delay,
                file_instance.id,
                staging_key,
                file_instance.blob_key,
            ))

    if staging_failed:
        raise StorageIOError(file_instance.id)

    logger.info(
        'Upload accepted: %s (ID: %d, size: %d, type: %s)',
        original_name,
        file_instance.id,
        file_size,
        content_type,
    )
    return file_instance


def get_for_download(owner_id: int, file_id: int) -> Download:
    """Open a file for download.

    PENDING and FAILED files are reported exactly like missing ones.

    Args:
        owner_id: Owner of the file.
        file_id: ID of the file.

    Returns:
        Download with the file metadata and an open blob stream.

    Raises:
        NotFoundError: If the file is missing, foreign, deleted or
            not COMPLETED.
        InternalError: If a COMPLETED file has no blob.
    """
    file_instance = get_file(owner_id, file_id)
    if not file_instance.is_available:
        logger.debug(
            'Download refused, file %d is %s',
            file_id,
            file_instance.upload_status,
        )
        raise NotFoundError(f'File not found: {file_id}')

    storage = get_storage()
    if not storage.exists(file_instance.blob_key):
        logger.error(
            'Completed file has no blob: %s (ID: %d)',
            file_instance.blob_key,
            file_id,
        )
        raise InternalError(f'Content of file {file_id} is missing')

    return Download(
        file=file_instance,
        stream=storage.open(file_instance.blob_key, 'rb'),
    )


def move_file(
    owner_id: int,
    file_id: int,
    target_folder_id: int | None = None,
) -> File:
    """Move a file to another folder.

    Only metadata changes: the blob key stays the same.

    Args:
        owner_id: Owner of the file.
        file_id: ID of the file to move.
        target_folder_id: Destination folder, None for the root.

    Returns:
        Updated File instance.

    Raises:
        NotFoundError: If the file or the folder is missing or foreign.
        ConflictError: If the destination has a file with the same name.
    """
    with transaction.atomic():
        file_instance = get_file(owner_id, file_id)
        folder, folder_path = _resolve_folder(owner_id, target_folder_id)

        if file_instance.folder_id == target_folder_id:
            return file_instance

        if file_name_taken(
            owner_id,
            target_folder_id,
            file_instance.original_name,
            exclude_id=file_instance.id,
        ):
            raise ConflictError(file_instance.original_name)

        file_instance.folder = folder
        file_instance.folder_path = folder_path
        try:
            with transaction.atomic():
                file_instance.save(
                    update_fields=['folder', 'folder_path', 'modified_at'],
                )
        except IntegrityError as error:
            raise ConflictError(file_instance.original_name) from error

    logger.info(
        'File moved: %s (ID: %d) -> folder %s',
        file_instance.original_name,
        file_id,
        target_folder_id,
    )
    return file_instance


def copy_file(
    owner_id: int,
    file_id: int,
    target_folder_id: int | None = None,
) -> File:
    """Copy a file to another folder.

    The copy gets its own PENDING row and blob key; the bytes are
    copied in the blob store after commit, same as an upload.

    Args:
        owner_id: Owner of the file.
        file_id: ID of the source file.
        target_folder_id: Destination folder, None for the root.

    Returns:
        The PENDING File instance of the copy.

    Raises:
        NotFoundError: If the source is missing, foreign or not
            COMPLETED, or the folder is missing or foreign.
        ConflictError: If the destination has a file with the same name.
    """
    with transaction.atomic():
        source = get_file(owner_id, file_id)
        if not source.is_available:
            raise NotFoundError(f'File not found: {file_id}')

        folder, folder_path = _resolve_folder(owner_id, target_folder_id)
        if file_name_taken(owner_id, target_folder_id, source.original_name):
            raise ConflictError(source.original_name)

        copy = _insert_pending(
            owner_id=owner_id,
            original_name=source.original_name,
            folder=folder,
            folder_path=folder_path,
            size_bytes=source.size_bytes,
            content_type=source.content_type,
            checksum_sha256=source.checksum_sha256,
        )
        transaction.on_commit(partial(
            tasks.copy_blob.delay,
            copy.id,
            source.blob_key,
            copy.blob_key,
        ))

    logger.info(
        'File copy accepted: %s (ID: %d -> %d)',
        source.original_name,
        source.id,
        copy.id,
    )
    return copy


def delete_file(owner_id: int, file_id: int) -> File:
    """Soft delete a single file.

    The row and its blob are reclaimed by the sweeper once the
    retention window has passed.

    Args:
        owner_id: Owner of the file.
        file_id: ID of the file to delete.

    Returns:
        Updated File instance.

    Raises:
        NotFoundError: If the file is missing, deleted or foreign.
    """
    with transaction.atomic():
        file_instance = get_file(owner_id, file_id)
        file_instance.is_deleted = True
        file_instance.deleted_at = timezone.now()
        file_instance.save(
            update_fields=['is_deleted', 'deleted_at', 'modified_at'],
        )

    logger.info(
        'File deleted: %s (ID: %d)',
        file_instance.original_name,
        file_id,
    )
    return file_instance
