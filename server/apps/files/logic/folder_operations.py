"""Business logic for the folder tree.

Folders carry a materialized path of ancestor ids (``u7.f1.f2``).
Subtree operations never walk the tree: they issue one bulk statement
per table, scoped by path prefix, inside a single transaction.
"""

import logging
from dataclasses import dataclass, field
from typing import Final, final

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import CharField, Q, QuerySet, Value
from django.db.models.functions import Concat, Substr
from django.utils import timezone

from server.apps.files.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
)
from server.apps.files.infrastructure.metadata import validate_folder_name
from server.apps.files.logic.locking import lock_folders
from server.apps.files.models import (
    PATH_SEPARATOR,
    File,
    Folder,
    UploadStatus,
    folder_segment,
    is_under,
    tenant_prefix,
)

logger = logging.getLogger(__name__)

_ROOT_NAME: Final = 'root'


@final
@dataclass(frozen=True)
class FolderContents:
    """One page of the immediate children of a folder."""

    folder_id: int | None
    folder_name: str
    folders: list[Folder] = field(default_factory=list)
    files: list[File] = field(default_factory=list)


def get_default_page_size() -> int:
    """Get the listing page size used when none is requested.

    Returns:
        Page size from settings or default of 200.
    """
    return getattr(settings, 'STORAGE_LIST_DEFAULT_PAGE_SIZE', 200)


def get_max_page_size() -> int:
    """Get the largest listing page size a caller may request.

    Returns:
        Maximum page size from settings or default of 1000.
    """
    return getattr(settings, 'STORAGE_LIST_MAX_PAGE_SIZE', 1000)


def build_path(owner_id: int, folder_id: int, parent: Folder | None) -> str:
    """Compute the materialized path of a folder.

    Args:
        owner_id: Owner of the folder.
        folder_id: ID of the folder itself.
        parent: Parent folder, None for a root folder.

    Returns:
        Path such as 'u7.f1' (root) or 'u7.f1.f2' (child of f1).
    """
    base = tenant_prefix(owner_id) if parent is None else parent.path
    return f'{base}{PATH_SEPARATOR}{folder_segment(folder_id)}'


def subtree_filter(field_name: str, prefix: str) -> Q:
    """Match every path equal to or below a prefix.

    The separator is part of the LIKE pattern, so 'u1.f2' never
    matches 'u1.f23'.

    Args:
        field_name: Path column to filter on.
        prefix: Materialized path of the subtree root.

    Returns:
        Q object for the subtree.
    """
    return (
        Q(**{field_name: prefix})
        | Q(**{f'{field_name}__startswith': prefix + PATH_SEPARATOR})
    )


def replace_prefix(field_name: str, old_prefix: str, new_prefix: str) -> Concat:
    """Expression that swaps the leading prefix of a path column.

    Only valid on rows selected with ``subtree_filter(old_prefix)``.

    Args:
        field_name: Path column to rewrite.
        old_prefix: Prefix every matched row starts with.
        new_prefix: Replacement prefix.

    Returns:
        Database expression usable in ``QuerySet.update``.
    """
    return Concat(
        Value(new_prefix),
        Substr(field_name, len(old_prefix) + 1),
        output_field=CharField(),
    )


def get_folder(owner_id: int, folder_id: int) -> Folder:
    """Get a live folder owned by the user.

    Args:
        owner_id: Owner of the folder.
        folder_id: ID of the folder.

    Returns:
        Folder instance.

    Raises:
        NotFoundError: If the folder is missing, deleted or foreign.
    """
    try:
        return Folder.objects.get(
            id=folder_id,
            owner_id=owner_id,
            is_deleted=False,
        )
    except Folder.DoesNotExist as error:
        raise NotFoundError(f'Folder not found: {folder_id}') from error


def live_folders(owner_id: int, parent_id: int | None) -> QuerySet[Folder]:
    """Immediate live child folders of a parent (None = root)."""
    return Folder.objects.filter(
        owner_id=owner_id,
        parent_id=parent_id,
        is_deleted=False,
    )


def folder_name_taken(
    owner_id: int,
    parent_id: int | None,
    name: str,
    exclude_id: int | None = None,
) -> bool:
    """Check sibling-uniqueness of a folder name.

    Args:
        owner_id: Owner of the folders.
        parent_id: Parent to check in, None for the root.
        name: Candidate name.
        exclude_id: Folder to ignore (the one being renamed or moved).

    Returns:
        True if a live sibling already uses the name.
    """
    siblings = live_folders(owner_id, parent_id).filter(name=name)
    if exclude_id is not None:
        siblings = siblings.exclude(id=exclude_id)
    return siblings.exists()


def create_folder(
    owner_id: int,
    name: str,
    parent_id: int | None = None,
) -> Folder:
    """Create a folder and its materialized path.

    The path embeds the folder's own id, so the row is inserted
    first and patched with its path in the same transaction.
    No other transaction can see the path-less row.

    Args:
        owner_id: Owner of the new folder.
        name: Folder name.
        parent_id: Parent folder, None to create a root folder.

    Returns:
        Created Folder instance.

    Raises:
        InvalidInputError: If the name is malformed.
        NotFoundError: If the parent is missing or foreign.
        ConflictError: If a sibling with the same name exists.
    """
    validate_folder_name(name)

    with transaction.atomic():
        parent = None
        if parent_id is not None:
            # Locked so a concurrent move cannot change the prefix we copy
            parent = lock_folders(owner_id, parent_id)[parent_id]

        if folder_name_taken(owner_id, parent_id, name):
            raise ConflictError(name)

        try:
            with transaction.atomic():
                folder = Folder.objects.create(
                    owner_id=owner_id,
                    name=name,
                    parent=parent,
                    path='',
                )
        except IntegrityError as error:
            # Lost a race against a concurrent create of the same name
            raise ConflictError(name) from error

        folder.path = build_path(owner_id, folder.id, parent)
        folder.save(update_fields=['path'])

    logger.info(
        'Folder created: %s (ID: %d, path: %s)',
        name,
        folder.id,
        folder.path,
    )
    return folder


def rename_folder(owner_id: int, folder_id: int, new_name: str) -> Folder:
    """Rename a folder.

    The path encodes ids, not names, so neither the folder's path nor
    anything in its subtree changes.

    Args:
        owner_id: Owner of the folder.
        folder_id: ID of the folder to rename.
        new_name: New folder name.

    Returns:
        Updated Folder instance.

    Raises:
        InvalidInputError: If the name is malformed.
        NotFoundError: If the folder is missing or foreign.
        ConflictError: If a sibling already uses the name.
    """
    validate_folder_name(new_name)

    with transaction.atomic():
        folder = get_folder(owner_id, folder_id)
        if folder_name_taken(
            owner_id,
            folder.parent_id,
            new_name,
            exclude_id=folder.id,
        ):
            raise ConflictError(new_name)

        old_name = folder.name
        folder.name = new_name
        try:
            with transaction.atomic():
                folder.save(update_fields=['name', 'modified_at'])
        except IntegrityError as error:
            raise ConflictError(new_name) from error

    logger.info(
        'Folder renamed: %s -> %s (ID: %d)',
        old_name,
        new_name,
        folder_id,
    )
    return folder


def move_folder(
    owner_id: int,
    folder_id: int,
    target_folder_id: int | None = None,
) -> Folder:
    """Move a folder (with its whole subtree) under another parent.

    Only the moved folder and the destination are locked, in ascending
    id order. The old path is read while both locks are held, then the
    subtree is rewritten with two bulk statements in the same
    transaction: one for folder paths, one for the paths denormalized
    on files.

    Args:
        owner_id: Owner of both folders.
        folder_id: ID of the folder to move.
        target_folder_id: New parent, None to move to the root.

    Returns:
        The moved Folder with its new path.

    Raises:
        NotFoundError: If either folder is missing or foreign.
        InvalidOperationError: If the target is the folder itself or
            one of its descendants.
        ConflictError: If the target already has a folder with
            the same name.
    """
    lock_ids = [folder_id]
    if target_folder_id is not None:
        lock_ids.append(target_folder_id)

    with transaction.atomic():
        locked = lock_folders(owner_id, *lock_ids)
        folder = locked[folder_id]
        target = None
        if target_folder_id is not None:
            target = locked[target_folder_id]

        old_path = folder.path
        if target is not None and is_under(target.path, old_path):
            raise InvalidOperationError(
                'Cannot move folder into itself or its own descendant',
            )

        if folder.parent_id == target_folder_id:
            logger.debug('Folder %d already in place, nothing to move', folder_id)
            return folder

        if folder_name_taken(
            owner_id,
            target_folder_id,
            folder.name,
            exclude_id=folder.id,
        ):
            raise ConflictError(folder.name)

        new_path = build_path(owner_id, folder.id, target)

        folder.parent = target
        try:
            with transaction.atomic():
                folder.save(update_fields=['parent', 'modified_at'])
        except IntegrityError as error:
            raise ConflictError(folder.name) from error

        moved_folders = Folder.objects.filter(
            subtree_filter('path', old_path),
            owner_id=owner_id,
        ).update(path=replace_prefix('path', old_path, new_path))

        moved_files = File.objects.filter(
            subtree_filter('folder_path', old_path),
            owner_id=owner_id,
        ).update(
            folder_path=replace_prefix('folder_path', old_path, new_path),
        )

    logger.info(
        'Folder moved: %s -> %s (ID: %d, %d folders, %d files rewritten)',
        old_path,
        new_path,
        folder_id,
        moved_folders,
        moved_files,
    )
    folder.refresh_from_db()
    return folder


def delete_folder(owner_id: int, folder_id: int) -> int:
    """Soft delete a folder, its descendants and every file below it.

    All rows share one ``deleted_at`` stamp and are flagged by two bulk
    statements in one transaction, so no reader ever sees the folder
    deleted while something below it is still live.

    The folder row is locked first so a concurrent move cannot rewrite
    the subtree between reading the path and flagging the rows.

    Args:
        owner_id: Owner of the folder.
        folder_id: ID of the folder to delete.

    Returns:
        Number of folders soft deleted (the folder included).

    Raises:
        NotFoundError: If the folder is missing or foreign.
    """
    with transaction.atomic():
        folder = lock_folders(owner_id, folder_id)[folder_id]
        deleted_at = timezone.now()

        deleted_folders = Folder.objects.filter(
            subtree_filter('path', folder.path),
            owner_id=owner_id,
            is_deleted=False,
        ).update(is_deleted=True, deleted_at=deleted_at)

        deleted_files = File.objects.filter(
            subtree_filter('folder_path', folder.path),
            owner_id=owner_id,
            is_deleted=False,
        ).update(is_deleted=True, deleted_at=deleted_at)

    logger.info(
        'Folder deleted: %s (ID: %d, %d folders, %d files)',
        folder.path,
        folder_id,
        deleted_folders,
        deleted_files,
    )
    return deleted_folders


def list_contents(
    owner_id: int,
    folder_id: int | None = None,
    page: int = 0,
    size: int | None = None,
) -> FolderContents:
    """List the immediate children of a folder.

    Only live folders and live COMPLETED files are listed; both are
    ordered by name and paginated independently with the same window.

    Args:
        owner_id: Owner of the folder.
        folder_id: Folder to list, None for the root.
        page: Zero-based page number.
        size: Page size, clamped to [1, max page size].

    Returns:
        FolderContents with one page of folders and files.

    Raises:
        NotFoundError: If the folder is missing or foreign.
    """
    if size is None:
        size = get_default_page_size()
    size = min(max(size, 1), get_max_page_size())
    offset = max(page, 0) * size

    folder_name = _ROOT_NAME
    if folder_id is not None:
        folder_name = get_folder(owner_id, folder_id).name

    folders = live_folders(owner_id, folder_id).order_by('name', 'id')
    files = File.objects.filter(
        owner_id=owner_id,
        folder_id=folder_id,
        is_deleted=False,
        upload_status=UploadStatus.COMPLETED,
    ).order_by('original_name', 'id')

    return FolderContents(
        folder_id=folder_id,
        folder_name=folder_name,
        folders=list(folders[offset:offset + size]),
        files=list(files[offset:offset + size]),
    )
