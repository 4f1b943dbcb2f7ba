"""Database models for files app."""

from typing import ClassVar, Final, final, override

from django.conf import settings
from django.db import models

from server.apps.files.infrastructure.metadata import (
    FILE_NAME_MAX_LENGTH,
    FOLDER_NAME_MAX_LENGTH,
)

# Constants for field max lengths
_PATH_MAX_LENGTH: Final = 2048
_CONTENT_TYPE_MAX_LENGTH: Final = 255
_CHECKSUM_MAX_LENGTH: Final = 64  # SHA256 hex length
_BLOB_KEY_MAX_LENGTH: Final = 64
_STAGING_KEY_MAX_LENGTH: Final = 128
_STATUS_MAX_LENGTH: Final = 16

# Materialized path layout: u{owner_id}.f{folder_id}.f{folder_id}...
PATH_SEPARATOR: Final = '.'
_TENANT_SEGMENT_PREFIX: Final = 'u'
_FOLDER_SEGMENT_PREFIX: Final = 'f'


def tenant_prefix(owner_id: int) -> str:
    """Path prefix shared by every folder of an owner.

    Example: 7 -> 'u7'
    """
    return f'{_TENANT_SEGMENT_PREFIX}{owner_id}'


def folder_segment(folder_id: int) -> str:
    """Path segment encoding a folder id.

    Example: 12 -> 'f12'
    """
    return f'{_FOLDER_SEGMENT_PREFIX}{folder_id}'


def is_under(path: str, prefix: str) -> bool:
    """Check prefix containment of materialized paths.

    A path is under a prefix when it equals the prefix or
    continues it after a separator: 'u1.f2.f3' is under 'u1.f2',
    'u1.f23' is not.
    """
    return path == prefix or path.startswith(prefix + PATH_SEPARATOR)


class UploadStatus(models.TextChoices):
    """Placement state of a file's bytes.

    PENDING is the only non-terminal state.
    """

    PENDING = 'PENDING', 'Pending'
    COMPLETED = 'COMPLETED', 'Completed'
    FAILED = 'FAILED', 'Failed'


@final
class Folder(models.Model):
    """Folder in an owner's tree.

    The folder hierarchy is stored twice: as the ``parent`` reference
    and as a materialized ``path`` of ancestor ids. The path never
    contains names, so renaming a folder leaves it untouched, while
    moving a folder rewrites the path of its whole subtree.
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='folders',
        db_index=True,
    )

    name = models.CharField(max_length=FOLDER_NAME_MAX_LENGTH)

    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        related_name='children',
        null=True,
        blank=True,
        help_text='Empty for root folders',
    )

    path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        db_index=True,
        help_text='Materialized path of ancestor ids: u{owner}.f{id}...',
    )

    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Folder'  # type: ignore[mutable-override]
        verbose_name_plural = 'Folders'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['name']

        constraints: ClassVar[list[models.BaseConstraint]] = [
            # NULL parents never collide in a plain unique index,
            # so root folders get their own constraint
            models.UniqueConstraint(
                fields=['owner', 'parent', 'name'],
                condition=models.Q(is_deleted=False, parent__isnull=False),
                name='folders_live_sibling_name_unique',
            ),
            models.UniqueConstraint(
                fields=['owner', 'name'],
                condition=models.Q(is_deleted=False, parent__isnull=True),
                name='folders_live_root_name_unique',
            ),
        ]

        indexes: ClassVar[list[models.Index]] = [
            models.Index(
                fields=['owner', 'parent', 'is_deleted'],
                name='folders_owner_parent_idx',
            ),
            models.Index(
                fields=['is_deleted', 'deleted_at'],
                name='folders_deleted_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.name} ({self.path})'


@final
class File(models.Model):
    """Metadata of a file whose bytes live in the blob store.

    The row is written before the bytes are placed: ``upload_status``
    tells whether ``blob_key`` already points at durable content.
    ``folder_path`` is a copy of the owning folder's path, kept in sync
    by folder moves so that subtree queries need no joins.
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='files',
        db_index=True,
    )

    original_name = models.CharField(max_length=FILE_NAME_MAX_LENGTH)

    folder = models.ForeignKey(
        Folder,
        on_delete=models.CASCADE,
        related_name='files',
        null=True,
        blank=True,
        help_text='Empty for files in the root',
    )

    folder_path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        null=True,
        blank=True,
        db_index=True,
        help_text='Copy of folder.path at the time of the last write',
    )

    size_bytes = models.BigIntegerField(help_text='File size in bytes')

    content_type = models.CharField(max_length=_CONTENT_TYPE_MAX_LENGTH)

    checksum_sha256 = models.CharField(
        max_length=_CHECKSUM_MAX_LENGTH,
        help_text='SHA256 hash for integrity verification',
    )

    blob_key = models.CharField(
        max_length=_BLOB_KEY_MAX_LENGTH,
        unique=True,
        help_text='Key of the final blob in storage',
    )

    staging_key = models.CharField(
        max_length=_STAGING_KEY_MAX_LENGTH,
        blank=True,
        default='',
        help_text='Key of the staged upload, cleared once placed',
    )

    upload_status = models.CharField(
        max_length=_STATUS_MAX_LENGTH,
        choices=UploadStatus.choices,
        default=UploadStatus.PENDING,
        db_index=True,
    )

    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['original_name']

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.UniqueConstraint(
                fields=['owner', 'folder', 'original_name'],
                condition=models.Q(is_deleted=False, folder__isnull=False),
                name='files_live_folder_name_unique',
            ),
            models.UniqueConstraint(
                fields=['owner', 'original_name'],
                condition=models.Q(is_deleted=False, folder__isnull=True),
                name='files_live_root_name_unique',
            ),
        ]

        indexes: ClassVar[list[models.Index]] = [
            # Optimize directory listing queries
            models.Index(
                fields=['owner', 'folder', 'is_deleted', 'upload_status'],
                name='files_owner_folder_idx',
            ),
            # Optimize sweeper scans
            models.Index(
                fields=['upload_status', 'created_at'],
                name='files_status_created_idx',
            ),
            models.Index(
                fields=['is_deleted', 'deleted_at'],
                name='files_deleted_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.original_name} [{self.upload_status}]'

    @property
    def is_available(self) -> bool:
        """Whether the file may be served to its owner."""
        return (
            not self.is_deleted
            and self.upload_status == UploadStatus.COMPLETED
        )
