"""Blob store backed by S3-compatible storage."""

import logging
import uuid
from typing import Any, Final, final, override

from django.core.files.storage import default_storage
from storages.backends.s3 import S3Storage

logger = logging.getLogger(__name__)

# Staged uploads live next to the final blobs, under their own prefix
STAGING_PREFIX: Final = 'staging/'


def generate_blob_key() -> str:
    """Generate a fresh, unguessable key for a final blob.

    Returns:
        32 hex characters of a random UUID.
    """
    return uuid.uuid4().hex


@final
class FileStorage(S3Storage):
    """Custom S3 storage backend used as the service's blob store.

    Extends django-storages S3Storage with:
    - A staging area for uploads that are not placed yet
    - Server-side commit and copy of blobs
    - Enhanced error logging
    """

    @override
    def save(  # noqa: WPS211
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save file to S3 with error handling and logging.

        Args:
            name: Storage key for the file.
            content: File content (file-like object).
            max_length: Optional maximum length for the filename.

        Returns:
            Actual storage key used.

        Raises:
            Exception: If S3 upload fails.
        """
        try:
            logger.info('Uploading object to storage: %s', name)
            saved_name = super().save(name, content, max_length)
            logger.info('Successfully uploaded object: %s', saved_name)
        except Exception:
            logger.exception('Failed to upload object to storage: %s', name)
            raise
        else:
            return saved_name

    @override
    def delete(self, name: str) -> bool:  # type: ignore[override]
        """Delete an object from S3 with error handling and logging.

        Args:
            name: Storage key of the object to delete.

        Returns:
            True if the object existed before deletion.

        Raises:
            Exception: If S3 delete fails.
        """
        try:
            logger.info('Deleting object from storage: %s', name)
            existed = self.exists(name)
            super().delete(name)
        except Exception:
            logger.exception('Failed to delete object from storage: %s', name)
            raise
        if existed:
            logger.info('Successfully deleted object: %s', name)
        else:
            logger.warning('Object not found in storage: %s', name)
        return existed

    def stage(self, content: Any) -> str:
        """Write incoming bytes to the staging area.

        Args:
            content: File-like object with the uploaded bytes.

        Returns:
            Storage key of the staged object.

        Raises:
            Exception: If S3 upload fails.
        """
        staging_key = f'{STAGING_PREFIX}{uuid.uuid4().hex}'
        return self.save(staging_key, content)

    def commit(self, staging_key: str, blob_key: str) -> None:
        """Move a staged object to its final key.

        S3 doesn't support native rename, so this performs a server-side
        copy followed by deletion of the staged object. The final object
        appears atomically: readers see either nothing or the full blob.

        If the copy succeeds but the delete fails, the staged object is
        left behind as an orphan and the commit still counts as done.

        Args:
            staging_key: Key returned by ``stage``.
            blob_key: Final key of the blob.

        Raises:
            Exception: If the copy fails.
        """
        logger.info('Committing staged object: %s -> %s', staging_key, blob_key)
        self.copy(staging_key, blob_key)
        self.discard_staged(staging_key)

    def copy(self, source_key: str, blob_key: str) -> None:
        """Copy a blob server-side.

        Args:
            source_key: Key of the existing object.
            blob_key: Key of the new object.

        Raises:
            Exception: If copy fails.
        """
        try:
            logger.info('Copying object: %s -> %s', source_key, blob_key)
            copy_source = {
                'Bucket': self.bucket_name,
                'Key': source_key,
            }
            self.bucket.copy(copy_source, blob_key)
            logger.info('Copied object: %s -> %s', source_key, blob_key)
        except Exception:
            logger.exception('Copy failed: %s -> %s', source_key, blob_key)
            raise

    def discard_staged(self, staging_key: str) -> None:
        """Delete a staged object after a failed or finished placement.

        This is a best-effort operation - if deletion fails, the error
        is logged but not raised. Leftover staged objects are orphans
        that never back a metadata row.

        Args:
            staging_key: Key returned by ``stage``.
        """
        try:
            self.delete(staging_key)
        except Exception:
            logger.exception(
                'Failed to discard staged object (orphaned): %s',
                staging_key,
            )


def get_storage() -> FileStorage:
    """Get the configured default storage backend.

    Returns:
        FileStorage instance with proper S3 configuration.
    """
    return default_storage  # type: ignore[return-value]
