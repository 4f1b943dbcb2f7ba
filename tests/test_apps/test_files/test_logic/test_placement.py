"""Tests for asynchronous byte placement."""

import pytest
from django.core.files.base import ContentFile
from django.db import DatabaseError

from server.apps.files.infrastructure.storage import (
    FileStorage,
    generate_blob_key,
    get_storage,
)
from server.apps.files.logic import placement
from server.apps.files.models import File, UploadStatus


def _pending_row(user, **fields):
    return File.objects.create(
        owner=user,
        original_name=fields.pop('name', 'test.txt'),
        size_bytes=17,
        content_type='text/plain',
        checksum_sha256='abcd' * 16,
        blob_key=generate_blob_key(),
        **fields,
    )


@pytest.mark.django_db
def test_place_staged_upload(user, mock_s3):
    """Staged bytes move to the blob key and the row completes."""
    storage = get_storage()
    staging_key = storage.stage(ContentFile(b'payload'))
    file_instance = _pending_row(user, staging_key=staging_key)

    result = placement.place_staged_upload(
        file_instance.id,
        staging_key,
        file_instance.blob_key,
    )

    assert result.status == 'COMPLETED'
    assert result.status_persisted
    assert result.error is None
    file_instance.refresh_from_db()
    assert file_instance.upload_status == UploadStatus.COMPLETED
    assert file_instance.staging_key == ''
    assert storage.exists(file_instance.blob_key)
    assert not storage.exists(staging_key)


@pytest.mark.django_db
def test_place_staged_upload_missing_staged_object(user, mock_s3):
    """A failed commit marks the row FAILED."""
    file_instance = _pending_row(user, staging_key='staging/missing')

    result = placement.place_staged_upload(
        file_instance.id,
        'staging/missing',
        file_instance.blob_key,
    )

    assert result.status == 'FAILED'
    assert result.status_persisted
    assert result.error
    file_instance.refresh_from_db()
    assert file_instance.upload_status == UploadStatus.FAILED
    assert not get_storage().exists(file_instance.blob_key)


@pytest.mark.django_db
def test_place_staged_upload_lost_status_write(user, mock_s3, monkeypatch, caplog):
    """Bytes stay placed when the status write fails."""
    storage = get_storage()
    staging_key = storage.stage(ContentFile(b'payload'))
    file_instance = _pending_row(user, staging_key=staging_key)

    def broken_update(self, **kwargs):
        raise DatabaseError('connection lost')

    monkeypatch.setattr('django.db.models.query.QuerySet.update', broken_update)

    result = placement.place_staged_upload(
        file_instance.id,
        staging_key,
        file_instance.blob_key,
    )
    monkeypatch.undo()

    assert result.status == 'COMPLETED'
    assert not result.status_persisted
    assert storage.exists(file_instance.blob_key)
    file_instance.refresh_from_db()
    assert file_instance.upload_status == UploadStatus.PENDING
    assert 'Failed to update upload status' in caplog.text


@pytest.mark.django_db
def test_set_status_only_touches_pending(user):
    """Terminal rows are never overwritten."""
    file_instance = _pending_row(user, upload_status=UploadStatus.FAILED)

    assert not placement.set_status(file_instance.id, UploadStatus.COMPLETED)

    file_instance.refresh_from_db()
    assert file_instance.upload_status == UploadStatus.FAILED


@pytest.mark.django_db
def test_set_status_missing_row(user):
    """A row deleted meanwhile is reported, not raised."""
    assert not placement.set_status(99999, UploadStatus.COMPLETED)


@pytest.mark.django_db
def test_copy_blob(user, mock_s3):
    """Copies duplicate the source bytes under a new key."""
    storage = get_storage()
    source_key = generate_blob_key()
    storage.save(source_key, ContentFile(b'source bytes'))
    copy = _pending_row(user, name='copy.txt')

    result = placement.copy_blob(copy.id, source_key, copy.blob_key)

    assert result.as_dict() == {
        'file_id': copy.id,
        'status': 'COMPLETED',
        'status_persisted': True,
        'error': None,
    }
    with storage.open(copy.blob_key, 'rb') as stream:
        assert stream.read() == b'source bytes'
    assert storage.exists(source_key)


@pytest.mark.django_db
def test_copy_blob_missing_source(user, mock_s3):
    """A copy of vanished bytes fails."""
    copy = _pending_row(user, name='copy.txt')

    result = placement.copy_blob(copy.id, 'gone', copy.blob_key)

    assert result.status == 'FAILED'
    copy.refresh_from_db()
    assert copy.upload_status == UploadStatus.FAILED


@pytest.mark.django_db
def test_copy_blob_failure_with_broken_storage(user, mock_s3, monkeypatch):
    """Storage errors during copy are captured in the result."""
    def broken_copy(self, source_key, blob_key):
        raise OSError('network down')

    monkeypatch.setattr(FileStorage, 'copy', broken_copy)
    copy = _pending_row(user, name='copy.txt')

    result = placement.copy_blob(copy.id, 'any', copy.blob_key)

    assert result.error == 'network down'
    assert result.status == 'FAILED'
