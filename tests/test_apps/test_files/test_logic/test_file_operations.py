"""Tests for file operations business logic."""

from io import BytesIO

import pytest
from django.core.files.base import ContentFile

from server.apps.files.exceptions import (
    ConflictError,
    InternalError,
    InvalidInputError,
    NotFoundError,
    StorageIOError,
)
from server.apps.files.infrastructure.storage import FileStorage, get_storage
from server.apps.files.logic import file_operations, folder_operations
from server.apps.files.logic.file_operations import (
    copy_file,
    delete_file,
    get_file,
    get_for_download,
    move_file,
    upload_file,
)
from server.apps.files.logic.folder_operations import (
    create_folder,
    list_contents,
    move_folder,
)
from server.apps.files.models import File, UploadStatus


@pytest.fixture
def uploaded(user, mock_s3, sample_file_content, django_capture_on_commit_callbacks):
    """A root file whose placement already ran.

    Returns:
        COMPLETED File instance.
    """
    with django_capture_on_commit_callbacks(execute=True):
        file_instance = upload_file(user.id, sample_file_content, 'test.txt')
    file_instance.refresh_from_db()
    return file_instance


@pytest.mark.django_db
def test_upload_file_returns_pending(
    user,
    mock_s3,
    sample_file_content,
    django_capture_on_commit_callbacks,
):
    """Upload returns a PENDING row; placement waits for commit."""
    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        file_instance = upload_file(
            user.id,
            sample_file_content,
            'test.txt',
            'text/plain',
        )

    assert file_instance.upload_status == UploadStatus.PENDING
    assert file_instance.original_name == 'test.txt'
    assert file_instance.content_type == 'text/plain'
    assert file_instance.size_bytes == len(b'test file content')
    assert len(file_instance.checksum_sha256) == 64
    assert file_instance.staging_key.startswith('staging/')
    assert file_instance.blob_key
    assert len(callbacks) == 1

    # Invisible until placement ran
    with pytest.raises(NotFoundError):
        get_for_download(user.id, file_instance.id)
    assert list_contents(user.id).files == []


@pytest.mark.django_db
def test_upload_then_download(
    user,
    mock_s3,
    sample_file_content,
    django_capture_on_commit_callbacks,
):
    """Running the commit callbacks places the bytes."""
    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        file_instance = upload_file(user.id, sample_file_content, 'test.txt')
    staging_key = file_instance.staging_key
    assert get_storage().exists(staging_key)

    for callback in callbacks:
        callback()

    file_instance.refresh_from_db()
    assert file_instance.upload_status == UploadStatus.COMPLETED
    assert file_instance.staging_key == ''

    download = get_for_download(user.id, file_instance.id)
    with download.stream as stream:
        assert stream.read() == b'test file content'
    assert download.file.id == file_instance.id

    # Staged object is gone after commit
    assert not get_storage().exists(staging_key)
    assert [item.id for item in list_contents(user.id).files] == [
        file_instance.id,
    ]


@pytest.mark.django_db
def test_upload_into_folder(user, folder, mock_s3, django_capture_on_commit_callbacks):
    """Files uploaded into a folder copy its path."""
    with django_capture_on_commit_callbacks(execute=True):
        file_instance = upload_file(
            user.id,
            BytesIO(b'nested'),
            'nested.bin',
            folder_id=folder.id,
        )

    file_instance.refresh_from_db()
    assert file_instance.folder_id == folder.id
    assert file_instance.folder_path == folder.path
    assert file_instance.content_type == 'application/octet-stream'
    assert file_instance.upload_status == UploadStatus.COMPLETED


@pytest.mark.django_db
def test_upload_sanitizes_name(user, mock_s3, sample_file_content):
    """Client directories never reach the stored name."""
    file_instance = upload_file(
        user.id,
        sample_file_content,
        '../../secret/report.pdf',
    )

    assert file_instance.original_name == 'report.pdf'
    assert file_instance.content_type == 'application/pdf'


@pytest.mark.django_db
def test_upload_invalid_name(user, mock_s3, sample_file_content):
    """Unusable names are rejected without a row."""
    with pytest.raises(InvalidInputError):
        upload_file(user.id, sample_file_content, '   ')

    assert not File.objects.exists()


@pytest.mark.django_db
def test_upload_foreign_folder(user, other_user, folder, mock_s3, sample_file_content):
    """Uploading into another owner's folder is not found."""
    with pytest.raises(NotFoundError):
        upload_file(
            other_user.id,
            sample_file_content,
            'test.txt',
            folder_id=folder.id,
        )

    assert not File.objects.exists()


@pytest.mark.django_db
def test_upload_duplicate_name(user, uploaded):
    """A live sibling with the same name is a conflict."""
    with pytest.raises(ConflictError) as exc_info:
        upload_file(user.id, ContentFile(b'again'), 'test.txt')

    assert exc_info.value.name == 'test.txt'
    assert File.objects.count() == 1


@pytest.mark.django_db
def test_upload_duplicate_name_race(user, mock_s3, monkeypatch):
    """The unique constraint decides when both uploads pass the pre-check."""
    monkeypatch.setattr(file_operations, 'file_name_taken', lambda *args, **kwargs: False)
    upload_file(user.id, ContentFile(b'first'), 'race.txt')

    with pytest.raises(ConflictError):
        upload_file(user.id, ContentFile(b'second'), 'race.txt')

    assert File.objects.filter(original_name='race.txt').count() == 1


@pytest.mark.django_db
def test_folder_name_race(user, monkeypatch):
    """Concurrent folder creates are arbitrated by the constraint."""
    monkeypatch.setattr(
        folder_operations,
        'folder_name_taken',
        lambda *args, **kwargs: False,
    )
    create_folder(user.id, 'race')

    with pytest.raises(ConflictError):
        create_folder(user.id, 'race')


@pytest.mark.django_db
def test_upload_staging_failure(user, mock_s3, sample_file_content, monkeypatch):
    """Staging errors keep the row as FAILED and raise StorageIOError."""
    def broken_stage(self, content):
        raise OSError('disk on fire')

    monkeypatch.setattr(FileStorage, 'stage', broken_stage)

    with pytest.raises(StorageIOError) as exc_info:
        upload_file(user.id, sample_file_content, 'test.txt')

    file_instance = File.objects.get(id=exc_info.value.file_id)
    assert file_instance.upload_status == UploadStatus.FAILED
    assert file_instance.staging_key == ''
    with pytest.raises(NotFoundError):
        get_for_download(user.id, file_instance.id)


@pytest.mark.django_db
def test_get_file_any_status(user, mock_s3, sample_file_content):
    """Metadata of PENDING files is readable by the owner."""
    file_instance = upload_file(user.id, sample_file_content, 'test.txt')

    assert get_file(user.id, file_instance.id).id == file_instance.id


@pytest.mark.django_db
def test_get_for_download_foreign(other_user, uploaded):
    """Other owners cannot download the file."""
    with pytest.raises(NotFoundError):
        get_for_download(other_user.id, uploaded.id)


@pytest.mark.django_db
def test_get_for_download_missing_blob(user, uploaded):
    """A COMPLETED row without bytes is an internal error."""
    get_storage().delete(uploaded.blob_key)

    with pytest.raises(InternalError):
        get_for_download(user.id, uploaded.id)


@pytest.mark.django_db
def test_move_file(user, folder, uploaded):
    """Moving changes folder and path, never the blob key."""
    blob_key = uploaded.blob_key

    moved = move_file(user.id, uploaded.id, folder.id)

    moved.refresh_from_db()
    assert moved.folder_id == folder.id
    assert moved.folder_path == folder.path
    assert moved.blob_key == blob_key

    back = move_file(user.id, uploaded.id, None)
    assert back.folder_id is None
    assert back.folder_path is None


@pytest.mark.django_db
def test_move_file_follows_folder_moves(user, folder, uploaded):
    """Folder moves rewrite the path of files moved in earlier."""
    move_file(user.id, uploaded.id, folder.id)
    target = create_folder(user.id, 'target')

    moved_folder = move_folder(user.id, folder.id, target.id)

    uploaded.refresh_from_db()
    assert uploaded.folder_path == moved_folder.path


@pytest.mark.django_db
def test_move_file_conflict(
    user,
    folder,
    uploaded,
    django_capture_on_commit_callbacks,
):
    """Destination must not hold a file with the same name."""
    with django_capture_on_commit_callbacks(execute=True):
        upload_file(
            user.id,
            ContentFile(b'other'),
            'test.txt',
            folder_id=folder.id,
        )

    with pytest.raises(ConflictError):
        move_file(user.id, uploaded.id, folder.id)


@pytest.mark.django_db
def test_copy_file(user, folder, uploaded, django_capture_on_commit_callbacks):
    """Copies get their own row and blob, placed after commit."""
    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        copy = copy_file(user.id, uploaded.id, folder.id)

    assert copy.upload_status == UploadStatus.PENDING
    assert copy.blob_key != uploaded.blob_key
    assert copy.checksum_sha256 == uploaded.checksum_sha256
    assert copy.folder_path == folder.path

    for callback in callbacks:
        callback()

    copy.refresh_from_db()
    assert copy.upload_status == UploadStatus.COMPLETED
    download = get_for_download(user.id, copy.id)
    with download.stream as stream:
        assert stream.read() == b'test file content'


@pytest.mark.django_db
def test_copy_file_same_folder_conflict(user, uploaded):
    """Copying next to the source clashes with its name."""
    with pytest.raises(ConflictError):
        copy_file(user.id, uploaded.id, None)


@pytest.mark.django_db
def test_copy_pending_file(user, folder, mock_s3, sample_file_content):
    """Only COMPLETED files can be copied."""
    pending = upload_file(user.id, sample_file_content, 'test.txt')

    with pytest.raises(NotFoundError):
        copy_file(user.id, pending.id, folder.id)


@pytest.mark.django_db
def test_delete_file(user, uploaded):
    """Deleted files vanish but keep their blob until reclaimed."""
    deleted = delete_file(user.id, uploaded.id)

    assert deleted.is_deleted
    assert deleted.deleted_at is not None
    with pytest.raises(NotFoundError):
        get_for_download(user.id, uploaded.id)
    with pytest.raises(NotFoundError):
        delete_file(user.id, uploaded.id)
    assert get_storage().exists(uploaded.blob_key)


@pytest.mark.django_db
def test_delete_file_frees_name(user, uploaded):
    """A deleted file's name can be uploaded again."""
    delete_file(user.id, uploaded.id)

    again = upload_file(user.id, ContentFile(b'again'), 'test.txt')

    assert again.id != uploaded.id


def _move_before_lock(monkeypatch, module, folder_id, owner_id):
    """Run a folder move right before ``module`` locks its target folder."""
    real_lock = module.lock_folders
    pending_moves = [folder_id]

    def lock_after_move(lock_owner_id, *folder_ids):
        if pending_moves:
            move_folder(owner_id, pending_moves.pop(), None)
        return real_lock(lock_owner_id, *folder_ids)

    monkeypatch.setattr(module, 'lock_folders', lock_after_move)


@pytest.mark.django_db
def test_upload_sees_path_of_concurrent_folder_move(
    user,
    folder,
    mock_s3,
    monkeypatch,
):
    """The file copies the folder path as it is once the folder is locked."""
    child = create_folder(user.id, 'child', parent_id=folder.id)
    _move_before_lock(monkeypatch, file_operations, child.id, user.id)

    file_instance = upload_file(
        user.id,
        ContentFile(b'bytes'),
        'test.txt',
        folder_id=child.id,
    )

    child.refresh_from_db()
    assert child.path == f'u{user.id}.f{child.id}'
    file_instance.refresh_from_db()
    assert file_instance.folder_path == child.path


@pytest.mark.django_db
def test_move_file_sees_path_of_concurrent_folder_move(
    user,
    folder,
    uploaded,
    monkeypatch,
):
    """Moving a file into a folder that just moved uses the new path."""
    child = create_folder(user.id, 'child', parent_id=folder.id)
    _move_before_lock(monkeypatch, file_operations, child.id, user.id)

    moved = move_file(user.id, uploaded.id, child.id)

    child.refresh_from_db()
    moved.refresh_from_db()
    assert moved.folder_path == child.path == f'u{user.id}.f{child.id}'


@pytest.mark.django_db
def test_create_folder_sees_path_of_concurrent_parent_move(
    user,
    folder,
    monkeypatch,
):
    """A new child extends the parent path as it is once locked."""
    parent = create_folder(user.id, 'parent', parent_id=folder.id)
    _move_before_lock(monkeypatch, folder_operations, parent.id, user.id)

    child = create_folder(user.id, 'child', parent_id=parent.id)

    parent.refresh_from_db()
    assert parent.path == f'u{user.id}.f{parent.id}'
    assert child.path == f'{parent.path}.f{child.id}'
