import asyncio

import httpx
import pytest
from unittest.mock import patch, AsyncMock, MagicMock

from supabase import PostgrestAPIError, StorageException

from services.drive_service.app import crud
from core.errors import (
    AuthError, ConfigurationError, NetworkError, NotFoundError, QueryError, RecordError, StorageError
)
from core.models import FileType, SortOrder, UploadSource
from core.auth import AuthSession
from core.supabase_client import FILES_TABLE, FOLDERS_TABLE, create_session_client, get_supabase_client


def api_error(message="boom"):
    return PostgrestAPIError({"message": message, "code": "500", "details": "test details", "hint": None})


@pytest.fixture
def patched_client(fake_supabase):
    with patch("services.drive_service.app.crud.get_supabase_client", new_callable=AsyncMock) as mock_get_client:
        mock_get_client.return_value = fake_supabase.client
        yield fake_supabase


def pdf_upload(size=2621440):
    return UploadSource(filename="report.pdf", content_type="application/pdf", data=b"x" * size)

# --- Configuration ---

@pytest.mark.asyncio
async def test_missing_configuration_fails_before_any_network_call():
    with patch("core.supabase_client.settings") as mock_settings, \
         patch("core.supabase_client.create_client") as mock_create_client, \
         patch("core.supabase_client._supabase_client", None):
        mock_settings.backend_configured = False

        with pytest.raises(ConfigurationError):
            await create_session_client()
        with pytest.raises(ConfigurationError):
            await get_supabase_client()
        with pytest.raises(ConfigurationError):
            await AuthSession().get_client()

        mock_create_client.assert_not_called()


@pytest.mark.asyncio
async def test_check_configuration_without_env_vars():
    with patch("services.drive_service.app.crud.settings") as mock_settings, \
         patch("services.drive_service.app.crud.get_supabase_client", new_callable=AsyncMock) as mock_get_client:
        mock_settings.backend_configured = False
        status = await crud.check_configuration()

    assert status.env_vars is False
    assert status.all_ok is False
    mock_get_client.assert_not_called()


@pytest.mark.asyncio
async def test_check_configuration_all_ok(patched_client):
    patched_client.client.storage.list_buckets.return_value = [MagicMock(name="bucket")]
    patched_client.client.storage.list_buckets.return_value[0].name = "files"
    with patch("services.drive_service.app.crud.settings") as mock_settings:
        mock_settings.backend_configured = True
        status = await crud.check_configuration()

    assert status.files_table and status.folders_table and status.connection and status.storage
    assert status.all_ok is True


@pytest.mark.asyncio
async def test_check_configuration_reports_missing_table(patched_client):
    patched_client.fails(FOLDERS_TABLE, api_error('relation "folders" does not exist'))
    patched_client.client.storage.list_buckets.return_value = []
    with patch("services.drive_service.app.crud.settings") as mock_settings:
        mock_settings.backend_configured = True
        status = await crud.check_configuration()

    assert status.files_table is True
    assert status.folders_table is False
    assert status.storage is False

# --- list_files ---

@pytest.mark.asyncio
async def test_list_files_root_scope(patched_client, make_file_row):
    patched_client.returns(FILES_TABLE, [make_file_row(id="a"), make_file_row(id="b")])

    files = await crud.list_files(patched_client.client, "user-123")

    assert [f.id for f in files] == ["a", "b"]
    query = patched_client.query(FILES_TABLE)
    query.eq.assert_any_call("user_id", "user-123")
    query.is_.assert_called_once_with("folder_id", "null")
    query.order.assert_not_called()


@pytest.mark.asyncio
async def test_list_files_root_never_returns_nested_files(patched_client, make_file_row):
    patched_client.returns(FILES_TABLE, [make_file_row(id="root"), make_file_row(id="nested", folder_id="folder-9")])

    files = await crud.list_files(patched_client.client, "user-123", folder_id=None)

    assert all(f.folder_id is None for f in files)
    assert [f.id for f in files] == ["root"]


@pytest.mark.asyncio
async def test_list_files_in_folder_starred_recent(patched_client, make_file_row):
    patched_client.returns(FILES_TABLE, [make_file_row(folder_id="folder-1", starred=True)])

    files = await crud.list_files(patched_client.client, "user-123", "folder-1", starred_only=True, sort_order=SortOrder.RECENT)

    assert len(files) == 1 and files[0].starred
    query = patched_client.query(FILES_TABLE)
    query.eq.assert_any_call("folder_id", "folder-1")
    query.eq.assert_any_call("starred", True)
    query.order.assert_called_once_with("modified", desc=True)
    query.is_.assert_not_called()


@pytest.mark.asyncio
async def test_list_files_normalizes_missing_columns(patched_client):
    patched_client.returns(FILES_TABLE, [{"id": 7, "name": None, "type": None, "size": None, "starred": None, "path": None}])

    files = await crud.list_files(patched_client.client, "user-123")

    item = files[0]
    assert item.id == "7"
    assert item.name == "Unknown file"
    assert item.type == FileType.DOCUMENT
    assert item.size == 0 and item.starred is False and item.path == ""


@pytest.mark.asyncio
async def test_list_files_query_error(patched_client):
    patched_client.fails(FILES_TABLE, api_error("permission denied"))

    with pytest.raises(QueryError) as exc_info:
        await crud.list_files(patched_client.client, "user-123")
    assert "permission denied" in str(exc_info.value)


@pytest.mark.asyncio
async def test_list_files_network_error_stays_retryable(patched_client):
    patched_client.fails(FILES_TABLE, ConnectionError("connection reset by peer"))

    with pytest.raises(NetworkError):
        await crud.list_files(patched_client.client, "user-123")


@pytest.mark.asyncio
async def test_list_files_requires_user_id():
    with pytest.raises(ValueError):
        await crud.list_files(MagicMock(), "")

@pytest.mark.asyncio
async def test_list_all_files_includes_files_inside_folders(patched_client, make_file_row):
    patched_client.returns(FILES_TABLE, [
        make_file_row(id="root", size=100),
        make_file_row(id="nested", folder_id="folder-1", size=250),
        make_file_row(id="deeper", folder_id="folder-2", size=50),
    ])

    files = await crud.list_all_files(patched_client.client, "user-123")

    assert [f.id for f in files] == ["root", "nested", "deeper"]
    assert sum(f.size for f in files) == 400
    query = patched_client.query(FILES_TABLE)
    query.eq.assert_called_once_with("user_id", "user-123")
    query.is_.assert_not_called()


@pytest.mark.asyncio
async def test_list_all_files_network_error_stays_retryable(patched_client):
    patched_client.fails(FILES_TABLE, httpx.ReadTimeout("read timed out"))

    with pytest.raises(NetworkError):
        await crud.list_all_files(patched_client.client, "user-123")

# --- list_folders ---

@pytest.mark.asyncio
async def test_list_folders_counts(patched_client):
    patched_client.returns(FOLDERS_TABLE, [
        {"id": "f1", "name": "Photos", "user_id": "user-123", "parent_id": None, "path": "user-123/Photos", "files": [{"count": 4}]},
        {"id": "f2", "name": "Empty", "user_id": "user-123", "parent_id": None, "path": "user-123/Empty", "files": []},
    ])

    folders = await crud.list_folders(patched_client.client, "user-123")

    assert [(f.name, f.file_count) for f in folders] == [("Photos", 4), ("Empty", 0)]
    query = patched_client.query(FOLDERS_TABLE)
    query.select.assert_called_once_with(f"*, {FILES_TABLE}:{FILES_TABLE}(count)")
    query.is_.assert_called_once_with("parent_id", "null")


@pytest.mark.asyncio
async def test_list_folders_nested(patched_client):
    await crud.list_folders(patched_client.client, "user-123", parent_id="f1")
    patched_client.query(FOLDERS_TABLE).eq.assert_any_call("parent_id", "f1")

# --- upload_file ---

@pytest.mark.asyncio
async def test_upload_file_success(patched_client, make_file_row):
    patched_client.returns(FILES_TABLE, [make_file_row(id="new-file")])

    with patch("core.storage.time.time", return_value=1700000000.0):
        item = await crud.upload_file(patched_client.client, pdf_upload(), "user-123")

    assert item.id == "new-file"
    assert item.name == "report.pdf" and item.size == 2621440 and item.type == FileType.PDF
    patched_client.bucket.upload.assert_called_once()
    assert patched_client.bucket.upload.call_args.kwargs["path"] == "user-123/1700000000000_report.pdf"

    inserted = patched_client.query(FILES_TABLE).insert.call_args[0][0]
    assert inserted["name"] == "report.pdf"
    assert inserted["size"] == 2621440
    assert inserted["type"] == "pdf"
    assert inserted["starred"] is False
    assert inserted["folder_id"] is None
    assert inserted["path"] == "user-123/1700000000000_report.pdf"


@pytest.mark.asyncio
async def test_upload_file_into_folder_path(patched_client, make_file_row):
    patched_client.returns(FILES_TABLE, [make_file_row(folder_id="folder-1")])

    with patch("core.storage.time.time", return_value=1700000000.0):
        await crud.upload_file(patched_client.client, pdf_upload(), "user-123", folder_id="folder-1")

    assert patched_client.bucket.upload.call_args.kwargs["path"] == "user-123/folder-1/1700000000000_report.pdf"


@pytest.mark.asyncio
async def test_upload_unauthenticated_makes_no_mutation(patched_client):
    patched_client.set_user(None)

    with pytest.raises(AuthError):
        await crud.upload_file(patched_client.client, pdf_upload(), "user-123")

    patched_client.bucket.upload.assert_not_called()
    patched_client.bucket.remove.assert_not_called()
    patched_client.query(FILES_TABLE).insert.assert_not_called()


@pytest.mark.asyncio
async def test_upload_auth_api_error_is_auth_error(patched_client):
    patched_client.client.auth.get_user.side_effect = Exception("JWT expired")

    with pytest.raises(AuthError) as exc_info:
        await crud.upload_file(patched_client.client, pdf_upload(), "user-123")
    assert "JWT expired" in str(exc_info.value)
    patched_client.bucket.upload.assert_not_called()


@pytest.mark.asyncio
async def test_upload_storage_failure(patched_client):
    patched_client.bucket.upload.side_effect = StorageException({"statusCode": 500, "error": "Internal", "message": "disk full"})

    with pytest.raises(StorageError) as exc_info:
        await crud.upload_file(patched_client.client, pdf_upload(), "user-123")
    assert "disk full" in str(exc_info.value)
    patched_client.query(FILES_TABLE).insert.assert_not_called()


@pytest.mark.asyncio
async def test_upload_missing_bucket_gives_hint(patched_client):
    patched_client.bucket.upload.side_effect = StorageException({"statusCode": 404, "error": "Not found", "message": "Bucket not found"})

    with pytest.raises(StorageError) as exc_info:
        await crud.upload_file(patched_client.client, pdf_upload(), "user-123")
    assert "Storage bucket 'files' not found" in str(exc_info.value)
    assert "New Bucket" in exc_info.value.detail


@pytest.mark.asyncio
async def test_upload_insert_failure_removes_uploaded_object(patched_client):
    patched_client.fails(FILES_TABLE, api_error("insert violates row-level security"))

    with patch("core.storage.time.time", return_value=1700000000.0):
        with pytest.raises(RecordError):
            await crud.upload_file(patched_client.client, pdf_upload(), "user-123")

    patched_client.bucket.remove.assert_called_once_with(["user-123/1700000000000_report.pdf"])


@pytest.mark.asyncio
async def test_upload_insert_connection_error_removes_uploaded_object(patched_client):
    patched_client.fails(FILES_TABLE, httpx.ConnectError("connection reset"))

    with patch("core.storage.time.time", return_value=1700000000.0):
        with pytest.raises(NetworkError):
            await crud.upload_file(patched_client.client, pdf_upload(), "user-123")

    patched_client.bucket.remove.assert_called_once_with(["user-123/1700000000000_report.pdf"])


@pytest.mark.asyncio
async def test_upload_insert_unexpected_error_removes_uploaded_object(patched_client):
    patched_client.fails(FILES_TABLE, RuntimeError("malformed response"))

    with pytest.raises(RecordError) as exc_info:
        await crud.upload_file(patched_client.client, pdf_upload(), "user-123")

    assert "malformed response" in str(exc_info.value)
    patched_client.bucket.remove.assert_called_once()


@pytest.mark.asyncio
async def test_upload_for_another_user_is_refused(patched_client):
    patched_client.set_user("someone-else")

    with pytest.raises(AuthError):
        await crud.upload_file(patched_client.client, pdf_upload(), "user-123")

    patched_client.bucket.upload.assert_not_called()
    patched_client.query(FILES_TABLE).insert.assert_not_called()


@pytest.mark.asyncio
async def test_upload_empty_insert_response_removes_uploaded_object(patched_client):
    patched_client.returns(FILES_TABLE, [])

    with pytest.raises(RecordError):
        await crud.upload_file(patched_client.client, pdf_upload(), "user-123")
    patched_client.bucket.remove.assert_called_once()


@pytest.mark.asyncio
async def test_upload_failed_compensation_still_raises_record_error(patched_client):
    patched_client.fails(FILES_TABLE, api_error())
    patched_client.bucket.remove.side_effect = StorageException({"message": "remove failed"})

    with pytest.raises(RecordError):
        await crud.upload_file(patched_client.client, pdf_upload(), "user-123")


@pytest.mark.asyncio
async def test_upload_rejects_oversized_file(patched_client):
    with patch("services.drive_service.app.crud.settings") as mock_settings:
        mock_settings.MAX_UPLOAD_BYTES = 10
        with pytest.raises(ValueError):
            await crud.upload_file(patched_client.client, pdf_upload(size=11), "user-123")
    patched_client.bucket.upload.assert_not_called()


@pytest.mark.asyncio
async def test_upload_files_reports_partial_failure(make_file_row):
    good = UploadSource(filename="a.txt", content_type="text/plain", data=b"a")
    bad = UploadSource(filename="b.txt", content_type="text/plain", data=b"b")

    async def fake_upload(db_client, source, user_id, folder_id=None):
        if source.filename == "b.txt":
            raise StorageError("Upload failed: quota exceeded")
        return crud.FileItem.from_row(make_file_row(id="a", name="a.txt"))

    with patch("services.drive_service.app.crud.upload_file", side_effect=fake_upload):
        result = await crud.upload_files(MagicMock(), [good, bad], "user-123")

    assert [f.name for f in result.uploaded] == ["a.txt"]
    assert len(result.failed) == 1
    assert result.failed[0].filename == "b.txt"
    assert "quota exceeded" in result.failed[0].message


@pytest.mark.asyncio
async def test_upload_files_keeps_every_failure_with_repeated_names():
    first = UploadSource(filename="b.txt", content_type="text/plain", data=b"1")
    second = UploadSource(filename="b.txt", content_type="text/plain", data=b"22")

    async def fake_upload(db_client, source, user_id, folder_id=None):
        raise StorageError(f"Upload failed: {source.size} bytes rejected")

    with patch("services.drive_service.app.crud.upload_file", side_effect=fake_upload):
        result = await crud.upload_files(MagicMock(), [first, second], "user-123")

    assert result.uploaded == []
    assert [f.filename for f in result.failed] == ["b.txt", "b.txt"]
    assert sorted(f.message for f in result.failed) == ["Upload failed: 1 bytes rejected", "Upload failed: 2 bytes rejected"]


@pytest.mark.asyncio
async def test_upload_files_limits_uploads_in_flight(make_file_row):
    sources = [UploadSource(filename=f"{i}.txt", content_type="text/plain", data=b"x") for i in range(5)]
    release = asyncio.Event()
    in_flight = 0
    peak = 0

    async def fake_upload(db_client, source, user_id, folder_id=None):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        if in_flight >= 2:
            release.set()
        await release.wait()
        in_flight -= 1
        return crud.FileItem.from_row(make_file_row(id=source.filename, name=source.filename))

    with patch("services.drive_service.app.crud.upload_file", side_effect=fake_upload), \
         patch("services.drive_service.app.crud.settings") as mock_settings:
        mock_settings.UPLOAD_CONCURRENCY = 2
        result = await asyncio.wait_for(crud.upload_files(MagicMock(), sources, "user-123"), timeout=5)

    assert peak == 2
    assert sorted(f.name for f in result.uploaded) == [f"{i}.txt" for i in range(5)]
    assert result.failed == []

# --- star / rename ---

@pytest.mark.asyncio
async def test_star_then_unstar_restores_value(patched_client, make_file_row):
    patched_client.returns(FILES_TABLE, [make_file_row(starred=True)])
    starred = await crud.star_file(patched_client.client, "file-1", True)
    patched_client.returns(FILES_TABLE, [make_file_row(starred=False)])
    unstarred = await crud.star_file(patched_client.client, "file-1", False)

    assert starred.starred is True
    assert unstarred.starred is False
    query = patched_client.query(FILES_TABLE)
    query.update.assert_any_call({"starred": True})
    query.update.assert_any_call({"starred": False})
    query.eq.assert_any_call("id", "file-1")


@pytest.mark.asyncio
async def test_star_missing_file_not_found(patched_client):
    patched_client.returns(FILES_TABLE, [])
    with pytest.raises(NotFoundError):
        await crud.star_file(patched_client.client, "gone", True)


@pytest.mark.asyncio
async def test_star_backend_error(patched_client):
    patched_client.fails(FILES_TABLE, api_error())
    with pytest.raises(RecordError):
        await crud.star_file(patched_client.client, "file-1", True)


@pytest.mark.asyncio
async def test_star_connection_error_stays_retryable(patched_client):
    patched_client.fails(FILES_TABLE, httpx.ConnectError("connection refused"))
    with pytest.raises(NetworkError):
        await crud.star_file(patched_client.client, "file-1", True)


@pytest.mark.asyncio
async def test_rename_unexpected_error_is_record_error(patched_client):
    patched_client.fails(FILES_TABLE, RuntimeError("malformed response"))
    with pytest.raises(RecordError):
        await crud.rename_file(patched_client.client, "file-1", "final.pdf")


@pytest.mark.asyncio
async def test_rename_file(patched_client, make_file_row):
    patched_client.returns(FILES_TABLE, [make_file_row(name="final.pdf")])

    item = await crud.rename_file(patched_client.client, "file-1", "  final.pdf ")

    assert item.name == "final.pdf"
    patched_client.query(FILES_TABLE).update.assert_called_once_with({"name": "final.pdf"})


@pytest.mark.asyncio
async def test_rename_rejects_blank_name(patched_client):
    with pytest.raises(ValueError):
        await crud.rename_file(patched_client.client, "file-1", "   ")
    patched_client.query(FILES_TABLE).update.assert_not_called()

# --- delete ---

@pytest.mark.asyncio
async def test_delete_file_removes_object_and_record(patched_client):
    assert await crud.delete_file(patched_client.client, "file-1", "user-123/1_report.pdf") is True

    patched_client.bucket.remove.assert_called_once_with(["user-123/1_report.pdf"])
    query = patched_client.query(FILES_TABLE)
    query.delete.assert_called_once()
    query.eq.assert_called_with("id", "file-1")


@pytest.mark.asyncio
async def test_delete_keeps_record_when_storage_delete_fails(patched_client):
    patched_client.bucket.remove.side_effect = StorageException({"message": "Object not accessible"})

    with pytest.raises(StorageError):
        await crud.delete_file(patched_client.client, "file-1", "user-123/1_report.pdf")

    patched_client.query(FILES_TABLE).delete.assert_not_called()


@pytest.mark.asyncio
async def test_delete_record_failure_after_storage_delete(patched_client):
    patched_client.fails(FILES_TABLE, api_error())

    with pytest.raises(RecordError):
        await crud.delete_file(patched_client.client, "file-1", "user-123/1_report.pdf")
    patched_client.bucket.remove.assert_called_once()

@pytest.mark.asyncio
async def test_delete_record_unexpected_error_after_storage_delete(patched_client):
    patched_client.fails(FILES_TABLE, RuntimeError("malformed response"))

    with pytest.raises(RecordError):
        await crud.delete_file(patched_client.client, "file-1", "user-123/1_report.pdf")
    patched_client.bucket.remove.assert_called_once()


@pytest.mark.asyncio
async def test_delete_record_connection_error_after_storage_delete(patched_client):
    patched_client.fails(FILES_TABLE, httpx.ConnectError("connection reset"))

    with pytest.raises(NetworkError):
        await crud.delete_file(patched_client.client, "file-1", "user-123/1_report.pdf")

# --- folders ---

@pytest.mark.asyncio
async def test_create_folder_root(patched_client):
    patched_client.returns(FOLDERS_TABLE, [{"id": "f9", "name": "Docs", "user_id": "user-123", "parent_id": None, "path": "user-123/Docs"}])

    folder = await crud.create_folder(patched_client.client, "Docs", "user-123")

    assert folder.id == "f9" and folder.file_count == 0
    patched_client.query(FOLDERS_TABLE).insert.assert_called_once_with(
        {"name": "Docs", "user_id": "user-123", "parent_id": None, "path": "user-123/Docs"}
    )


@pytest.mark.asyncio
async def test_create_folder_nested_path(patched_client):
    patched_client.returns(FOLDERS_TABLE, [{"id": "f10", "name": "2026", "user_id": "user-123", "parent_id": "f9", "path": "user-123/f9/2026"}])

    folder = await crud.create_folder(patched_client.client, "2026", "user-123", parent_id="f9")

    assert folder.parent_id == "f9"
    inserted = patched_client.query(FOLDERS_TABLE).insert.call_args[0][0]
    assert inserted["path"] == "user-123/f9/2026"


@pytest.mark.asyncio
async def test_create_folder_error(patched_client):
    patched_client.fails(FOLDERS_TABLE, api_error("duplicate key"))
    with pytest.raises(RecordError):
        await crud.create_folder(patched_client.client, "Docs", "user-123")

# --- downloads ---

@pytest.mark.asyncio
async def test_get_download_url(patched_client):
    patched_client.bucket.create_signed_url.return_value = {"signedURL": "https://example.test/signed"}

    url = await crud.get_download_url(patched_client.client, "user-123/1_report.pdf", expires_in=60)

    assert url == "https://example.test/signed"
    patched_client.bucket.create_signed_url.assert_called_once_with("user-123/1_report.pdf", 60)
