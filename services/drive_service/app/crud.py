# services/drive_service/app/crud.py
"""
Backend calls for files and folders.

Every user-facing operation takes the caller's own db_client (the Supabase client
of one browser session, see core.auth.AuthSession.get_client) so row-level security
is evaluated against that user's token and never someone else's.
"""
import asyncio
import datetime
from typing import List, Optional

from postgrest import APIResponse
from supabase import PostgrestAPIError

from core import storage
from core.config import settings, logger as core_logger
from core.errors import (
    AuthError, NetworkError, NotFoundError, QueryError, RecordError, StorageError, is_network_error
)
from core.models import (
    ConfigStatus, FileItem, FolderItem, SortOrder, UploadBatchResult, UploadFailure, UploadSource, get_file_type
)
from core.supabase_client import get_supabase_client, FILES_TABLE, FOLDERS_TABLE

# Use a child logger
logger = core_logger.getChild("DriveService").getChild("CRUD")


def _api_error_message(e: PostgrestAPIError) -> str:
    return f"{e.message} (Code: {e.code}, Details: {e.details})"


def _read_failure(e: Exception, what: str, user_id: str) -> Exception:
    """Transport failures stay retryable (NetworkError); anything else becomes a QueryError."""
    logger.error(f"[{user_id}] Unexpected error fetching {what}: {e}", exc_info=not is_network_error(e))
    if is_network_error(e):
        return NetworkError(f"Failed to fetch {what}: {e}")
    return QueryError(f"Failed to fetch {what}: {e}")


def _write_failure(e: Exception, message: str) -> Exception:
    """Like _read_failure, for inserts, updates and deletes."""
    if is_network_error(e):
        return NetworkError(f"{message}: {e}")
    return RecordError(f"{message}: {e}")

# --- Listing ---

async def list_files(
    db_client,
    user_id: str,
    folder_id: Optional[str] = None,
    starred_only: bool = False,
    sort_order: SortOrder = SortOrder.DEFAULT,
) -> List[FileItem]:
    """Lists the user's files in one folder. folder_id=None means root level only."""
    if not user_id:
        raise ValueError("User ID is required")
    logger.debug(f"[{user_id}] Listing files (folder={folder_id}, starred_only={starred_only}, sort={sort_order.value}).")

    def db_call():
        query = db_client.table(FILES_TABLE).select("*").eq("user_id", user_id)
        if folder_id:
            query = query.eq("folder_id", folder_id)
        else:
            query = query.is_("folder_id", "null")
        if starred_only:
            query = query.eq("starred", True)
        if sort_order == SortOrder.RECENT:
            query = query.order("modified", desc=True)
        return query.execute()

    try:
        response: APIResponse = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"[{user_id}] Supabase error listing files: {_api_error_message(e)}")
        raise QueryError(f"Failed to fetch files: {e.message}", detail=e.details) from e
    except Exception as e:
        raise _read_failure(e, "files", user_id) from e

    files = [FileItem.from_row(row) for row in response.data or []]
    # Keep the folder scope even if the backend filter was bypassed
    files = [f for f in files if f.folder_id == (folder_id or None)]
    logger.info(f"[{user_id}] Retrieved {len(files)} file(s).")
    return files


async def list_all_files(db_client, user_id: str) -> List[FileItem]:
    """Every file the user owns, in any folder. Used for storage totals."""
    if not user_id:
        raise ValueError("User ID is required")

    def db_call():
        return db_client.table(FILES_TABLE).select("*").eq("user_id", user_id).execute()

    try:
        response: APIResponse = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"[{user_id}] Supabase error listing all files: {_api_error_message(e)}")
        raise QueryError(f"Failed to fetch files: {e.message}", detail=e.details) from e
    except Exception as e:
        raise _read_failure(e, "files", user_id) from e

    files = [FileItem.from_row(row) for row in response.data or []]
    logger.info(f"[{user_id}] Retrieved {len(files)} file(s) across all folders.")
    return files


async def list_folders(db_client, user_id: str, parent_id: Optional[str] = None) -> List[FolderItem]:
    """Lists the user's folders under parent_id (root when None), with file counts."""
    if not user_id:
        raise ValueError("User ID is required")

    def db_call():
        query = db_client.table(FOLDERS_TABLE).select(f"*, {FILES_TABLE}:{FILES_TABLE}(count)").eq("user_id", user_id)
        if parent_id:
            query = query.eq("parent_id", parent_id)
        else:
            query = query.is_("parent_id", "null")
        return query.execute()

    try:
        response: APIResponse = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"[{user_id}] Supabase error listing folders: {_api_error_message(e)}")
        raise QueryError(f"Failed to fetch folders: {e.message}", detail=e.details) from e
    except Exception as e:
        raise _read_failure(e, "folders", user_id) from e

    folders = [FolderItem.from_row(row) for row in response.data or []]
    logger.info(f"[{user_id}] Retrieved {len(folders)} folder(s).")
    return folders

# --- Upload ---

async def _current_auth_user_id(db_client) -> str:
    try:
        response = await asyncio.to_thread(db_client.auth.get_user)
    except Exception as e:
        logger.error(f"Auth error: {e}")
        raise AuthError(f"Authentication error: {e}") from e
    user = getattr(response, "user", None) if response else None
    if not user:
        raise AuthError("No authenticated user found")
    return str(user.id)


async def upload_file(db_client, source: UploadSource, user_id: str, folder_id: Optional[str] = None) -> FileItem:
    """
    Uploads the binary, then inserts its record. If the insert fails for any reason
    the uploaded object is removed again so no orphan is left in the bucket.
    """
    if not user_id or source is None:
        raise ValueError("User ID and file are required")
    if source.size > settings.MAX_UPLOAD_BYTES:
        raise ValueError(f"'{source.filename}' exceeds the {settings.MAX_UPLOAD_BYTES} byte upload limit")

    auth_user_id = await _current_auth_user_id(db_client)
    if auth_user_id != user_id:
        raise AuthError("Signed-in user does not match the upload owner")
    logger.debug(f"Authenticated user {auth_user_id} uploading '{source.filename}' ({source.size} bytes).")

    path = storage.build_storage_path(user_id, source.filename, folder_id)
    stored_path = await storage.upload_object(db_client, path, source.data, source.content_type)

    record = {
        "name": source.filename,
        "type": get_file_type(source.content_type).value,
        "size": source.size,
        "modified": _utcnow_iso(),
        "starred": False,
        "path": stored_path,
        "user_id": user_id,
        "folder_id": folder_id,
    }

    def db_call():
        return db_client.table(FILES_TABLE).insert(record).execute()

    try:
        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"Database insert error for '{stored_path}': {_api_error_message(e)}")
        await _remove_orphaned_object(db_client, stored_path)
        raise RecordError(f"Database error: {e.message}", detail=e.details) from e
    except Exception as e:
        logger.error(f"Unexpected insert error for '{stored_path}': {e}", exc_info=not is_network_error(e))
        await _remove_orphaned_object(db_client, stored_path)
        raise _write_failure(e, "Database error") from e

    if not response.data:
        logger.error(f"No file data returned from database insert for '{stored_path}'")
        await _remove_orphaned_object(db_client, stored_path)
        raise RecordError("No file data returned from database")

    item = FileItem.from_row(response.data[0])
    logger.info(f"File upload successful: '{item.name}' -> {item.path}")
    return item


async def _remove_orphaned_object(db_client, path: str) -> None:
    try:
        await storage.remove_objects(db_client, [path])
        logger.info(f"Removed uploaded object '{path}' after failed insert.")
    except StorageError as e:
        # The insert failure is what the caller needs to see
        logger.error(f"Could not remove orphaned object '{path}': {e}")


async def upload_files(db_client, sources: List[UploadSource], user_id: str, folder_id: Optional[str] = None) -> UploadBatchResult:
    """Uploads several files with at most UPLOAD_CONCURRENCY in flight."""
    semaphore = asyncio.Semaphore(settings.UPLOAD_CONCURRENCY)
    result = UploadBatchResult()

    async def upload_one(source: UploadSource):
        async with semaphore:
            try:
                result.uploaded.append(await upload_file(db_client, source, user_id, folder_id))
            except Exception as e:
                logger.warning(f"Upload of '{source.filename}' failed: {e}")
                result.failed.append(UploadFailure(filename=source.filename, message=str(e)))

    await asyncio.gather(*(upload_one(s) for s in sources))
    logger.info(f"Batch upload finished: {len(result.uploaded)} uploaded, {len(result.failed)} failed.")
    return result

# --- Updates ---

async def _update_file(db_client, file_id: str, values: dict, action: str) -> FileItem:
    def db_call():
        return db_client.table(FILES_TABLE).update(values).eq("id", file_id).execute()

    try:
        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"[{file_id}] Supabase error during {action}: {_api_error_message(e)}")
        raise RecordError(f"Could not {action} file: {e.message}", detail=e.details) from e
    except Exception as e:
        logger.error(f"[{file_id}] Unexpected error during {action}: {e}", exc_info=not is_network_error(e))
        raise _write_failure(e, f"Could not {action} file") from e

    if not response.data:
        logger.warning(f"[{file_id}] No file matched during {action}.")
        raise NotFoundError(f"File {file_id} not found")
    return FileItem.from_row(response.data[0])


async def star_file(db_client, file_id: str, starred: bool) -> FileItem:
    item = await _update_file(db_client, file_id, {"starred": starred}, "star")
    logger.info(f"[{file_id}] starred={starred}")
    return item


async def rename_file(db_client, file_id: str, new_name: str) -> FileItem:
    """Renames the record only; the storage path keeps the original name."""
    if not new_name or not new_name.strip():
        raise ValueError("Invalid filename")
    item = await _update_file(db_client, file_id, {"name": new_name.strip()}, "rename")
    logger.info(f"[{file_id}] renamed to '{item.name}'")
    return item

# --- Delete ---

async def delete_file(db_client, file_id: str, path: str) -> bool:
    """
    Deletes the stored object, then the record. A storage failure leaves the
    record untouched. A record failure after the object is gone leaves an orphaned
    record; it is logged and raised, not reconciled.
    """
    await storage.remove_objects(db_client, [path])

    def db_call():
        return db_client.table(FILES_TABLE).delete().eq("id", file_id).execute()

    try:
        await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"[{file_id}] Orphaned record: object '{path}' deleted but record delete failed: {_api_error_message(e)}")
        raise RecordError(f"Could not delete file record: {e.message}", detail=e.details) from e
    except Exception as e:
        logger.error(f"[{file_id}] Orphaned record: object '{path}' deleted but record delete failed: {e}")
        raise _write_failure(e, "Could not delete file record") from e

    logger.info(f"[{file_id}] Deleted file and object '{path}'.")
    return True

# --- Folders ---

async def create_folder(db_client, name: str, user_id: str, parent_id: Optional[str] = None) -> FolderItem:
    if not name or not name.strip():
        raise ValueError("Folder name is required")
    name = name.strip()
    path = f"{user_id}/{parent_id}/{name}" if parent_id else f"{user_id}/{name}"
    folder = {"name": name, "user_id": user_id, "parent_id": parent_id, "path": path}

    def db_call():
        return db_client.table(FOLDERS_TABLE).insert(folder).execute()

    try:
        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"[{user_id}] Supabase error creating folder '{name}': {_api_error_message(e)}")
        raise RecordError(f"Could not create folder: {e.message}", detail=e.details) from e
    except Exception as e:
        logger.error(f"[{user_id}] Unexpected error creating folder '{name}': {e}", exc_info=not is_network_error(e))
        raise _write_failure(e, "Could not create folder") from e

    if not response.data:
        raise RecordError("No folder data returned from database")

    created = FolderItem.from_row({**response.data[0], "files": [{"count": 0}]})
    logger.info(f"[{user_id}] Created folder '{name}' ({created.id}).")
    return created

# --- Downloads ---

async def get_download_url(db_client, path: str, expires_in: Optional[int] = None) -> str:
    return await storage.create_signed_url(db_client, path, expires_in or settings.SIGNED_URL_EXPIRY)

# --- Configuration check ---

async def check_configuration() -> ConfigStatus:
    """Checks env vars, both tables and the bucket with the shared anon client. Never raises."""
    status = ConfigStatus(env_vars=settings.backend_configured)
    if not status.env_vars:
        logger.warning("Configuration check: Supabase environment variables missing.")
        return status

    try:
        supabase = await get_supabase_client()
    except Exception as e:
        logger.error(f"Configuration check: cannot create client: {e}")
        return status

    async def table_ok(table: str) -> bool:
        try:
            await asyncio.to_thread(lambda: supabase.table(table).select("id").limit(1).execute())
            return True
        except Exception as e:
            logger.error(f"Configuration check: table '{table}' unavailable: {e}")
            return False

    status.files_table = await table_ok(FILES_TABLE)
    status.connection = status.files_table
    status.folders_table = await table_ok(FOLDERS_TABLE)
    try:
        status.storage = await storage.bucket_exists(supabase)
    except Exception as e:
        logger.error(f"Configuration check: storage unavailable: {e}")

    logger.info(f"Configuration check finished: {status.model_dump()}")
    return status


def _utcnow_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()
