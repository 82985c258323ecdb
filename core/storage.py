# core/storage.py
"""
Core Storage Utilities.

Thin async wrappers around the Supabase Storage bucket that holds file contents.
Every failure is re-raised as StorageError with the backend message attached, so
callers never see storage3 exception types.
"""
import asyncio
import time
from typing import Any, List, Optional

from supabase import StorageException

from core.config import settings, logger as core_logger
from core.errors import StorageError

logger = core_logger.getChild("Storage")


def build_storage_path(user_id: str, filename: str, folder_id: Optional[str] = None, timestamp_ms: Optional[int] = None) -> str:
    """
    Returns '{user_id}/[{folder_id}/]{timestamp}_{filename}'.
    The millisecond timestamp keeps repeated uploads of the same name from colliding.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    prefix = f"{user_id}/{folder_id}" if folder_id else user_id
    return f"{prefix}/{timestamp_ms}_{filename}"


def _upload_response_path(response: Any, fallback: str) -> str:
    # storage3 >= 0.8 returns an UploadResponse; older versions return an httpx.Response
    path = getattr(response, "path", None)
    return path if isinstance(path, str) and path else fallback


async def upload_object(client: Any, path: str, data: bytes, content_type: Optional[str] = None, bucket: Optional[str] = None) -> str:
    """Uploads bytes to the bucket and returns the stored object path."""
    bucket = bucket or settings.STORAGE_BUCKET
    file_options = {"content-type": content_type or "application/octet-stream", "upsert": "false"}

    def do_upload():
        return client.storage.from_(bucket).upload(path=path, file=data, file_options=file_options)

    try:
        logger.debug(f"Uploading {len(data)} bytes to '{bucket}/{path}'")
        response = await asyncio.to_thread(do_upload)
    except StorageException as e:
        message = _storage_message(e)
        logger.error(f"Storage upload error for '{path}': {message}")
        if "bucket not found" in message.lower():
            raise StorageError(
                f"Storage bucket '{bucket}' not found",
                detail=f"Create it in your Supabase dashboard under Storage > New Bucket > Name: '{bucket}' (private)",
            ) from e
        raise StorageError(f"Upload failed: {message}") from e
    except Exception as e:
        logger.error(f"Unexpected storage upload error for '{path}': {e}", exc_info=True)
        raise StorageError(f"Upload failed: {e}") from e

    return _upload_response_path(response, path)


async def remove_objects(client: Any, paths: List[str], bucket: Optional[str] = None) -> None:
    """Deletes objects from the bucket."""
    bucket = bucket or settings.STORAGE_BUCKET

    def do_remove():
        return client.storage.from_(bucket).remove(paths)

    try:
        await asyncio.to_thread(do_remove)
        logger.debug(f"Removed {len(paths)} object(s) from '{bucket}'")
    except StorageException as e:
        message = _storage_message(e)
        logger.error(f"Storage delete error for {paths}: {message}")
        raise StorageError(f"Delete failed: {message}") from e
    except Exception as e:
        logger.error(f"Unexpected storage delete error for {paths}: {e}", exc_info=True)
        raise StorageError(f"Delete failed: {e}") from e


async def create_signed_url(client: Any, path: str, expires_in: int, bucket: Optional[str] = None) -> str:
    """Returns a time-limited download URL for a stored object."""
    bucket = bucket or settings.STORAGE_BUCKET

    def do_sign():
        return client.storage.from_(bucket).create_signed_url(path, expires_in)

    try:
        response = await asyncio.to_thread(do_sign)
    except StorageException as e:
        message = _storage_message(e)
        logger.error(f"Could not sign URL for '{path}': {message}")
        raise StorageError(f"Download link failed: {message}") from e

    url = None
    if isinstance(response, dict):
        url = response.get("signedURL") or response.get("signedUrl")
    if not url:
        raise StorageError(f"Download link failed: no URL returned for '{path}'")
    return url


async def bucket_exists(client: Any, bucket: Optional[str] = None) -> bool:
    """True if the bucket shows up in the project's bucket list."""
    bucket = bucket or settings.STORAGE_BUCKET
    buckets = await asyncio.to_thread(client.storage.list_buckets)
    return any(getattr(b, "name", None) == bucket for b in buckets or [])


def _storage_message(error: StorageException) -> str:
    # StorageException carries a dict payload: {"statusCode": ..., "error": ..., "message": ...}
    payload = error.args[0] if error.args else None
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or payload)
    return str(error)
