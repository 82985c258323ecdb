# core/models.py
from pydantic import BaseModel, Field, ConfigDict, computed_field, field_validator
from typing import List, Optional, Dict, Any
from enum import Enum
import datetime
import mimetypes
import os

# --- Enums ---

class FileType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    ARCHIVE = "archive"
    PDF = "pdf"
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"

class SortOrder(str, Enum):
    DEFAULT = "default"
    RECENT = "recent" # modified, newest first

# --- Utility Functions ---

def get_file_type(mime_type: Optional[str]) -> FileType:
    """Maps a MIME type to the coarse type shown in the UI. Unknown types are documents."""
    if not mime_type:
        return FileType.DOCUMENT

    mime = mime_type.lower()

    if mime.startswith("image/"): return FileType.IMAGE
    if mime.startswith("video/"): return FileType.VIDEO
    if mime.startswith("audio/"): return FileType.AUDIO
    if "zip" in mime or "compressed" in mime or "archive" in mime: return FileType.ARCHIVE
    if "pdf" in mime: return FileType.PDF
    # Order matters: "vnd.openxmlformats-officedocument.spreadsheetml.sheet" contains "document"
    if "word" in mime or "document" in mime or "text" in mime: return FileType.DOCUMENT
    if "spreadsheet" in mime or "excel" in mime or "sheet" in mime: return FileType.SPREADSHEET
    if "presentation" in mime or "powerpoint" in mime or "slide" in mime: return FileType.PRESENTATION

    return FileType.DOCUMENT

def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)

def _parse_timestamp(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, str) and value:
        # PostgREST returns ISO-8601; older Pythons reject a trailing 'Z'
        return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    return datetime.datetime.now(datetime.timezone.utc)

# --- Core Data Models ---

class FileItem(BaseModel):
    """A file record from the 'files' table."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str = "Unknown file"
    type: FileType = FileType.DOCUMENT
    size: int = 0
    modified: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))
    starred: bool = False
    path: str = ""
    user_id: Optional[str] = None
    folder_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "FileItem":
        """Builds a FileItem from a raw row, filling defaults for missing or null columns."""
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "Unknown file",
            type=row.get("type") or FileType.DOCUMENT,
            size=row.get("size") or 0,
            modified=_parse_timestamp(row.get("modified")),
            starred=bool(row.get("starred")),
            path=row.get("path") or "",
            user_id=_optional_str(row.get("user_id")),
            folder_id=_optional_str(row.get("folder_id")),
        )

    @field_validator("type", mode="before")
    @classmethod
    def coerce_unknown_type(cls, value):
        try:
            return FileType(value)
        except ValueError:
            return FileType.DOCUMENT

class FolderItem(BaseModel):
    """A folder record. file_count is aggregated from child file rows, never stored."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    file_count: int = 0
    user_id: Optional[str] = None
    parent_id: Optional[str] = None
    path: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "FolderItem":
        # Embedded aggregates come back as [{"count": n}] (or {"count": n} from some PostgREST versions)
        files_agg = row.get("files")
        if isinstance(files_agg, list):
            file_count = files_agg[0].get("count", 0) if files_agg else 0
        elif isinstance(files_agg, dict):
            file_count = files_agg.get("count", 0)
        else:
            file_count = 0
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            file_count=file_count or 0,
            user_id=_optional_str(row.get("user_id")),
            parent_id=_optional_str(row.get("parent_id")),
            path=row.get("path"),
        )

class SessionUser(BaseModel):
    """Read-only projection of the auth provider's user."""
    id: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    display_name: Optional[str] = None

    @classmethod
    def from_auth_user(cls, user: Any) -> "SessionUser":
        metadata = getattr(user, "user_metadata", None) or {}
        return cls(
            id=str(user.id),
            email=getattr(user, "email", None),
            avatar_url=metadata.get("avatar_url"),
            display_name=metadata.get("full_name") or metadata.get("name"),
        )

class UploadSource(BaseModel):
    """A file waiting to be uploaded."""
    filename: str
    content_type: Optional[str] = None
    data: bytes

    @computed_field
    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, file_path: str, filename: Optional[str] = None) -> "UploadSource":
        name = filename or os.path.basename(file_path)
        content_type, _ = mimetypes.guess_type(name)
        with open(file_path, "rb") as f:
            data = f.read()
        return cls(filename=name, content_type=content_type, data=data)

# --- Service Request/Response Models ---

class UploadFailure(BaseModel):
    filename: str
    message: str

class UploadBatchResult(BaseModel):
    """Outcome of a multi-file upload. One failure entry per failed source, even when names repeat."""
    uploaded: List[FileItem] = Field(default_factory=list)
    failed: List[UploadFailure] = Field(default_factory=list)

class ConfigStatus(BaseModel):
    """Result of probing the backend configuration."""
    env_vars: bool = False
    connection: bool = False
    files_table: bool = False
    folders_table: bool = False
    storage: bool = False

    @computed_field
    @property
    def all_ok(self) -> bool:
        return all([self.env_vars, self.connection, self.files_table, self.folders_table, self.storage])

class StorageCategory(BaseModel):
    label: str
    extensions: List[str]
    size: int = 0

class StorageStats(BaseModel):
    """Dashboard figures computed from the user's files."""
    total: int = 100 * 1024 * 1024 * 1024 # 100 GB quota
    used: int = 0
    total_files: int = 0
    breakdown: List[StorageCategory] = Field(default_factory=list)

    @computed_field
    @property
    def percent_used(self) -> float:
        return round(self.used / self.total * 100, 2) if self.total else 0.0

class ChatMessage(BaseModel):
    """A single message in the assistant conversation."""
    text: str
    sender: str = Field(description="'user' or 'ai'")
    timestamp: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))

class HealthResponse(BaseModel):
    status: str = Field(description="'ok' or 'degraded'")
    backend_configured: bool
    active_sessions: int = Field(0, description="Browser sessions currently tracked")
    signed_in_sessions: int = 0
    message: Optional[str] = None
