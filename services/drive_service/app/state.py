# services/drive_service/app/state.py
"""
File browser view state.

The UI never edits BrowserState in place: every change goes through reduce()
with one of the actions below, after the matching remote call succeeded.
"""
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from core.models import FileItem, FolderItem


class BrowserTab(str, Enum):
    ALL = "all"
    STARRED = "starred"
    RECENT = "recent"


class CurrentFolder(BaseModel):
    id: str
    name: str


class BrowserState(BaseModel):
    files: List[FileItem] = Field(default_factory=list)
    folders: List[FolderItem] = Field(default_factory=list)
    current_folder: Optional[CurrentFolder] = None
    active_tab: BrowserTab = BrowserTab.ALL
    storage_used: int = 0
    error: Optional[str] = None

    @property
    def current_folder_id(self) -> Optional[str]:
        return self.current_folder.id if self.current_folder else None

    def find_file(self, file_id: str) -> Optional[FileItem]:
        return next((f for f in self.files if f.id == file_id), None)

# --- Actions ---

class FilesLoaded(BaseModel):
    files: List[FileItem]
    folders: List[FolderItem]

class LoadFailed(BaseModel):
    message: str

class UploadSucceeded(BaseModel):
    files: List[FileItem]

class FileStarred(BaseModel):
    file_id: str
    starred: bool

class FileRenamed(BaseModel):
    file_id: str
    name: str

class FileDeleted(BaseModel):
    file_id: str

class FolderCreated(BaseModel):
    folder: FolderItem

class FolderOpened(BaseModel):
    folder_id: str
    name: str

class FolderClosed(BaseModel):
    pass

class TabChanged(BaseModel):
    tab: BrowserTab

BrowserAction = Union[
    FilesLoaded, LoadFailed, UploadSucceeded, FileStarred, FileRenamed,
    FileDeleted, FolderCreated, FolderOpened, FolderClosed, TabChanged,
]


def reduce(state: BrowserState, action: BrowserAction) -> BrowserState:
    """Returns the next state. The input state is left untouched."""
    if isinstance(action, FilesLoaded):
        return state.model_copy(update={
            "files": list(action.files),
            "folders": list(action.folders),
            "storage_used": sum(f.size for f in action.files),
            "error": None,
        })

    if isinstance(action, LoadFailed):
        return state.model_copy(update={"files": [], "folders": [], "storage_used": 0, "error": action.message})

    if isinstance(action, UploadSucceeded):
        # Uploads land in the current folder; anything else belongs to another view.
        # New uploads are unstarred, so the starred tab never shows them.
        added = [f for f in action.files if f.folder_id == state.current_folder_id]
        if state.active_tab == BrowserTab.STARRED:
            added = [f for f in added if f.starred]
        return state.model_copy(update={
            "files": state.files + added,
            "storage_used": state.storage_used + sum(f.size for f in added),
        })

    if isinstance(action, FileStarred):
        files = [
            f.model_copy(update={"starred": action.starred}) if f.id == action.file_id else f
            for f in state.files
        ]
        if state.active_tab == BrowserTab.STARRED and not action.starred:
            files = [f for f in files if f.id != action.file_id]
        return state.model_copy(update={"files": files})

    if isinstance(action, FileRenamed):
        files = [f.model_copy(update={"name": action.name}) if f.id == action.file_id else f for f in state.files]
        return state.model_copy(update={"files": files})

    if isinstance(action, FileDeleted):
        removed = state.find_file(action.file_id)
        if removed is None:
            return state
        return state.model_copy(update={
            "files": [f for f in state.files if f.id != action.file_id],
            "storage_used": state.storage_used - removed.size,
        })

    if isinstance(action, FolderCreated):
        return state.model_copy(update={"folders": state.folders + [action.folder]})

    if isinstance(action, FolderOpened):
        return state.model_copy(update={"current_folder": CurrentFolder(id=action.folder_id, name=action.name)})

    if isinstance(action, FolderClosed):
        return state.model_copy(update={"current_folder": None})

    if isinstance(action, TabChanged):
        return state.model_copy(update={"active_tab": action.tab})

    raise TypeError(f"Unknown action: {type(action).__name__}")
