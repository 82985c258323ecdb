# services/drive_service/app/views.py
"""
Event handlers behind the Drive UI.

Every handler catches its own failures, logs them and hands back a short
notification for the user; nothing raises into the render tree. Local state is
only changed through state.reduce() once the remote call has succeeded.
"""
from typing import Dict, List, Optional, Tuple

from core.auth import AuthSession, validate_sign_up
from core.chat_client import ChatClient, GREETING
from core.config import settings, logger as core_logger
from core.errors import AuthError, ConfigurationError, NetworkError, NotFoundError, StorageError, is_network_error
from core.models import SortOrder, UploadSource
from core.retry import retry, with_timeout
from core.utils import compute_storage_stats, count_files, filter_files, format_date, format_file_size
from . import crud
from .state import (
    BrowserState, BrowserTab, FileDeleted, FileRenamed, FileStarred, FilesLoaded, FolderClosed,
    FolderCreated, FolderOpened, LoadFailed, TabChanged, UploadSucceeded, reduce,
)

logger = core_logger.getChild("DriveService").getChild("Views")

CONFIG_BANNER = (
    "**Configuration Error:** Supabase is not configured. "
    "Add `SUPABASE_URL` and `SUPABASE_KEY` to your `.env` file and restart."
)
FILE_COLUMNS = ["ID", "Name", "Type", "Size", "Modified", "Starred"]
FOLDER_COLUMNS = ["ID", "Name", "Files"]


def describe_error(error: Exception, title: str) -> str:
    """User-facing notification text for a failed action."""
    if isinstance(error, ConfigurationError):
        return "Configuration Error: Please configure Supabase environment variables in .env"
    if isinstance(error, AuthError):
        return "Please sign in to continue."
    if isinstance(error, NetworkError) or is_network_error(error):
        return f"{title}: Please check your connection and try again."
    if isinstance(error, NotFoundError):
        return f"{title}: The file no longer exists."
    if isinstance(error, StorageError) and error.detail:
        return f"{title}: {error} ({error.detail})"
    return f"{title}: {error}"


class DriveViews:
    """
    Stateless handlers shared by every browser. Each call receives the caller's own
    AuthSession; all backend calls go through that session's client.
    """

    def __init__(self, chat_client: ChatClient):
        self.chat_client = chat_client

    # --- Banner / session ---

    def config_banner(self) -> str:
        return "" if settings.backend_configured else CONFIG_BANNER

    def session_summary(self, session: AuthSession) -> str:
        user = session.user
        if user is None:
            return "Not signed in."
        return f"Signed in as **{user.display_name or user.email or user.id}**"

    # --- Loading ---

    async def _fetch(self, db_client, user_id: str, state: BrowserState):
        folder_id = state.current_folder_id
        if state.active_tab == BrowserTab.STARRED:
            files = await crud.list_files(db_client, user_id, folder_id, starred_only=True)
        elif state.active_tab == BrowserTab.RECENT:
            files = await crud.list_files(db_client, user_id, folder_id, sort_order=SortOrder.RECENT)
        else:
            files = await crud.list_files(db_client, user_id, folder_id)
        folders = await crud.list_folders(db_client, user_id, folder_id)
        return files, folders

    async def load(self, session: AuthSession, state: BrowserState) -> Tuple[BrowserState, str]:
        """Loads the current folder for the active tab, retrying transient failures."""
        try:
            user = session.require_user()
            db_client = await session.get_client()
            files, folders = await retry(
                lambda: with_timeout(lambda: self._fetch(db_client, user.id, state), settings.LOAD_TIMEOUT),
                retries_left=settings.LOAD_RETRIES,
                interval=settings.RETRY_INTERVAL,
                exponential=False,
                should_retry=is_network_error,
            )
        except Exception as e:
            logger.error(f"Error loading data: {e}")
            message = describe_error(e, "Failed to load data")
            return reduce(state, LoadFailed(message=message)), message

        logger.info(f"Loaded {len(files)} file(s), {len(folders)} folder(s) for user {user.id}")
        return reduce(state, FilesLoaded(files=files, folders=folders)), ""

    async def change_tab(self, session: AuthSession, state: BrowserState, tab: str) -> Tuple[BrowserState, str]:
        return await self.load(session, reduce(state, TabChanged(tab=BrowserTab(tab))))

    async def open_folder(self, session: AuthSession, state: BrowserState, folder_id: str) -> Tuple[BrowserState, str]:
        folder = next((f for f in state.folders if f.id == folder_id), None)
        if folder is None:
            return state, "Folder not found."
        return await self.load(session, reduce(state, FolderOpened(folder_id=folder.id, name=folder.name)))

    async def go_back(self, session: AuthSession, state: BrowserState) -> Tuple[BrowserState, str]:
        return await self.load(session, reduce(state, FolderClosed()))

    # --- File actions ---

    async def upload(self, session: AuthSession, state: BrowserState, file_paths: Optional[List[str]]) -> Tuple[BrowserState, str]:
        if not file_paths:
            return state, "Please choose at least one file."
        try:
            user = session.require_user()
            sources = [UploadSource.from_path(p) for p in file_paths]
            db_client = await session.get_client()
            result = await crud.upload_files(db_client, sources, user.id, state.current_folder_id)
        except Exception as e:
            logger.error(f"Error uploading files: {e}")
            return state, describe_error(e, "Upload failed")

        state = reduce(state, UploadSucceeded(files=result.uploaded))
        if result.uploaded and not result.failed:
            return state, f"Upload successful: {len(result.uploaded)} file(s) uploaded."
        if result.uploaded:
            return state, f"Partial upload success: {len(result.uploaded)} file(s) uploaded, {len(result.failed)} failed."
        return state, "Upload failed: All files failed to upload. Please try again."

    async def toggle_star(self, session: AuthSession, state: BrowserState, file_id: str) -> Tuple[BrowserState, str]:
        current = state.find_file(file_id)
        if current is None:
            return state, "Operation failed: Could not find that file."
        try:
            db_client = await session.get_client()
            updated = await crud.star_file(db_client, file_id, not current.starred)
        except Exception as e:
            logger.error(f"Error starring file: {e}")
            return state, describe_error(e, "Operation failed")

        state = reduce(state, FileStarred(file_id=file_id, starred=updated.starred))
        return state, "Added to starred" if updated.starred else "Removed from starred"

    async def rename(self, session: AuthSession, state: BrowserState, file_id: str, new_name: str) -> Tuple[BrowserState, str]:
        try:
            db_client = await session.get_client()
            updated = await crud.rename_file(db_client, file_id, new_name)
        except Exception as e:
            logger.error(f"Error renaming file: {e}")
            return state, describe_error(e, "Rename failed")
        return reduce(state, FileRenamed(file_id=file_id, name=updated.name)), f"Renamed to {updated.name}."

    async def delete(self, session: AuthSession, state: BrowserState, file_id: str) -> Tuple[BrowserState, str]:
        target = state.find_file(file_id)
        if target is None:
            return state, "Delete failed: Could not find that file."
        try:
            db_client = await session.get_client()
            await crud.delete_file(db_client, target.id, target.path)
        except Exception as e:
            logger.error(f"Error deleting file: {e}")
            return state, describe_error(e, "Delete failed")
        return reduce(state, FileDeleted(file_id=file_id)), f"{target.name} has been deleted."

    async def create_folder(self, session: AuthSession, state: BrowserState, name: str) -> Tuple[BrowserState, str]:
        if not name or not name.strip():
            return state, "Please enter a folder name."
        try:
            user = session.require_user()
            db_client = await session.get_client()
            folder = await crud.create_folder(db_client, name, user.id, state.current_folder_id)
        except Exception as e:
            logger.error(f"Error creating folder: {e}")
            return state, describe_error(e, "Failed to create folder")
        return reduce(state, FolderCreated(folder=folder)), f"{folder.name} has been created."

    async def download_link(self, session: AuthSession, state: BrowserState, file_id: str) -> str:
        target = state.find_file(file_id)
        if target is None:
            return "Download failed: Could not find that file."
        try:
            db_client = await session.get_client()
            url = await crud.get_download_url(db_client, target.path)
        except Exception as e:
            logger.error(f"Error creating download link: {e}")
            return describe_error(e, "Download failed")
        return f"[Download {target.name}]({url})"

    # --- Rendering ---

    def render_files(self, state: BrowserState, query: Optional[str] = None) -> List[List[str]]:
        return [
            [f.id, f.name, f.type.value, format_file_size(f.size), format_date(f.modified), "★" if f.starred else ""]
            for f in filter_files(state.files, query)
        ]

    def render_folders(self, state: BrowserState) -> List[List[str]]:
        return [[f.id, f.name, str(f.file_count)] for f in state.folders]

    def render_location(self, state: BrowserState) -> str:
        counts = count_files(state.files)
        location = f"My Drive / {state.current_folder.name}" if state.current_folder else "My Drive"
        return (
            f"**{location}**: {counts['all']} file(s), {counts['starred']} starred, "
            f"{counts['recent']} recent, {format_file_size(state.storage_used)} used"
        )

    async def dashboard(self, session: AuthSession) -> str:
        """Storage usage across all of the signed-in user's files, in every folder."""
        try:
            user = session.require_user()
            db_client = await session.get_client()
            files = await crud.list_all_files(db_client, user.id)
        except Exception as e:
            logger.error(f"Error loading dashboard data: {e}")
            return describe_error(e, "Failed to load dashboard")

        stats = compute_storage_stats(files)
        lines = [
            f"**Storage:** {format_file_size(stats.used)} of {format_file_size(stats.total)} used ({stats.percent_used}%)",
            f"**Total files:** {stats.total_files}",
            "",
        ]
        lines += [f"- {c.label}: {format_file_size(c.size)}" for c in stats.breakdown]
        return "\n".join(lines)

    async def config_status(self) -> str:
        status = await crud.check_configuration()
        labels = {
            "env_vars": "Environment variables",
            "connection": "Supabase connection",
            "files_table": "Files table",
            "folders_table": "Folders table",
            "storage": "Storage bucket",
        }
        rows = [f"- {label}: {'OK' if getattr(status, key) else 'FAILED'}" for key, label in labels.items()]
        return "\n".join(rows)

    # --- Auth ---

    async def sign_in(self, session: AuthSession, email: str, password: str) -> str:
        if not email or not password:
            return "Please enter your email and password."
        try:
            user = await session.sign_in_with_password(email, password)
        except Exception as e:
            logger.error(f"Sign in failed for {email}: {e}")
            return f"Sign in failed: {e}"
        return f"Welcome back, {user.email or user.id}!"

    async def sign_in_with_google(self, session: AuthSession) -> str:
        try:
            url = await session.sign_in_with_oauth("google")
        except Exception as e:
            logger.error(f"OAuth sign in failed: {e}")
            return f"Google sign in failed: {e}"
        return f"[Continue with Google]({url})"

    async def sign_up(self, session: AuthSession, email: str, password: str, confirm_password: str) -> str:
        try:
            validate_sign_up(email, password, confirm_password)
            await session.sign_up(email, password)
        except Exception as e:
            logger.error(f"Sign up failed for {email}: {e}")
            return str(e) if isinstance(e, ValueError) else f"Sign up failed: {e}"
        return "Account created! Check your email for a confirmation link to activate your account."

    async def sign_out(self, session: AuthSession) -> Tuple[BrowserState, str]:
        try:
            await session.sign_out()
        except Exception as e:
            logger.error(f"Sign out failed: {e}")
            return BrowserState(), f"Sign out failed: {e}"
        return BrowserState(), "Signed out."

    async def reset_password(self, session: AuthSession, email: str) -> str:
        if not email:
            return "Please enter your email address."
        try:
            await session.reset_password(email)
        except Exception as e:
            logger.error(f"Password reset failed for {email}: {e}")
            return f"Failed to send reset password email: {e}"
        return f"We've sent a password reset link to {email}."

    # --- Chat ---

    def initial_chat(self) -> List[Dict[str, str]]:
        return [{"role": "assistant", "content": GREETING}]

    async def chat(self, session: AuthSession, message: str, history: Optional[List[Dict[str, str]]]) -> Tuple[List[Dict[str, str]], str]:
        history = list(history or self.initial_chat())
        if not message or not message.strip():
            return history, ""
        history.append({"role": "user", "content": message})
        reply = await self.chat_client.send_message(message, session.user)
        history.append({"role": "assistant", "content": reply.text})
        return history, ""
