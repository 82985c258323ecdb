# core/auth.py
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from core.config import settings, logger as core_logger
from core.errors import AuthError, ConfigurationError
from core.models import SessionUser
from core.supabase_client import create_session_client

logger = core_logger.getChild("Auth")

AuthListener = Callable[[str, Optional[SessionUser]], None]

MIN_PASSWORD_LENGTH = 6


def validate_sign_up(email: str, password: str, confirm_password: str) -> None:
    """Raises ValueError with a user-facing message when the sign-up form is invalid."""
    if not email or not password or not confirm_password:
        raise ValueError("Please fill in all fields")
    if "@" not in email:
        raise ValueError("Please enter a valid email address")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if password != confirm_password:
        raise ValueError("Passwords do not match")


class AuthSession:
    """
    Owns the current-user state for one browser session.

    Each session drives its own Supabase client, so tokens never leak between
    visitors. Sessions are created and closed by AuthSessionRegistry. Backend
    errors from the sign-in family of calls are surfaced unchanged.
    """

    def __init__(self, client: Any = None):
        self._client = client
        self._subscription = None
        self._listeners: List[AuthListener] = []
        self.user: Optional[SessionUser] = None
        self.is_loading = True
        self.last_seen = time.monotonic()

    async def get_client(self):
        """This session's own backend client. Raises ConfigurationError when credentials are unset."""
        if self._client is None:
            self._client = await create_session_client()
        return self._client

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    # --- Lifecycle ---

    async def start(self) -> None:
        """Loads the current session and subscribes to auth changes."""
        try:
            client = await self.get_client()
        except ConfigurationError as e:
            logger.warning(f"Auth session not started: {e}")
            self.is_loading = False
            return

        try:
            session = await asyncio.to_thread(client.auth.get_session)
            self._set_user(session.user if session else None)
            logger.info(f"Initial session loaded (signed_in={self.user is not None}).")
        except Exception as e:
            logger.error(f"Failed to read current session: {e}", exc_info=True)
            self._set_user(None)

        if self._subscription is None:
            self._subscription = client.auth.on_auth_state_change(self._on_auth_state_change)
            logger.debug("Subscribed to auth state changes.")
        self.is_loading = False

    async def close(self) -> None:
        """Unsubscribes from auth changes. Safe to call more than once."""
        if self._subscription is not None:
            try:
                self._subscription.unsubscribe()
                logger.debug("Unsubscribed from auth state changes.")
            finally:
                self._subscription = None
        self._listeners.clear()

    def add_listener(self, callback: AuthListener) -> Callable[[], None]:
        """Registers a callback for auth changes. Returns a function that removes it."""
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return remove

    def _set_user(self, auth_user: Any) -> None:
        self.user = SessionUser.from_auth_user(auth_user) if auth_user else None

    def _on_auth_state_change(self, event: str, session: Any) -> None:
        self._set_user(session.user if session else None)
        logger.info(f"Auth state changed: {event} (user={self.user.id if self.user else None})")
        for listener in list(self._listeners):
            try:
                listener(event, self.user)
            except Exception as e:
                logger.error(f"Auth listener failed on {event}: {e}", exc_info=True)

    # --- Accessors ---

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def require_user(self) -> SessionUser:
        if self.user is None:
            raise AuthError("No authenticated user found")
        return self.user

    # --- Operations ---

    async def sign_in_with_password(self, email: str, password: str) -> SessionUser:
        client = await self.get_client()
        response = await asyncio.to_thread(
            client.auth.sign_in_with_password, {"email": email, "password": password}
        )
        self._set_user(response.user)
        logger.info(f"Signed in with password: {email}")
        return self.require_user()

    async def sign_in_with_oauth(self, provider: str = "google") -> str:
        """Starts an OAuth flow and returns the provider URL the browser should open."""
        client = await self.get_client()
        response = await asyncio.to_thread(
            client.auth.sign_in_with_oauth,
            {"provider": provider, "options": {"redirect_to": settings.oauth_redirect_url}},
        )
        logger.info(f"OAuth sign-in started with provider '{provider}'")
        return response.url

    async def exchange_code_for_session(self, code: str) -> Optional[SessionUser]:
        """Completes the OAuth redirect. Returns the signed-in user, or None if no session came back."""
        client = await self.get_client()
        response = await asyncio.to_thread(client.auth.exchange_code_for_session, {"auth_code": code})
        session = getattr(response, "session", None)
        self._set_user(session.user if session else getattr(response, "user", None))
        return self.user

    async def sign_up(self, email: str, password: str) -> Optional[SessionUser]:
        client = await self.get_client()
        response = await asyncio.to_thread(
            client.auth.sign_up,
            {"email": email, "password": password, "options": {"email_redirect_to": settings.oauth_redirect_url}},
        )
        logger.info(f"Sign-up submitted for {email}")
        # Without email confirmation disabled there is no session yet
        return SessionUser.from_auth_user(response.user) if response.user else None

    async def sign_out(self) -> None:
        client = await self.get_client()
        await asyncio.to_thread(client.auth.sign_out)
        self._set_user(None)
        logger.info("Signed out.")

    async def reset_password(self, email: str) -> None:
        client = await self.get_client()
        await asyncio.to_thread(
            client.auth.reset_password_for_email, email, {"redirect_to": settings.oauth_redirect_url}
        )
        logger.info(f"Password reset email requested for {email}")


class AuthSessionRegistry:
    """
    One AuthSession per browser, keyed by the browser's session cookie.

    The UI handlers and the OAuth callback both look sessions up here, so a
    sign-in completes in the same session that started it. Sessions idle for
    longer than SESSION_IDLE_TIMEOUT are closed on the next lookup.
    """

    def __init__(self, on_auth_change: Optional[AuthListener] = None, idle_timeout: Optional[float] = None):
        self._sessions: Dict[str, AuthSession] = {}
        self._lock = asyncio.Lock()
        self._on_auth_change = on_auth_change
        self.idle_timeout = idle_timeout if idle_timeout is not None else settings.SESSION_IDLE_TIMEOUT

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def signed_in_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.is_authenticated)

    def find(self, key: Optional[str]) -> Optional[AuthSession]:
        """Existing session for key, or None. Never creates one."""
        session = self._sessions.get(key) if key else None
        if session is not None:
            session.touch()
        return session

    async def get(self, key: str) -> AuthSession:
        """Returns the session for key, creating and starting it on first use."""
        if not key:
            raise ValueError("Session key is required")
        async with self._lock:
            await self._prune()
            session = self._sessions.get(key)
            if session is None:
                session = AuthSession()
                if self._on_auth_change is not None:
                    session.add_listener(self._on_auth_change)
                await session.start()
                self._sessions[key] = session
                logger.info(f"Started browser session ({len(self._sessions)} active).")
        session.touch()
        return session

    async def discard(self, key: str) -> None:
        async with self._lock:
            session = self._sessions.pop(key, None)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
        logger.info(f"Closed {len(sessions)} browser session(s).")

    async def _prune(self) -> None:
        # Caller holds the lock
        cutoff = time.monotonic() - self.idle_timeout
        stale = [k for k, s in self._sessions.items() if s.last_seen < cutoff]
        for key in stale:
            await self._sessions.pop(key).close()
        if stale:
            logger.info(f"Dropped {len(stale)} idle browser session(s).")
