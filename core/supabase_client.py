from supabase import create_client, Client
from supabase.client import ClientOptions
from core.config import settings, logger
from core.errors import ConfigurationError
from typing import Optional
import asyncio
from functools import partial

# Shared anon-key client for checks that run without a signed-in user (configuration check).
# Anything done on behalf of a user goes through that user's own session client.
_supabase_client: Optional[Client] = None
_init_lock = asyncio.Lock()

def require_backend_config() -> None:
    """Raises ConfigurationError when the Supabase URL or key is unset. Makes no network call."""
    if not settings.backend_configured:
        logger.error("Supabase URL or Key not configured. Cannot create client.")
        raise ConfigurationError(
            "Supabase configuration is missing",
            detail="Please add SUPABASE_URL and SUPABASE_KEY to your .env file",
        )

async def _create_client(options: Optional[ClientOptions] = None) -> Client:
    try:
        # create_client is synchronous; keep it off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            partial(create_client, settings.SUPABASE_URL, settings.SUPABASE_KEY, options=options)
        )
    except Exception as e:
        logger.error(f"Failed to initialize Supabase client: {e}", exc_info=True)
        raise ConfigurationError(f"Failed to initialize Supabase client: {e}") from e

async def get_supabase_client() -> Client:
    """
    Initializes and returns the shared anon Supabase client (coroutine-safe).
    Raises ConfigurationError before touching the network if credentials are missing.
    """
    global _supabase_client

    require_backend_config()

    if _supabase_client is None:
        async with _init_lock:
            # Double check after acquiring lock
            if _supabase_client is None:
                logger.info("Initializing shared Supabase client with anon key...")
                _supabase_client = await _create_client()
                logger.info("Supabase client initialized successfully.")

    return _supabase_client

async def create_session_client() -> Client:
    """
    Creates a new, uncached client for one browser session.
    Each client keeps its own auth tokens (and PKCE verifier), so signing in on one
    session never authorizes requests made by another.
    """
    require_backend_config()
    client = await _create_client(ClientOptions(flow_type="pkce"))
    logger.debug("Created per-session Supabase client.")
    return client

# Define Table names here for consistency
FILES_TABLE = settings.FILES_TABLE
FOLDERS_TABLE = settings.FOLDERS_TABLE
STORAGE_BUCKET = settings.STORAGE_BUCKET
