# core/config.py
import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
import logging

# Load variables from .env file located in the project root directory
dotenv_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)
else:
    load_dotenv() # Fallback

class Settings(BaseSettings):
    """Loads configuration settings from environment variables and .env file."""

    # --- Supabase Configuration ---
    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None # Public (anon) key

    # --- Storage / Tables ---
    STORAGE_BUCKET: str = "files"
    FILES_TABLE: str = "files"
    FOLDERS_TABLE: str = "folders"
    MAX_UPLOAD_BYTES: int = 100 * 1024 * 1024 # 100 MB per file
    UPLOAD_CONCURRENCY: int = 3
    SIGNED_URL_EXPIRY: int = 3600 # seconds

    # --- Loading / Retry ---
    LOAD_TIMEOUT: float = 5.0 # seconds per attempt
    LOAD_RETRIES: int = 3
    RETRY_INTERVAL: float = 2.0 # seconds before the first retry

    # --- App URLs ---
    APP_BASE_URL: str = "http://localhost:7860"
    UI_PATH: str = "/ui"
    OAUTH_REDIRECT_URL: str | None = None # Defaults to {APP_BASE_URL}/auth/callback

    # --- Browser Sessions ---
    SESSION_COOKIE_NAME: str = "drive_session"
    SESSION_IDLE_TIMEOUT: int = 12 * 60 * 60 # seconds before an unused browser session is dropped

    # --- AI Chat Webhook ---
    CHAT_WEBHOOK_URL: str = "https://n8n.solynex.me/webhook/optivus-chat"
    CHAT_TIMEOUT: float = 30.0

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
    )

    @property
    def backend_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_KEY)

    @property
    def oauth_redirect_url(self) -> str:
        return self.OAUTH_REDIRECT_URL or f"{self.APP_BASE_URL.rstrip('/')}/auth/callback"

# Instantiate settings once for import
settings = Settings()

# --- Logging Setup ---
log_level_str = os.getenv("LOG_LEVEL", "INFO").upper(); log_level = getattr(logging, log_level_str, logging.INFO)
logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - [%(levelname)s] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
logger = logging.getLogger("Drive_Core")
logging.getLogger("httpx").setLevel(logging.WARNING); logging.getLogger("supabase").setLevel(logging.WARNING)
logging.getLogger("gotrue").setLevel(logging.WARNING); logging.getLogger("watchfiles").setLevel(logging.WARNING)

# --- Configuration Validation Checks ---
logger.info(f"Core Settings loaded. Log Level: {log_level_str}")
if not settings.backend_configured:
    logger.warning("Supabase URL/Key missing. Add SUPABASE_URL and SUPABASE_KEY to your .env file.")
else:
    logger.info(f"Using Supabase Storage Bucket: {settings.STORAGE_BUCKET}")
if settings.UPLOAD_CONCURRENCY < 1:
    logger.error(f"Invalid UPLOAD_CONCURRENCY: {settings.UPLOAD_CONCURRENCY}. Falling back to 1.")
    settings.UPLOAD_CONCURRENCY = 1
logger.info(f"Load Config: Timeout={settings.LOAD_TIMEOUT}s, Retries={settings.LOAD_RETRIES}, Interval={settings.RETRY_INTERVAL}s")
