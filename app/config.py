"""
Application configuration from environment variables.

Load with python-dotenv in main so env vars are available before imports.
Validates critical secrets at module load; missing values raise RuntimeError.
"""
import os
from datetime import timedelta

# --- Required (raise if missing) ---
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
# Secret of the identity provider that signs the bearer tokens sent by the UI
IDENTITY_JWT_SECRET = os.getenv("IDENTITY_JWT_SECRET")

for name, val in [
    ("GOOGLE_CLIENT_ID", GOOGLE_CLIENT_ID),
    ("GOOGLE_CLIENT_SECRET", GOOGLE_CLIENT_SECRET),
    ("IDENTITY_JWT_SECRET", IDENTITY_JWT_SECRET),
]:
    if not val or not str(val).strip():
        raise RuntimeError(f"Required env var {name} is missing or empty")

IDENTITY_JWT_ALGORITHM = "HS256"
# Managed identity providers usually stamp "authenticated"; unset skips the check
IDENTITY_JWT_AUDIENCE = os.getenv("IDENTITY_JWT_AUDIENCE") or None


def _int_env(key: str, default: int) -> int:
    try:
        return max(1, int(os.getenv(key, str(default))))
    except ValueError:
        return default


def _bool_env(key: str, default: str) -> bool:
    return os.getenv(key, default).lower() in ("1", "true", "yes")


# --- Google endpoints ---
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"

# Read-only file listing plus the account email for display
GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]

# --- Optional with defaults ---
# Frontend URL, the only origin allowed by CORS
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")

# OAuth CSRF: lifetime of a server-side state entry
OAUTH_STATE_MAX_AGE = _int_env("OAUTH_STATE_MAX_AGE", 600)  # 10 minutes
# Reject callbacks that do not present a state issued by /drive-oauth/auth-url
VERIFY_OAUTH_STATE = _bool_env("VERIFY_OAUTH_STATE", "true")

# Cached access token is reused only while it has more than this left
TOKEN_REFRESH_BUFFER = timedelta(minutes=5)

# Drive listing page sizes
DRIVE_DEFAULT_PAGE_SIZE = _int_env("DRIVE_DEFAULT_PAGE_SIZE", 50)
DRIVE_MAX_PAGE_SIZE = _int_env("DRIVE_MAX_PAGE_SIZE", 100)

# Request timeouts (connect, read) in seconds
GOOGLE_REQUEST_TIMEOUT = (5, 30)
DRIVE_REQUEST_TIMEOUT = (5, 60)

# Database URL (SQLite default; use Postgres URL in production)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")

# Skip create_all at startup (set in production when using migrations)
SKIP_DB_INIT = _bool_env("SKIP_DB_INIT", "false")

# Environment: development | production (affects .env loading)
ENV = os.getenv("ENV", "development").lower()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
