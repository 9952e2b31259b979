"""AccredChain configuration constants.

Environment-based configuration. Every value can be overridden with an
``ACCRED_*`` environment variable; the defaults target local development.
"""
import os
from pathlib import Path


# =============================================================================
# PERSISTENCE CONFIGURATION
# =============================================================================

def _get_data_dir() -> Path:
    """Determine data directory based on environment.

    Priority:
    1. ACCRED_DATA_DIR env var (explicit override)
    2. /data/accredchain if it exists (Docker volume mount)
    3. ~/.accredchain (local development)
    4. /tmp/accredchain (container fallback when home unavailable)
    """
    env_path = os.getenv("ACCRED_DATA_DIR")
    if env_path:
        return Path(env_path)

    docker_path = Path("/data/accredchain")
    if docker_path.exists():
        return docker_path

    try:
        home_path = Path.home() / ".accredchain"
        home_path.mkdir(parents=True, exist_ok=True)
        return home_path
    except (OSError, PermissionError):
        return Path("/tmp/accredchain")


DATA_DIR: Path = _get_data_dir()

# "sql" (SQLAlchemy) or "json" (flat JSON documents under DATA_DIR)
STORE_BACKEND: str = os.getenv("ACCRED_STORE_BACKEND", "sql").lower()


def _get_database_url() -> str:
    """Get database URL from environment.

    Priority:
    1. ACCRED_DATABASE_URL - explicit full connection string
    2. ACCRED_POSTGRES_* - construct PostgreSQL URL from components
    3. SQLite fallback for local development
    """
    if url := os.getenv("ACCRED_DATABASE_URL"):
        return url

    host = os.getenv("ACCRED_POSTGRES_HOST")
    if host:
        user = os.getenv("ACCRED_POSTGRES_USER", "accred")
        password = os.getenv("ACCRED_POSTGRES_PASSWORD", "")
        db = os.getenv("ACCRED_POSTGRES_DB", "accredchain")
        return f"postgresql+psycopg://{user}:{password}@{host}/{db}?sslmode=require"

    return f"sqlite:///{DATA_DIR}/accredchain.db"


DATABASE_URL: str = _get_database_url()

# Local token-id allocation at credential creation. The JSON backend has no
# chain confirmation flow of its own, so it reserves ids by default.
ASSIGN_TOKEN_IDS: bool = os.getenv(
    "ACCRED_ASSIGN_TOKEN_IDS",
    "true" if STORE_BACKEND == "json" else "false",
).lower() == "true"


# =============================================================================
# AUTHENTICATION CONFIGURATION
# =============================================================================

# Name embedded in the wallet challenge message; must match the client exactly.
APP_NAME: str = os.getenv("ACCRED_APP_NAME", "AccredChain")

JWT_SECRET: str = os.getenv("ACCRED_JWT_SECRET", "accredchain-dev-secret")
JWT_ALGORITHM: str = os.getenv("ACCRED_JWT_ALGORITHM", "HS256")
TOKEN_TTL_DAYS: int = int(os.getenv("ACCRED_TOKEN_TTL_DAYS", "7"))

BCRYPT_COST: int = int(os.getenv("ACCRED_BCRYPT_COST", "12"))
PASSWORD_MIN_LENGTH: int = int(os.getenv("ACCRED_PASSWORD_MIN_LENGTH", "6"))

# Login rate limiting
LOGIN_RATE_LIMIT_MAX_ATTEMPTS: int = int(os.getenv("ACCRED_LOGIN_RATE_LIMIT_MAX", "5"))
LOGIN_RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("ACCRED_LOGIN_RATE_LIMIT_WINDOW", "900"))  # 15 min


# =============================================================================
# VERIFICATION / QUERY CONFIGURATION
# =============================================================================

BATCH_VERIFY_MAX: int = int(os.getenv("ACCRED_BATCH_VERIFY_MAX", "50"))
DEFAULT_PAGE_SIZE: int = int(os.getenv("ACCRED_DEFAULT_PAGE_SIZE", "20"))
MAX_PAGE_SIZE: int = int(os.getenv("ACCRED_MAX_PAGE_SIZE", "100"))


# =============================================================================
# LOGGING / AUDIT CONFIGURATION
# =============================================================================

AUDIT_ENABLED: bool = os.getenv("ACCRED_AUDIT_ENABLED", "true").lower() == "true"
LOG_LEVEL: str = os.getenv("ACCRED_LOG_LEVEL", "INFO").upper()
LOG_FILE: str | None = os.getenv("ACCRED_LOG_FILE") or None
