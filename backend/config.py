from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()
_PROJECT_ROOT = _BACKEND_DIR.parent.resolve()
_DEFAULT_DB_PATH = (_PROJECT_ROOT / "data" / "leaderboard.db").resolve()
_SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"


class Settings(BaseSettings):
    # Upstream credentials (checked per request, not at startup)
    NEYNAR_API_KEY: Optional[str] = None
    NEYNAR_API_URL: str = "https://api.neynar.com"
    RPC_URL: Optional[str] = None

    # Ledger contracts
    V1_CONTRACT_ADDRESS: Optional[str] = None
    V2_CONTRACT_ADDRESS: Optional[str] = None
    TOKEN_ADDRESS: Optional[str] = None  # Payout token; decimals() read on-chain
    TOKEN_DECIMALS: int = 18  # Used when TOKEN_ADDRESS is not configured

    # Ledger read windows
    LEADERBOARD_V1_PAGE_SIZE: int = 100  # Participants per getLeaderboard call
    LEADERBOARD_V2_BATCH_SIZE: int = 50  # Calls per JSON-RPC batch
    LEADERBOARD_V2_MAX_PARTICIPANTS: int = 500  # Safety cap on address discovery
    LEADERBOARD_MAX_ENTRIES: int = 100  # Top-N kept after ranking

    # Identity enrichment
    IDENTITY_BATCH_SIZE: int = 25

    # Caching
    LEADERBOARD_CACHE_NAMESPACE: str = "leaderboard"
    LEADERBOARD_CACHE_VERSION: str = "v12"  # Bump when the entry shape changes
    LEADERBOARD_CACHE_TTL_SECONDS: int = 3600
    IDENTITY_CACHE_TTL_SECONDS: int = 86400

    # Retry
    API_TIMEOUT_SECONDS: float = 30.0
    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 2.0
    RETRY_RATE_LIMIT_FLOOR: float = 10.0

    # Persistence of resolved identities
    DATABASE_URL: str = f"{_SQLITE_ASYNC_PREFIX}{_DEFAULT_DB_PATH}"
    IDENTITY_PERSISTENCE_ENABLED: bool = True

    # Operations
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None
    CORS_ORIGINS: list[str] = ["*"]
    ADMIN_TOKEN: Optional[str] = None
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    @field_validator("NEYNAR_API_URL", "RPC_URL", mode="before")
    @classmethod
    def _normalize_url_field(cls, value: object) -> object:
        """Trim accidental quotes/whitespace from URL env vars."""
        if value is None:
            return value
        text = str(value).strip().strip('"').strip("'")
        if not text:
            return None
        return text.rstrip("/")

    @field_validator(
        "NEYNAR_API_KEY",
        "V1_CONTRACT_ADDRESS",
        "V2_CONTRACT_ADDRESS",
        "TOKEN_ADDRESS",
        "ADMIN_TOKEN",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if value is None:
            return value
        text = str(value).strip().strip('"').strip("'")
        return text or None

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        """Resolve relative SQLite paths against the project root."""
        if value is None:
            return value

        text = str(value).strip().strip('"').strip("'")
        if not text.startswith(_SQLITE_ASYNC_PREFIX):
            return text

        path_part = text[len(_SQLITE_ASYNC_PREFIX) :]
        if not path_part or path_part in {":memory:", "/:memory:"}:
            return f"{_SQLITE_ASYNC_PREFIX}:memory:"
        if path_part.startswith("/"):
            absolute = Path(path_part).resolve()
        else:
            absolute = (_PROJECT_ROOT / path_part).resolve()
        return f"{_SQLITE_ASYNC_PREFIX}{absolute}"

    def missing_upstream_settings(self) -> list[str]:
        """Names of settings a fresh leaderboard computation cannot run without."""
        missing = []
        if not self.NEYNAR_API_KEY:
            missing.append("NEYNAR_API_KEY")
        if not self.RPC_URL:
            missing.append("RPC_URL")
        if not self.V1_CONTRACT_ADDRESS:
            missing.append("V1_CONTRACT_ADDRESS")
        return missing

    class Config:
        env_file = (
            str(_PROJECT_ROOT / ".env"),
            str(_BACKEND_DIR / ".env"),
        )
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
