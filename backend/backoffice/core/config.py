import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


def _get_version() -> str:
    """Read version from pyproject.toml or environment variable."""
    # Environment wins (Docker/CI overrides)
    if env_version := os.getenv("BACKOFFICE_VERSION"):
        return env_version

    try:
        pyproject_path = Path(__file__).parent.parent.parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            content = pyproject_path.read_text()
            for line in content.split("\n"):
                if line.startswith("version"):
                    # Parse: version = "0.1.0"
                    return line.split("=")[1].strip().strip('"').strip("'")
    except OSError:
        pass

    return "0.0.0-dev"


APP_VERSION = _get_version()

INSECURE_SECRET_DEFAULTS = [
    "dev-secret-key-change-in-prod",
    "secret",
    "changeme",
]


class Settings(BaseSettings):
    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "backoffice"
    POSTGRES_PASSWORD: str = "devpassword"
    POSTGRES_DB: str = "backoffice"
    # Pool sizing is tunable per deployment (single-worker dev vs multi-worker prod)
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # JWT
    JWT_SECRET_KEY: str = "dev-secret-key-change-in-prod"  # In production, ALWAYS override via env var
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 480

    # App
    APP_NAME: str = "Household Back-Office"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Bulk operation engine
    BULK_DEFAULT_BATCH_SIZE: int = 50
    BULK_MAX_BATCH_SIZE: int = 500
    BULK_BATCH_DELAY_MS: int = 100
    BULK_RETENTION_SECONDS: float = 300.0  # Keep finished operations queryable for 5 minutes
    BULK_RATE_LIMIT_WINDOW_SECONDS: float = 60.0

    @field_validator("JWT_SECRET_KEY")
    @classmethod
    def validate_secrets(cls, v: str, info) -> str:
        """Validate that secret keys are set and not default values in production."""
        if not v or v.strip() == "":
            raise ValueError(
                f"{info.field_name} must be set in environment variables. "
                f"Generate a secure random key using: openssl rand -base64 32"
            )

        if v.lower() in INSECURE_SECRET_DEFAULTS:
            # DEBUG is read from the environment because field order is not guaranteed here
            debug_mode = os.environ.get("DEBUG", "").lower() in ("true", "1", "yes")

            if not debug_mode:
                raise ValueError(
                    f"{info.field_name} is using an insecure default value. "
                    f"This is NEVER acceptable in production. "
                    f"Generate a secure key using: openssl rand -base64 32"
                )

            import logging
            logger = logging.getLogger(__name__)
            logger.warning(
                f"{info.field_name} is using an insecure default value in DEBUG mode. "
                f"This is acceptable for development but MUST be changed in production!"
            )
        elif len(v) < 32:
            raise ValueError(
                f"{info.field_name} must be at least 32 characters long for security. "
                f"Generate a secure key using: openssl rand -base64 32"
            )

        return v

    @field_validator("BULK_MAX_BATCH_SIZE")
    @classmethod
    def validate_batch_ceiling(cls, v: int) -> int:
        if v < 1 or v > 500:
            raise ValueError("BULK_MAX_BATCH_SIZE must be between 1 and 500")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
