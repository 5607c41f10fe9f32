"""Application settings loaded from environment variables and an optional .env file."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hey future me - every settings group reads the same .env file but with its own prefix.
# KB_API_BASE_URL, KB_SESSION_REFRESH_WINDOW_SECONDS, KB_STORAGE_DATABASE_URL and so on.
# extra="ignore" is important: the groups share one file and must not choke on each other's keys.
_ENV_FILE = ".env"
_DEFAULT_DATA_DIR = Path.home() / ".kbclient"


class ApiSettings(BaseSettings):
    """Backend endpoint configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KB_API_", env_file=_ENV_FILE, extra="ignore"
    )

    base_url: str = "http://localhost:8087"
    timeout: float = Field(default=30.0, gt=0)
    login_path: str = "/jwt/login"
    refresh_path: str = "/jwt/refresh"
    logout_path: str = "/api/v1/auth/logout"
    register_path: str = "/api/v1/users/register"
    seller_path: str = "/api/v1/sellers/{user_id}"
    # Pseudo-header callers set to send a request without credentials. Stripped before sending.
    skip_auth_header: str = "X-Skip-Auth"

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class SessionSettings(BaseSettings):
    """Token lifecycle timing.

    The skew margin is subtracted from every expiry check to tolerate clock drift
    and request latency. The refresh window is the larger margin inside which an
    access token is refreshed in the background before it actually expires.
    """

    model_config = SettingsConfigDict(
        env_prefix="KB_SESSION_", env_file=_ENV_FILE, extra="ignore"
    )

    expiry_skew_seconds: float = Field(default=30.0, ge=0)
    refresh_window_seconds: float = Field(default=60.0, ge=0)

    @model_validator(mode="after")
    def check_window_exceeds_skew(self) -> "SessionSettings":
        if self.refresh_window_seconds <= self.expiry_skew_seconds:
            raise ValueError(
                "refresh_window_seconds must be greater than expiry_skew_seconds "
                f"(got window={self.refresh_window_seconds}, skew={self.expiry_skew_seconds})"
            )
        return self


class StorageSettings(BaseSettings):
    """Where the session lives on disk and in the OS credential store."""

    model_config = SettingsConfigDict(
        env_prefix="KB_STORAGE_", env_file=_ENV_FILE, extra="ignore"
    )

    database_url: str = f"sqlite+aiosqlite:///{_DEFAULT_DATA_DIR / 'session.db'}"
    use_keyring: bool = True
    keyring_service: str = "kb_session_tokens"
    keyring_account: str = "kb_session"
    fallback_tokens_key: str = "kb_session_tokens_fallback"
    user_id_key: str = "kb_user_id"
    roles_key: str = "kb_roles"
    seller_id_key: str = "kb_seller_id"
    fingerprint_key: str = "kb_device_fingerprint"

    @property
    def identity_keys(self) -> tuple[str, str, str, str]:
        """All plain key/value entries that make up the session identity."""
        return (
            self.user_id_key,
            self.roles_key,
            self.seller_id_key,
            self.fingerprint_key,
        )


class LoggingSettings(BaseSettings):
    """Logging output configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KB_LOG_", env_file=_ENV_FILE, extra="ignore"
    )

    level: str = "INFO"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level


class Settings(BaseSettings):
    """Top-level settings aggregate."""

    model_config = SettingsConfigDict(env_file=_ENV_FILE, extra="ignore")

    app_name: str = "kbclient"
    api: ApiSettings = Field(default_factory=ApiSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Hey future me - cached so the whole process shares ONE settings object. Tests should
# build Settings(...) directly instead of calling this, or call get_settings.cache_clear().
@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
