from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./meetdesk.db"
    # create_all on startup; production schemas are managed by Alembic
    create_tables_on_startup: bool = True

    # JWT (tokens are issued by the account service; we only verify them)
    secret_key: str = "change-me"
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Booking policy
    completion_requires_elapsed_date: bool = False
    # None disables expiry of stale pending requests
    pending_expiry_days: int | None = None
    expiry_check_interval_hours: int = 24
    enforce_declared_availability: bool = False

    # Listing
    default_page_size: int = 20
    max_page_size: int = 100

    # Env
    env: str = "development"

    # Email (SMTP). Leave smtp_host empty to disable sending.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    from_name: str = "MeetDesk"
    site_name: str = "MeetDesk"
    contact_email: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password and self.from_email)

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


settings = Settings()


def validate_runtime_config() -> None:
    if settings.is_production and settings.secret_key == "change-me":
        raise RuntimeError("SECRET_KEY must be set in production.")
