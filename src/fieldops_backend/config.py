from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "FieldOps Sync Backend"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./dev.db"
    log_level: str = "INFO"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS"),
    )

    # Pull cursors are HMAC-signed so a client cannot forge another tenant's position.
    sync_cursor_secret: str = "sync_cursor_secret_change_me"

    sync_pull_default_limit: int = 100
    sync_pull_max_limit: int = 500
    # serverTime handed to clients is pushed back by this much so a write flushed
    # before the pull but committed after it is still seen by the next pull.
    sync_pull_commit_margin_seconds: int = 30

    # Scope windows, in days, measured from the anchor stored in the cursor.
    sync_recent_window_days: int = 90
    sync_assigned_past_days: int = 90
    sync_assigned_future_days: int = 30

    # Sync（离线/多端）相关：LWW 使用 clientUpdatedAt，并对客户端“超前时间”做钳制
    sync_max_client_clock_skew_seconds: int = 300

    sync_push_max_mutations: int = 500

    # Ledger entries older than this are pruned by the maintenance job.
    sync_ledger_retention_days: int = 30
    # 0 keeps soft-deleted rows forever.
    sync_tombstone_retention_days: int = 0

    # Rate limiting (best-effort; protects the push endpoint from retry storms)
    rate_limit_window_seconds: int = 60
    sync_push_rate_limit_per_user: int = 120
    rate_limit_cleanup_interval_seconds: int = 60 * 10
    rate_limit_retention_seconds: int = 60 * 60 * 24

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        cursor_secret = self.sync_cursor_secret.strip()
        if not cursor_secret or cursor_secret == "sync_cursor_secret_change_me":
            errors.append("SYNC_CURSOR_SECRET must be set in production")

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        if self.sync_pull_max_limit <= 0:
            errors.append("SYNC_PULL_MAX_LIMIT must be positive")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.sync_cursor_secret == "sync_cursor_secret_change_me":
            warnings.append("SYNC_CURSOR_SECRET is using placeholder value")
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        return warnings


settings = Settings()
