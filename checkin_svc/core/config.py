from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")
    staff_roles: str = Field("staff,admin", alias="STAFF_ROLES")
    admin_roles: str = Field("admin", alias="ADMIN_ROLES")

    # QR credentials
    qr_token_ttl_seconds: int = Field(default=7 * 24 * 3600, alias="QR_TOKEN_TTL_SECONDS")
    default_event_slug: str = Field("default", alias="DEFAULT_EVENT_SLUG")
    default_event_cache_ttl_seconds: int = Field(default=3600, alias="DEFAULT_EVENT_CACHE_TTL_SECONDS")

    # QR rendering
    qr_box_size: int = Field(default=10, alias="QR_BOX_SIZE")
    qr_border: int = Field(default=4, alias="QR_BORDER")
    qr_error_correction: str = Field("H", alias="QR_ERROR_CORRECTION")

    # Rate limiting
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_backend: str = Field("memory", alias="RL_BACKEND")  # memory | redis
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=5, alias="RL_MAX_REQS")
    rl_sweep_interval_seconds: int = Field(default=300, alias="RL_SWEEP_INTERVAL_SECONDS")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")

    # NATS
    nats_enabled: bool = Field(default=True, alias="NATS_ENABLED")
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_checkin: str = Field("checkins.recorded", alias="NATS_SUBJECT_CHECKIN")

    # Bulk refresh
    bulk_batch_size: int = Field(default=10, alias="BULK_BATCH_SIZE")
    bulk_batch_pause_ms: int = Field(default=100, alias="BULK_BATCH_PAUSE_MS")
    bulk_error_sample: int = Field(default=10, alias="BULK_ERROR_SAMPLE")

    # Offline client
    offline_db_url: str = Field("sqlite+aiosqlite:///./offline-checkin.db", alias="OFFLINE_DB_URL")
    offline_server_url: str = Field("http://localhost:8004", alias="OFFLINE_SERVER_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def staff_role_set(self) -> set[str]:
        return {r.strip() for r in self.staff_roles.split(",") if r.strip()}

    @property
    def admin_role_set(self) -> set[str]:
        return {r.strip() for r in self.admin_roles.split(",") if r.strip()}

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
