from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for provisioning and membership writes

    # Tenancy
    root_domain: str = "gametaverns.com"
    reserved_slugs: str = ""  # comma-separated, merged with the built-in list at startup
    isolation_mode: str = "shared"  # shared | schema
    database_url: Optional[str] = None  # schema-per-tenant mode only

    # Cross-subdomain session cookie
    session_cookie_name: str = "gt_session"
    session_cookie_max_age: int = 60 * 60 * 24 * 30

    # App
    app_name: str = "gametaverns-tenancy"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def canonical_domain(self) -> str:
        return self.root_domain.strip().lower().rstrip(".")

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def get_reserved_slugs_list(self) -> List[str]:
        return [s.strip().lower() for s in self.reserved_slugs.split(",") if s.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
