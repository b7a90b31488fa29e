from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "ERP API"
    environment: str = "development"
    log_level: str = "INFO"

    db_url: str
    db_echo: bool = False

    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expires_in: str = "30m"

    refresh_token_secret: str
    refresh_token_expires_in: str = "7d"
    session_lifetime: str = "7d"
    return_refresh_token_in_body: bool = False

    # Lockout policy
    max_failed_login_attempts: int = 5
    account_lockout_minutes: int = 30

    password_max_age_days: int = 90
    require_email_verification: bool = False

    session_cleanup_interval_seconds: int = 3600

    cookie_domain: str = "localhost"
    cookie_secure: bool = False

    # Superuser credentials for initial setup
    superuser_email: str = "admin@system.local"
    superuser_username: str = "admin"
    superuser_password: str = "Admin@12345"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings():
    return Settings()
