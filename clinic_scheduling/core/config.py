# clinic_scheduling/core/config.py
import os
from pydantic_settings import BaseSettings
from pydantic import Field
from pydantic_settings import SettingsConfigDict
from typing import List
from functools import lru_cache
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True)

    # Application Settings
    APP_NAME: str = "ABA Clinic Scheduling API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True

    # Database Settings
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./clinic_scheduling.db")

    # Security Settings (tokens are issued by the identity service, we only verify them)
    SECRET_KEY: str = Field(default="change-me-in-prod", alias="JWT_SECRET_KEY")
    ALGORITHM: str = "HS256"

    # CORS Settings
    ALLOWED_ORIGINS: str = os.environ.get("ALLOWED_ORIGINS", "*")
    ALLOWED_METHODS: str = os.environ.get("ALLOWED_METHODS", "GET,POST,PUT,DELETE,OPTIONS")
    ALLOWED_HEADERS: str = os.environ.get("ALLOWED_HEADERS", "*")

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Scheduling
    CLINIC_TIMEZONE: str = "America/Sao_Paulo"
    DEFAULT_GENERATE_WEEKS_AHEAD: int = 4
    MAX_GENERATE_WEEKS_AHEAD: int = 16

    # Missed-appointment sweep
    MISSED_GRACE_HOURS: float = 2.0
    MIN_GRACE_HOURS: float = 0.5
    MAX_GRACE_HOURS: float = 24.0

    # Reconciliation
    RETROACTIVE_DEFAULT_TIME: str = "10:00"
    RETROACTIVE_BATCH_LIMIT: int = 50
    ORPHAN_LOOKBACK_DAYS: int = 7
    MATCH_DATE_TOLERANCE_DAYS: int = 0
    MATCH_REQUIRE_SAME_THERAPIST: bool = True

    # Health Check
    HEALTH_CHECK_ENABLED: bool = True

    def _split_csv(self, value: str) -> List[str]:
        if value is None:
            return []
        value = value.strip()
        if value == "":
            return []
        return [item.strip() for item in value.split(",")]

    @property
    def allowed_origins_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_ORIGINS)

    @property
    def allowed_methods_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_METHODS)

    @property
    def allowed_headers_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_HEADERS)


@lru_cache()
def get_settings() -> Settings:
    s = Settings()
    # CORS_ORIGINS is accepted as an alias used by older deployments
    cors_env = os.environ.get("CORS_ORIGINS")
    if cors_env:
        s.ALLOWED_ORIGINS = cors_env
    return s


settings: Settings = get_settings()
