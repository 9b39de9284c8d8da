from typing import List, Union

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from medcure.core.logging_config import get_logger

logger = get_logger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env")

    PROJECT_NAME: str = "MedCure Inventory Engine"
    API_V1_STR: str = "/api/v1"

    # CORS
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database
    SQLITE_DATABASE_URI: str = "sqlite:///./medcure_inventory.db"

    # Sale settlement
    ALLOCATION_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Attempts per sale before a conflict is surfaced")
    ALLOCATION_BACKOFF_SECONDS: float = Field(default=0.05, ge=0, description="Base delay, doubled on every retry")
    UNDO_WINDOW_HOURS: int = Field(default=24, ge=0, description="How long a committed sale can still be undone")

    # Periodic price reconciliation (off by default)
    PRICE_RECONCILE_ENABLED: bool = False
    PRICE_RECONCILE_HOUR: int = 2  # 0-23
    PRICE_RECONCILE_MINUTE: int = 30  # 0-59

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    @property
    def async_database_uri(self) -> str:
        return self.SQLITE_DATABASE_URI.replace("sqlite:///", "sqlite+aiosqlite:///")


settings = Settings()
logger.info(f"Loaded settings: API_V1_STR={settings.API_V1_STR}, CORS={settings.BACKEND_CORS_ORIGINS}")
