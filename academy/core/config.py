from typing import Annotated, List, Optional
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import field_validator, model_validator
from urllib.parse import quote_plus
import json


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Project Information
    PROJECT_NAME: str = "Academy Backend"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"

    # Database
    POSTGRES_SERVER: Optional[str] = None
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: Optional[str] = None
    SQLALCHEMY_DATABASE_URI: Optional[str] = None

    # Timezone configuration (used for user-facing timestamps)
    DEFAULT_TIMEZONE: str = "Europe/London"

    # Email (SMTP)
    SMTP_SERVER: Optional[str] = None
    SMTP_PORT: Optional[int] = None
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    FROM_EMAIL: Optional[str] = None
    SMTP_TIMEOUT_SECONDS: float = 30.0  # socket timeout for connect and each SMTP command
    FRONTEND_URL: str = "http://localhost:3000"

    # API Security
    VALID_API_KEYS: Annotated[List[str], NoDecode] = []
    REQUIRE_API_KEY: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    @field_validator("VALID_API_KEYS", mode="before")
    @classmethod
    def split_api_keys(cls, v):
        # Accept a comma-separated string as well as a JSON list
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [key.strip() for key in v.split(",") if key.strip()]
        return v

    @model_validator(mode="after")
    def _derive_database_uri(self) -> "Settings":
        if self.SQLALCHEMY_DATABASE_URI:
            return self
        if self.POSTGRES_USER and self.POSTGRES_SERVER and self.POSTGRES_DB:
            safe_user = quote_plus(self.POSTGRES_USER)
            credentials = safe_user
            if self.POSTGRES_PASSWORD:
                credentials = f"{safe_user}:{quote_plus(self.POSTGRES_PASSWORD)}"
            self.SQLALCHEMY_DATABASE_URI = (
                f"postgresql://{credentials}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )
        else:
            # Local development fallback
            self.SQLALCHEMY_DATABASE_URI = "sqlite:///./academy.db"
        return self


settings = Settings()
