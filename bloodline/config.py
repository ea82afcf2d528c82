from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application Config
    PROJECT_NAME: str = Field(default="Bloodline API")
    PROJECT_DESCRIPTION: str = Field(
        default="Blood donation and inventory ledger"
    )
    VERSION: str = Field(default="1.0.0")
    API_PREFIX: str = Field(default="/api")
    DOCS_URL: str = Field(default="/docs")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=True)

    # Database
    DATABASE_URL: str = Field(default="")
    DATABASE_POOL_SIZE: int = Field(default=5)
    DATABASE_MAX_OVERFLOW: int = Field(default=10)
    DATABASE_POOL_RECYCLE: int = Field(default=1800)
    DATABASE_ECHO: bool = Field(default=False)

    # Development database fallback
    DEV_DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./bloodline.sqlite3")

    # Inventory transactions
    TRANSACTION_MAX_RETRIES: int = Field(default=3, ge=1)
    TRANSACTION_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    UNIT_SERIAL_MAX_ATTEMPTS: int = Field(default=5, ge=1)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=False)
    LOG_DIR: str = Field(default="logs")

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def model_post_init(self, __context) -> None:
        """Post-initialization validation and setup"""
        if self.ENVIRONMENT.lower() == "production":
            # In production, require DATABASE_URL to be explicitly set
            if not self.DATABASE_URL:
                raise ValueError("DATABASE_URL must be set in production!")
        else:
            # In development, use DATABASE_URL if provided, otherwise fall back to DEV_DATABASE_URL
            if not self.DATABASE_URL:
                self.DATABASE_URL = self.DEV_DATABASE_URL


def get_settings() -> Settings:
    return Settings()
