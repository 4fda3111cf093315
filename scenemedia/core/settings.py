from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(default="sqlite+pysqlite:///./scenemedia.db", validation_alias="DATABASE_URL")
    db_auto_create: bool = Field(default=True, validation_alias="DB_AUTO_CREATE")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

    scan_batch_size: int = Field(default=500, ge=1, validation_alias="SCAN_BATCH_SIZE")
    upsert_max_retries: int = Field(default=3, ge=1, validation_alias="UPSERT_MAX_RETRIES")
    handle_url_prefix: str = Field(default="blob:scenemedia", validation_alias="HANDLE_URL_PREFIX")

    @property
    def DATABASE_URL(self) -> str:  # pragma: no cover
        return self.database_url

    @property
    def DB_AUTO_CREATE(self) -> bool:  # pragma: no cover
        return self.db_auto_create


settings = Settings()
