from functools import lru_cache
from typing import Optional

from psycopg.conninfo import make_conninfo
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WriterSettings(BaseSettings):
    """Writer settings, read from ``WRITER_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(env_prefix="WRITER_", env_file=".env", case_sensitive=False)

    # store
    store_host: str = "localhost"
    store_port: int = 5432
    store_name: str = "postgres"
    store_user: str = "postgres"
    store_credential: str = ""
    app_name: Optional[str] = "bulk_writer"
    connect_timeout_s: int = Field(30, ge=1)

    # batching
    batch_time_window_ms: int = Field(100, gt=0)
    batch_size_threshold: int = Field(200, gt=0)
    max_value_bytes: int = Field(200_000, gt=0)

    # retries
    batch_retry_count: int = Field(10, ge=0)
    immediate_retry_count: int = Field(3, ge=0)
    connect_retry_delay_ms: int = Field(4000, ge=0)
    contention_retry_delay_ms: int = Field(2000, ge=0)

    flush_on_shutdown: bool = True
    metrics_port: Optional[int] = None

    def conninfo(self) -> str:
        params = {
            "host": self.store_host,
            "port": self.store_port,
            "dbname": self.store_name,
            "user": self.store_user,
            "connect_timeout": self.connect_timeout_s,
        }
        if self.store_credential:
            params["password"] = self.store_credential
        if self.app_name:
            params["application_name"] = self.app_name
        return make_conninfo(**params)


@lru_cache()
def get_settings() -> WriterSettings:
    return WriterSettings()
