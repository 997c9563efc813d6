import logging
import os
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logger import set_log_level

CART_STORAGE_KEY = "kurasi_cart"
AUTH_STORAGE_KEY = "kurasi_auth_token"

DEFAULT_DATA_DIR = "data"
DEFAULT_WATCHDOG_SECONDS = 5.0
DEFAULT_TOAST_SECONDS = 3.0


class Settings(BaseSettings):
    """
    Runtime configuration, read once at startup from KURASI_* environment
    variables or a .env file. Malformed values raise pydantic's ValidationError.

    Fields:
      - data_dir: directory holding the sqlite db, key-value file and blobs
      - watchdog_seconds: max time the UI waits for the session bootstrap
      - toast_seconds: lifetime of a toast before it dismisses itself
      - cart_key: key-value entry the cart is persisted under
      - debug: log at DEBUG level
    """

    data_dir: str = Field(default=DEFAULT_DATA_DIR, min_length=1)
    watchdog_seconds: float = Field(default=DEFAULT_WATCHDOG_SECONDS, gt=0)
    toast_seconds: float = Field(default=DEFAULT_TOAST_SECONDS, gt=0)
    cart_key: str = Field(default=CART_STORAGE_KEY, min_length=1)
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="KURASI_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @property
    def db_path(self) -> str:
        return os.path.join(self.data_dir, "kurasi.sqlite")

    @property
    def kv_path(self) -> str:
        return os.path.join(self.data_dir, "local_storage.json")

    @property
    def blob_dir(self) -> str:
        return os.path.join(self.data_dir, "storage")

    def configure_logging(self) -> None:
        set_log_level(logging.DEBUG if self.debug else logging.INFO)


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.configure_logging()
    return settings
