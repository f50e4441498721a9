import os

from pydantic import Field
from pydantic_settings import BaseSettings

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir, os.pardir))
DEFAULT_DB_URL = "sqlite:///" + os.path.join(BASE_DIR, "cafepos.db").replace("\\", "/")


class Settings(BaseSettings):
    app_name: str = Field(default="Cafe POS", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    database_url: str = Field(default=DEFAULT_DB_URL, alias="DB_URL")
    currency: str = Field(default="IDR", alias="CURRENCY")

    # Order lifecycle
    prepayment_required: bool = Field(default=False, alias="PREPAYMENT_REQUIRED")
    loyalty_point_ratio: int = Field(default=10000, alias="LOYALTY_POINT_RATIO")

    # Register client
    api_base_url: str = Field(default="http://127.0.0.1:8010", alias="POS_API_BASE")
    request_timeout: float = Field(default=10.0, alias="POS_REQUEST_TIMEOUT")
    poll_interval_seconds: float = Field(default=5.0, alias="POS_POLL_INTERVAL")

    idempotency_ttl: int = Field(default=3600, alias="IDEMPOTENCY_TTL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    class Config:
        env_file = ".env"
        populate_by_name = True
        extra = "ignore"


settings = Settings()
