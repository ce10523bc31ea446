"""Environment-driven settings for the contact identity service.

Variable names follow the existing deployment conventions
(``PORT``, ``MONGO_URL``, ``DB_NAME``, ``COLLECTION_NAME``,
``FINGERPRINT_API_KEY``).  Values are validated once at startup so a bad
deployment fails fast instead of on the first request.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field

FingerprintRegion = Literal["us", "eu", "ap"]


class ServiceConfig(BaseModel):
    host: str = "0.0.0.0"  # nosec B104
    port: int = Field(default=4000, ge=1, le=65535)

    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "contacts"
    collection_name: str = "contacts"
    mongo_max_pool_size: int = Field(default=50, ge=1)
    mongo_timeout_ms: int = Field(default=5000, gt=0)

    fingerprint_api_key: str = ""
    fingerprint_region: FingerprintRegion = "ap"
    fingerprint_timeout_s: float = Field(default=5.0, gt=0)

    static_dir: str = ""
    log_level: str = "INFO"
    service_name: str = "contact-identity"

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Build a config from process environment variables."""
        env = {
            "host": os.getenv("HOST"),
            "port": os.getenv("PORT"),
            "mongo_url": os.getenv("MONGO_URL"),
            "db_name": os.getenv("DB_NAME"),
            "collection_name": os.getenv("COLLECTION_NAME"),
            "mongo_max_pool_size": os.getenv("MONGO_MAX_POOL_SIZE"),
            "mongo_timeout_ms": os.getenv("MONGO_TIMEOUT_MS"),
            "fingerprint_api_key": os.getenv("FINGERPRINT_API_KEY"),
            "fingerprint_region": os.getenv("FINGERPRINT_REGION", "").lower() or None,
            "fingerprint_timeout_s": os.getenv("FINGERPRINT_TIMEOUT_S"),
            "static_dir": os.getenv("STATIC_DIR"),
            "log_level": os.getenv("LOG_LEVEL"),
            "service_name": os.getenv("SERVICE_NAME"),
        }
        return cls.model_validate({k: v for k, v in env.items() if v is not None})


@lru_cache
def get_config() -> ServiceConfig:
    """Return the process-wide config, read from the environment once."""
    return ServiceConfig.from_env()
