import re
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chatstore.consistency import ConsistencyLevel, parse_level

_SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)?$")
_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024 ** 2, "gb": 1024 ** 3}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./chatstore.db"
    REPLICATION_FACTOR: int = 1
    DATACENTER: str = "datacenter1"
    KEYSPACE: str = "chat"

    # Consistency defaults, configured independently for writes and reads
    DEFAULT_WRITE_CONSISTENCY: ConsistencyLevel = ConsistencyLevel.ONE
    DEFAULT_READ_CONSISTENCY: ConsistencyLevel = ConsistencyLevel.ONE

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # HTTP
    API_PORT: int = 3000
    CORS_ORIGIN: str = "*"
    USE_SOFT_ERRORS: bool = False
    REQUEST_BODY_LIMIT: int = 1024 * 1024

    @field_validator("DEFAULT_WRITE_CONSISTENCY", "DEFAULT_READ_CONSISTENCY", mode="before")
    @classmethod
    def validate_consistency_name(cls, v, info):
        """Accept level names in any case; reject unknown names at startup."""
        if isinstance(v, ConsistencyLevel):
            return v
        level = parse_level(str(v))
        if level is None:
            raise ValueError(f"{info.field_name} must be one of {[member.value for member in ConsistencyLevel]}")
        return level

    @field_validator("REQUEST_BODY_LIMIT", mode="before")
    @classmethod
    def parse_body_limit(cls, v):
        """Accept a byte count or a size such as "512b", "100kb" or "1mb" (1024-based)."""
        if isinstance(v, str):
            match = _SIZE_PATTERN.match(v.strip().lower())
            if not match:
                raise ValueError("REQUEST_BODY_LIMIT must be a byte count or a size like 100kb or 1mb")
            number, unit = match.groups()
            return int(float(number) * _SIZE_UNITS[unit or "b"])
        return v

    @field_validator("REQUEST_BODY_LIMIT")
    @classmethod
    def validate_body_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("REQUEST_BODY_LIMIT must be at least 1 byte")
        return v

    @field_validator("REPLICATION_FACTOR")
    @classmethod
    def validate_replication_factor(cls, v: int) -> int:
        if v < 1:
            raise ValueError("REPLICATION_FACTOR must be at least 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
