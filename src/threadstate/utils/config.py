"""
Configuration utilities.

Settings are read once at process start, from a YAML/JSON file when one is
given and from the environment otherwise, and are immutable afterwards.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, Field, SecretStr
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


class StoreConfig(BaseSettings):
    """Configuration for checkpoint store selection and the Redis backend."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    # Backend selection
    use_redis: bool = Field(
        default=False,
        validation_alias=AliasChoices("use_redis", "USE_REDIS"),
        description="Prefer the durable Redis store over the in-memory store.",
    )

    # Connection
    url: str | None = Field(
        default=None,
        description="Redis URL; when set it takes precedence over host/port/db.",
    )
    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    password: SecretStr | None = None
    db: int = Field(default=0, ge=0)
    pool_size: int = Field(default=10, ge=1)
    tls: bool = False
    key_prefix: str = "threadstate:"
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    health_timeout_seconds: float = Field(default=2.0, gt=0)

    # Checkpoint lifetime
    session_ttl: int = Field(
        default=86400,
        ge=0,
        description="Default checkpoint TTL in seconds (0 = no expiry).",
    )

    @classmethod
    def from_yaml(cls, path: Path) -> "StoreConfig":
        """Load configuration from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        return cls._from_mapping(data, path)

    @classmethod
    def from_file(cls, path: str | Path) -> "StoreConfig":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            try:
                with open(path) as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
            return cls._from_mapping(data, path)
        else:
            raise ConfigurationError(f"Unsupported config file format: {path.suffix}")

    @classmethod
    def _from_mapping(cls, data: Any, path: Path) -> "StoreConfig":
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping")
        try:
            return cls(**data)
        except PydanticValidationError as e:
            raise ConfigurationError(f"{path}: {e}") from e

    @property
    def default_ttl_seconds(self) -> int | None:
        """Default TTL for new checkpoints, or None when expiry is disabled."""
        return self.session_ttl or None

    def redis_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for building a redis.asyncio connection pool."""
        kwargs: dict[str, Any] = {
            "max_connections": self.pool_size,
            "socket_connect_timeout": self.connect_timeout_seconds,
        }
        if self.password is not None:
            kwargs["password"] = self.password.get_secret_value()
        if self.url:
            return kwargs

        kwargs.update(host=self.host, port=self.port, db=self.db)
        return kwargs


def load_config(path: str | Path | None = None) -> StoreConfig:
    """
    Load store configuration.

    Args:
        path: Optional path to a YAML or JSON config file. Environment
            variables are used when no file is given or it does not exist.

    Returns:
        StoreConfig instance
    """
    try:
        if path is None or not Path(path).exists():
            return StoreConfig()
        return StoreConfig.from_file(path)
    except PydanticValidationError as e:
        raise ConfigurationError(str(e)) from e
