"""Tests for configuration and logging utilities."""

import json
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from threadstate import ConfigurationError, StoreConfig, load_config
from threadstate.utils import get_logger, safe_log, set_log_level


class TestStoreConfig:
    """Tests for StoreConfig."""

    def test_defaults(self):
        """Test default values."""
        config = StoreConfig()

        assert config.use_redis is False
        assert config.host == "localhost"
        assert config.port == 6379
        assert config.key_prefix == "threadstate:"
        assert config.session_ttl == 86400
        assert config.default_ttl_seconds == 86400

    def test_from_environment(self, monkeypatch):
        """Test that REDIS_* variables and USE_REDIS are read."""
        monkeypatch.setenv("USE_REDIS", "true")
        monkeypatch.setenv("REDIS_HOST", "cache.internal")
        monkeypatch.setenv("REDIS_PORT", "6380")
        monkeypatch.setenv("REDIS_PASSWORD", "s3cret")
        monkeypatch.setenv("REDIS_SESSION_TTL", "0")

        config = StoreConfig()

        assert config.use_redis is True
        assert config.host == "cache.internal"
        assert config.port == 6380
        assert config.password.get_secret_value() == "s3cret"
        assert config.default_ttl_seconds is None

    def test_password_not_in_repr(self, monkeypatch):
        monkeypatch.setenv("REDIS_PASSWORD", "s3cret")
        assert "s3cret" not in repr(StoreConfig())

    def test_frozen(self):
        """Test that settings cannot change after load."""
        config = StoreConfig()
        with pytest.raises(PydanticValidationError):
            config.host = "elsewhere"

    def test_invalid_port(self):
        with pytest.raises(PydanticValidationError):
            StoreConfig(port=0)

    def test_redis_kwargs_host(self):
        """Test pool arguments built from host/port/db."""
        kwargs = StoreConfig(host="h", port=1234, db=2, pool_size=5).redis_kwargs()

        assert kwargs["host"] == "h"
        assert kwargs["port"] == 1234
        assert kwargs["db"] == 2
        assert kwargs["max_connections"] == 5
        assert "password" not in kwargs

    def test_redis_kwargs_url(self):
        """Test that a URL replaces host/port/db."""
        kwargs = StoreConfig(url="redis://r:6379/1", password="pw").redis_kwargs()

        assert "host" not in kwargs
        assert kwargs["password"] == "pw"


class TestConfigFiles:
    """Tests for file-based configuration."""

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "store.yaml"
        path.write_text("use_redis: true\nhost: redis.local\nsession_ttl: 120\n")

        config = StoreConfig.from_file(path)

        assert config.use_redis is True
        assert config.host == "redis.local"
        assert config.session_ttl == 120

    def test_from_json(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"port": 7000, "key_prefix": "app:"}))

        config = load_config(path)

        assert config.port == 7000
        assert config.key_prefix == "app:"

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert StoreConfig.from_file(path).port == 6379

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "store.toml"
        path.write_text("")
        with pytest.raises(ConfigurationError):
            StoreConfig.from_file(path)

    def test_invalid_values(self, tmp_path):
        """Test that bad values surface as ConfigurationError."""
        path = tmp_path / "store.yaml"
        path.write_text("port: 0\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)
        assert exc_info.value.code == 1005

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "store.yaml"
        path.write_text("host: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{\"port\": ")
        with pytest.raises(ConfigurationError):
            StoreConfig.from_file(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "store.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_missing_file_uses_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REDIS_DB", "3")
        assert load_config(tmp_path / "missing.yaml").db == 3

    def test_invalid_environment(self, monkeypatch):
        monkeypatch.setenv("REDIS_PORT", "not-a-port")
        with pytest.raises(ConfigurationError):
            load_config()


class TestLogging:
    """Tests for logging helpers."""

    def test_single_root_handler(self):
        """Test that module loggers share one handler on the package root."""
        get_logger("threadstate.a")
        get_logger("threadstate.b")

        root = logging.getLogger("threadstate")
        assert len(root.handlers) == 1
        assert logging.getLogger("threadstate.a").handlers == []

    def test_set_log_level(self):
        root = logging.getLogger("threadstate")
        previous = root.level
        try:
            set_log_level("debug")
            assert root.level == logging.DEBUG
            set_log_level(logging.ERROR)
            assert root.level == logging.ERROR
        finally:
            root.setLevel(previous)

    def test_safe_log_swallows_handler_failure(self):
        """Test that a failing filter does not escape safe_log."""
        logger = get_logger("threadstate.test_safe_log")

        def broken_filter(record):
            raise RuntimeError("boom")

        logger.addFilter(broken_filter)
        try:
            safe_log(logger, logging.ERROR, "message %s", "arg")
        finally:
            logger.removeFilter(broken_filter)

    def test_safe_log_emits(self, caplog):
        logger = get_logger("threadstate.test_safe_log")
        with caplog.at_level(logging.WARNING, logger="threadstate"):
            safe_log(logger, logging.WARNING, "hello %s", "world")
        assert "hello world" in caplog.text
