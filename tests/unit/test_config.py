"""
Unit tests for configuration objects.
"""

import pytest

from warnish.config import DEFAULT_IGNORE_VERBS, RedisConfig, ServerConfig, WarnishConfig


class TestWarnishConfig:
    """Tests for WarnishConfig."""

    def test_defaults(self):
        config = WarnishConfig()

        assert config.level == 9
        assert config.mem_level == 9
        assert config.cache_expires == 3600
        assert config.ignore_verbs == frozenset(DEFAULT_IGNORE_VERBS)
        assert config.filter is None
        assert config.client is None
        config.validate()

    def test_ignore_verbs_uppercased(self):
        assert WarnishConfig(ignore_verbs=["post", "Put"]).ignore_verbs == {"POST", "PUT"}

    @pytest.mark.parametrize("kwargs", [
        {"level": 10},
        {"mem_level": 0},
        {"window_bits": 16},
        {"chunk_size": 0},
        {"cache_expires": 0},
        {"stream_chunk_size": 0},
    ])
    def test_validate_rejects(self, kwargs):
        with pytest.raises(ValueError):
            WarnishConfig(**kwargs).validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("WARNISH_REDIS_HOST", "cache.internal")
        monkeypatch.setenv("WARNISH_REDIS_PORT", "6380")
        monkeypatch.setenv("WARNISH_REDIS_PASSWORD", "secret")
        monkeypatch.setenv("WARNISH_CACHE_EXPIRES", "120")
        monkeypatch.setenv("WARNISH_IGNORE_VERBS", "post, delete")
        monkeypatch.setenv("WARNISH_LEVEL", "4")

        config = WarnishConfig.from_env()

        assert config.redis.host == "cache.internal"
        assert config.redis.port == 6380
        assert config.redis.password == "secret"
        assert config.cache_expires == 120
        assert config.ignore_verbs == {"POST", "DELETE"}
        assert config.level == 4

    def test_redis_kwargs_always_binary(self):
        kwargs = RedisConfig(options={"decode_responses": True, "socket_timeout": 2}).client_kwargs()

        assert kwargs["decode_responses"] is False
        assert kwargs["socket_timeout"] == 2
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 6379


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_port_zero_allowed(self):
        ServerConfig(port=0).validate()

    @pytest.mark.parametrize("kwargs", [
        {"port": 70000},
        {"timeout": 0},
        {"max_request_size": 10},
        {"log_format": "xml"},
    ])
    def test_validate_rejects(self, kwargs):
        with pytest.raises(ValueError):
            ServerConfig(**kwargs).validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HTTP_PORT", "9000")
        monkeypatch.setenv("HTTP_STATIC_DIR", "/srv/www")

        config = ServerConfig.from_env()

        assert config.port == 9000
        assert config.static_dir == "/srv/www"
