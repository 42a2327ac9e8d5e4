"""Tests for scimrest/config/settings.py: Settings and api_keys_list."""

from scimrest.config.settings import get_settings


class TestSettings:

    def test_defaults(self, override_settings):
        override_settings()
        s = get_settings()
        assert s.endpoints_config_path == "endpoints.json"
        assert s.idle_timeout == 120
        assert s.default_retry_after == 10
        assert s.ratelimit_retry_after == 60
        assert s.log_level == "INFO"

    def test_api_keys_list_single(self, override_settings):
        override_settings(GATEWAY_API_KEYS="my-key")
        s = get_settings()
        assert s.api_keys_list == ["my-key"]

    def test_api_keys_list_multiple(self, override_settings):
        override_settings(GATEWAY_API_KEYS="key1, key2 , key3")
        s = get_settings()
        assert s.api_keys_list == ["key1", "key2", "key3"]

    def test_api_keys_list_strips_empty(self, override_settings):
        override_settings(GATEWAY_API_KEYS="k1,,k2,")
        s = get_settings()
        assert s.api_keys_list == ["k1", "k2"]

    def test_env_override(self, override_settings):
        override_settings(
            IDLE_TIMEOUT="30",
            DEFAULT_RETRY_AFTER="3",
            ENDPOINTS_CONFIG_PATH="/etc/scimrest/endpoints.json",
        )
        s = get_settings()
        assert s.idle_timeout == 30
        assert s.default_retry_after == 3
        assert s.endpoints_config_path == "/etc/scimrest/endpoints.json"

    def test_cached_until_cleared(self, override_settings, monkeypatch):
        override_settings(IDLE_TIMEOUT="30")
        first = get_settings()
        monkeypatch.setenv("IDLE_TIMEOUT", "45")
        assert get_settings() is first
        get_settings.cache_clear()
        assert get_settings().idle_timeout == 45
