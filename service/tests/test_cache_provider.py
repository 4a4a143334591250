"""Unit tests for cache provider helpers."""

from typing import Any

import cache_provider


class DummyCache:
    """Test double that records cache set calls."""

    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.calls: list[tuple[str, Any, int | None]] = []

    def get(self, key: str) -> Any:
        return self.store.get(key)

    def set(self, key: str, value: Any, timeout: int | None = None) -> None:
        self.calls.append((key, value, timeout))
        self.store[key] = value


def test_set_company_settings_cache_uses_explicit_timeout(monkeypatch: Any) -> None:
    dummy_cache = DummyCache()
    monkeypatch.setitem(cache_provider._CACHE_STATE, "cache", dummy_cache)

    cache_provider.set_company_settings_cache("company-123", {"ShowEeDeclarations": True})

    assert dummy_cache.calls == [("company-123_settings", {"ShowEeDeclarations": True}, cache_provider._COMPANY_SETTINGS_CACHE_TIMEOUT_SECONDS)]
    assert cache_provider.get_company_settings_cache("company-123") == {"ShowEeDeclarations": True}


def test_set_company_settings_cache_skips_empty_company_id(monkeypatch: Any) -> None:
    dummy_cache = DummyCache()
    monkeypatch.setitem(cache_provider._CACHE_STATE, "cache", dummy_cache)

    cache_provider.set_company_settings_cache("", {})

    assert dummy_cache.calls == []


def test_get_company_settings_cache_ignores_non_dict_values(monkeypatch: Any) -> None:
    dummy_cache = DummyCache()
    dummy_cache.store["company-1_settings"] = "stale"
    monkeypatch.setitem(cache_provider._CACHE_STATE, "cache", dummy_cache)

    assert cache_provider.get_company_settings_cache("company-1") is None


def test_cache_helpers_without_configured_cache(monkeypatch: Any) -> None:
    monkeypatch.setitem(cache_provider._CACHE_STATE, "cache", None)

    cache_provider.set_company_settings_cache("company-1", {})

    assert cache_provider.get_company_settings_cache("company-1") is None
