from typing import Any, Optional

from flask_caching import Cache

from logger import logger

_CACHE_STATE: dict[str, Optional[Cache]] = {"cache": None}
_COMPANY_SETTINGS_CACHE_TIMEOUT_SECONDS = 5 * 60


def set_cache(instance: Cache) -> None:
    """Register the shared cache instance."""
    _CACHE_STATE["cache"] = instance


def get_cache() -> Optional[Cache]:
    return _CACHE_STATE["cache"]


def _company_settings_key(company_id: str) -> str:
    return f"{company_id}_settings"


def get_company_settings_cache(company_id: str) -> Optional[dict[str, Any]]:
    """Return cached company settings, or None on a miss or without a cache."""
    cache = get_cache()
    if not company_id or cache is None:
        return None
    value = cache.get(_company_settings_key(company_id))
    return value if isinstance(value, dict) else None


def set_company_settings_cache(company_id: str, settings: dict[str, Any]) -> None:
    """Write company settings to cache if a cache is configured."""
    cache = get_cache()
    if not company_id or cache is None:
        return

    cache.set(_company_settings_key(company_id), settings, timeout=_COMPANY_SETTINGS_CACHE_TIMEOUT_SECONDS)
    logger.info("Updated Cache", company_id=company_id, settings=sorted(settings))
