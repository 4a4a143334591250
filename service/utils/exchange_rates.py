"""USD exchange rates from the National Bank of Ukraine (NBU) statistics API."""

import re
from datetime import date
from typing import Any, Dict, Optional

import requests

from config import NBU_API_URL, NBU_TIMEOUT_SECONDS
from core.constants import SENTINEL
from logger import logger

_CUSTOMS_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})T")
_COMPACT_DATE_RE = re.compile(r"^\d{8}$")
_DOTTED_DATE_RE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def parse_date_to_yyyymmdd(value: Optional[str]) -> Optional[str]:
    """Normalize a date string to ``YYYYMMDD``.

    Accepts the customs ``YYYYMMDDTHHMMSS`` format, ``YYYYMMDD``, ``DD.MM.YYYY``
    (optionally followed by a time) and ``YYYY-MM-DD``.

    Args:
        value: Date string in any of the supported formats.

    Returns:
        ``YYYYMMDD`` string, or None when the value is blank or unrecognized.
    """
    s = (value or "").strip()
    if not s or s == SENTINEL:
        return None

    match = _CUSTOMS_DATE_RE.match(s)
    if match:
        return "".join(match.groups())

    if _COMPACT_DATE_RE.match(s):
        return s

    match = _DOTTED_DATE_RE.match(s)
    if match:
        day, month, year = match.groups()
        return f"{year}{month}{day}"

    match = _ISO_DATE_RE.match(s)
    if match:
        return "".join(match.groups())

    return None


class NbuRateClient:
    """Thin client for the NBU ``statdirectory/exchange`` endpoint."""

    def __init__(self, base_url: str = NBU_API_URL, session: Optional[requests.Session] = None, timeout: float = NBU_TIMEOUT_SECONDS) -> None:
        self._base_url = base_url
        self._session = session or requests.Session()
        self._timeout = timeout

    def fetch_usd_rate(self, yyyymmdd: str) -> Optional[float]:
        """Return the official USD rate for one ``YYYYMMDD`` day, or None."""
        params = {"valcode": "USD", "date": yyyymmdd, "json": ""}
        try:
            response = self._session.get(self._base_url, params=params, headers={"Accept": "application/json"}, timeout=self._timeout)
        except requests.RequestException as exc:
            logger.warning("NBU rate request failed", date=yyyymmdd, error=str(exc))
            return None

        if not response.ok:
            logger.warning("NBU rate request returned an error", date=yyyymmdd, status_code=response.status_code)
            return None

        try:
            data: Any = response.json()
        except ValueError:
            logger.warning("NBU rate response is not JSON", date=yyyymmdd)
            return None

        if isinstance(data, list) and data and isinstance(data[0], dict) and data[0].get("cc") == "USD":
            try:
                return float(data[0].get("rate"))
            except (TypeError, ValueError):
                return None
        return None

    def get_usd_rate(self, date_str: Optional[str]) -> Optional[float]:
        """USD rate for a declaration date; today's rate when that day has none.

        A blank date asks for today's rate directly. A date that cannot be parsed
        returns None rather than being replaced by today's rate.
        """
        today = date.today().strftime("%Y%m%d")
        if not (date_str or "").strip():
            return self.fetch_usd_rate(today)

        yyyymmdd = parse_date_to_yyyymmdd(date_str)
        if yyyymmdd is None:
            return None

        rate = self.fetch_usd_rate(yyyymmdd)
        if not rate and yyyymmdd != today:
            logger.info("No NBU rate for date; using today's rate", date=yyyymmdd)
            rate = self.fetch_usd_rate(today)
        return rate or None


class RateLookup:
    """Per-export memo of USD rates keyed by the raw date string.

    Unavailable rates are remembered as ``0`` so a failing date is requested once.
    """

    def __init__(self, client: NbuRateClient) -> None:
        self._client = client
        self._rates: Dict[str, float] = {}

    def __call__(self, date_str: str) -> float:
        key = date_str or ""
        if key not in self._rates:
            try:
                rate = self._client.get_usd_rate(key)
            except Exception as exc:
                logger.warning("USD rate lookup failed", date=key, error=str(exc))
                rate = None
            self._rates[key] = rate or 0.0
        return self._rates[key]

    def __len__(self) -> int:
        return len(self._rates)
