"""Archive statistics: totals and top-10 breakdowns over a filtered declaration set.

Results are memoized in a ``StatisticsCache`` keyed by ``generate_statistics_hash``.
The cache object is created once by the app and passed to ``compute_statistics``.
"""

import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from flask_caching import Cache

from core.constants import (
    LIST60,
    LIST61,
    SENTINEL,
    STATISTICS_CACHE_INDEX_KEY,
    STATISTICS_CACHE_MAX_MEMORY_ENTRIES,
    STATISTICS_CACHE_MAX_PERSISTED_ENTRIES,
    STATISTICS_CACHE_MIN_PERSIST_COUNT,
    STATISTICS_CACHE_TTL_SECONDS,
    STATISTICS_HASH_ID_LIMIT,
    STATISTICS_TOP_N,
)
from core.models import ArchiveRecord, CodeGroup, GroupTotals, MappedDeclaration, NamedGroup, OfficeGroup, Statistics, TypeGroup
from core.payload import XmlPayload, sniff_payload
from core.xml_fields import extract_xml_field, iter_goods_blocks, parse_xml_number
from logger import logger

_SLASH_RE = re.compile(r"\s*/\s*")
_WHITESPACE_RE = re.compile(r"\s+")
_EXCLUDED_GROUP_KEYS = {SENTINEL, "N/A"}


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def generate_statistics_hash(ids: Sequence[str], tab: str) -> str:
    """Cheap fingerprint of a declaration set.

    Only the first 100 ids take part, together with the total count and the tab,
    hashed with a signed 32-bit ``h * 31 + c`` over UTF-16 code units. Collisions
    are possible.
    """
    key = ",".join(ids[:STATISTICS_HASH_ID_LIMIT]) + f"|{len(ids)}|{tab}"
    data = key.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        h = _to_int32(h * 31 + int.from_bytes(data[i : i + 2], "little"))
    return f"{tab}_{abs(h)}_{len(ids)}"


@dataclass
class _CacheEntry:
    statistics: Statistics
    timestamp: float
    count: int


class StatisticsCache:
    """Two-tier statistics cache.

    Entries live in memory for an hour, at most 50 of them. Results computed over
    200 or more declarations are also written to an optional persistent store (a
    ``flask_caching.Cache``) that keeps the 20 newest entries. A memory miss falls
    back to the persistent store and re-populates memory.
    """

    def __init__(
        self,
        persistent: Optional[Cache] = None,
        *,
        ttl_seconds: int = STATISTICS_CACHE_TTL_SECONDS,
        max_memory_entries: int = STATISTICS_CACHE_MAX_MEMORY_ENTRIES,
        max_persisted_entries: int = STATISTICS_CACHE_MAX_PERSISTED_ENTRIES,
        min_persist_count: int = STATISTICS_CACHE_MIN_PERSIST_COUNT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._persistent = persistent
        self._ttl = ttl_seconds
        self._max_memory = max_memory_entries
        self._max_persisted = max_persisted_entries
        self._min_persist_count = min_persist_count
        self._clock = clock
        self._lock = threading.Lock()
        self._memory: Dict[str, _CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._memory)

    def _fresh(self, timestamp: float, now: float) -> bool:
        return now - timestamp < self._ttl

    def _evict_memory(self) -> None:
        overflow = len(self._memory) - self._max_memory
        if overflow <= 0:
            return
        oldest = sorted(self._memory.items(), key=lambda item: item[1].timestamp)[:overflow]
        for key, _ in oldest:
            del self._memory[key]

    def _load_index(self) -> Dict[str, Dict[str, Any]]:
        if self._persistent is None:
            return {}
        index = self._persistent.get(STATISTICS_CACHE_INDEX_KEY)
        return index if isinstance(index, dict) else {}

    def _store_index(self, index: Dict[str, Dict[str, Any]]) -> None:
        if self._persistent is not None:
            self._persistent.set(STATISTICS_CACHE_INDEX_KEY, index, timeout=self._ttl)

    def get(self, key: str) -> Optional[Statistics]:
        now = self._clock()
        with self._lock:
            entry = self._memory.get(key)
            if entry is not None:
                if self._fresh(entry.timestamp, now):
                    return entry.statistics
                del self._memory[key]

        index = self._load_index()
        stored = index.get(key)
        if not stored:
            return None

        if not self._fresh(stored.get("timestamp", 0), now):
            index.pop(key, None)
            self._store_index(index)
            return None

        try:
            statistics = Statistics.model_validate(stored["statistics"])
        except (KeyError, ValueError) as exc:
            logger.warning("Discarding unreadable persisted statistics", key=key, error=str(exc))
            index.pop(key, None)
            self._store_index(index)
            return None

        with self._lock:
            self._memory[key] = _CacheEntry(statistics=statistics, timestamp=stored["timestamp"], count=stored.get("count", 0))
            self._evict_memory()
        return statistics

    def set(self, key: str, statistics: Statistics, count: int) -> None:
        now = self._clock()
        with self._lock:
            self._memory[key] = _CacheEntry(statistics=statistics, timestamp=now, count=count)
            self._evict_memory()

        if self._persistent is None or count < self._min_persist_count:
            return

        index = self._load_index()
        index[key] = {"statistics": statistics.model_dump(by_alias=True), "timestamp": now, "count": count}
        newest = sorted(
            ((k, v) for k, v in index.items() if self._fresh(v.get("timestamp", 0), now)),
            key=lambda item: item[1]["timestamp"],
            reverse=True,
        )[: self._max_persisted]
        self._store_index(dict(newest))
        logger.debug("Persisted archive statistics", key=key, count=count)

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
        if self._persistent is not None:
            self._persistent.delete(STATISTICS_CACHE_INDEX_KEY)

    def cleanup(self) -> None:
        """Drop expired entries from both tiers."""
        now = self._clock()
        with self._lock:
            for key in [k for k, entry in self._memory.items() if not self._fresh(entry.timestamp, now)]:
                del self._memory[key]

        if self._persistent is not None:
            index = self._load_index()
            self._store_index({k: v for k, v in index.items() if self._fresh(v.get("timestamp", 0), now)})


# region Value resolution
def _goods_sum(mapped: MappedDeclaration, attribute: str) -> float:
    return sum(getattr(goods, attribute) or 0 for goods in mapped.goods)


def _invoice_uah_from_mapped(mapped: MappedDeclaration) -> float:
    """Invoice value in UAH.

    Some sources fill the UAH fields with invoice-currency amounts when the invoice
    is in a foreign currency, so those fields are only trusted for UAH invoices.
    """
    header = mapped.header
    currency = str(header.invoice_currency or "").strip().upper()
    invoice = header.invoice_value or 0
    rate = header.exchange_rate or 0

    if currency and currency not in ("UAH", "980"):
        value = 0.0
        if invoice > 0 and rate > 0:
            value = invoice * rate
        elif rate > 0 and mapped.goods:
            computed = sum((goods.price or 0) * rate for goods in mapped.goods)
            if computed > 0:
                value = computed
        if value == 0 and mapped.goods:
            value = _goods_sum(mapped, "invoice_value_uah")
        return value

    value = _goods_sum(mapped, "invoice_value_uah") if mapped.goods else 0.0
    if value == 0 and header.invoice_value_uah:
        value = header.invoice_value_uah
    if value == 0 and invoice > 0 and rate > 0:
        value = invoice * rate
    return value


def _values_from_xml(xml: str, customs_value: float, invoice_uah: float, total_items: float) -> Tuple[float, float, float]:
    if customs_value == 0:
        customs_value = parse_xml_number(extract_xml_field(xml, "ccd_12_01")) or 0

    blocks = list(iter_goods_blocks(xml))
    if invoice_uah == 0:
        summed = sum(parse_xml_number(extract_xml_field(block, "ccd_42_02")) or 0 for block in blocks)
        if summed > 0:
            invoice_uah = summed
    if total_items == 0 and blocks:
        total_items = len(blocks)
    return customs_value, invoice_uah, total_items


def resolve_values(record: ArchiveRecord, active_tab: str) -> Tuple[float, float, float]:
    """``(customs_value, invoice_value_uah, total_items)`` of one declaration."""
    summary = record.declaration.summary
    customs_value = (summary.customs_value or 0) if summary else 0
    invoice_uah = (summary.invoice_value_uah or 0) if summary else 0
    total_items = (summary.total_items or 0) if summary else 0

    incomplete = summary is None or customs_value == 0 or invoice_uah == 0 or total_items == 0
    mapped = record.mapped_data

    if incomplete and mapped is not None:
        if customs_value == 0:
            customs_value = _goods_sum(mapped, "customs_value") if mapped.goods else 0
            if customs_value == 0 and mapped.header.total_value:
                customs_value = mapped.header.total_value
        if invoice_uah == 0:
            invoice_uah = _invoice_uah_from_mapped(mapped)
        if total_items == 0:
            total_items = mapped.header.total_items or len(mapped.goods)

    if incomplete and active_tab == LIST60 and mapped is None:
        payload = sniff_payload(record.declaration.xml_data)
        if isinstance(payload, XmlPayload):
            customs_value, invoice_uah, total_items = _values_from_xml(payload.text.strip(), customs_value, invoice_uah, total_items)

    return customs_value, invoice_uah, total_items
# endregion


# region Grouping
def normalize_declaration_type(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", _SLASH_RE.sub(" / ", value.strip()))


def normalize_office(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value.strip())


def _add(groups: Dict[str, GroupTotals], key: Optional[str], value: float) -> None:
    if not key or key in _EXCLUDED_GROUP_KEYS:
        return
    totals = groups.setdefault(key, GroupTotals())
    totals.count += 1
    totals.total_value += value


def _top(groups: Dict[str, GroupTotals], model: Type, field_name: str) -> List[Any]:
    ranked = sorted(groups.items(), key=lambda item: item[1].count, reverse=True)[:STATISTICS_TOP_N]
    return [model(**{field_name: key}, count=totals.count, total_value=totals.total_value) for key, totals in ranked]
# endregion


def _compute(records: Sequence[ArchiveRecord], active_tab: str) -> Statistics:
    stats = Statistics(total=len(records))
    consignors: Dict[str, GroupTotals] = {}
    consignees: Dict[str, GroupTotals] = {}
    holders: Dict[str, GroupTotals] = {}
    hs_codes: Dict[str, GroupTotals] = {}
    types: Dict[str, GroupTotals] = {}
    offices: Dict[str, GroupTotals] = {}

    for record in records:
        declaration = record.declaration
        if declaration.status in stats.by_status:
            stats.by_status[declaration.status] += 1

        customs_value, invoice_uah, total_items = resolve_values(record, active_tab)
        stats.total_customs_value += customs_value
        stats.total_invoice_value += invoice_uah
        stats.total_items += total_items

        summary = declaration.summary
        if active_tab == LIST61 and summary is not None:
            _add(consignors, summary.sender_name, customs_value)
            _add(consignees, summary.recipient_name, customs_value)
            _add(holders, summary.contract_holder, customs_value)

            codes = list(dict.fromkeys(code.strip() for code in declaration.hs_codes if code.strip()))
            for code in codes:
                _add(hs_codes, code, customs_value / len(codes))

            if summary.declaration_type:
                _add(types, normalize_declaration_type(summary.declaration_type), customs_value)
            if summary.customs_office:
                _add(offices, normalize_office(summary.customs_office), customs_value)

        if active_tab == LIST60 and record.mapped_data is None and record.raw_data is not None:
            raw = record.raw_data
            if raw.ccd_07_01:
                _add(offices, normalize_office(raw.ccd_07_01), customs_value)
            declaration_type = (raw.ccd_type or "").strip()
            if not declaration_type:
                parts = [p for p in (raw.ccd_01_01, raw.ccd_01_02, raw.ccd_01_03) if p]
                declaration_type = _WHITESPACE_RE.sub(" ", " / ".join(parts).strip())
            _add(types, declaration_type, customs_value)

    stats.top_consignors = _top(consignors, NamedGroup, "name")
    stats.top_consignees = _top(consignees, NamedGroup, "name")
    stats.top_contract_holders = _top(holders, NamedGroup, "name")
    stats.top_hs_codes = _top(hs_codes, CodeGroup, "code")
    stats.top_declaration_types = _top(types, TypeGroup, "type")
    stats.top_customs_offices = _top(offices, OfficeGroup, "office")
    return stats


def compute_statistics(records: Sequence[ArchiveRecord], active_tab: str, cache: Optional[StatisticsCache] = None) -> Statistics:
    """Aggregate statistics for the given (already filtered) records.

    Args:
        records: Archive records of the active tab.
        active_tab: ``list60`` or ``list61``; controls the grouping sources.
        cache: Memoization cache; when omitted nothing is cached.

    Returns:
        ``Statistics`` with top-10 groups sorted by descending count.
    """
    key = generate_statistics_hash([record.declaration.id for record in records], active_tab)
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            logger.debug("Statistics cache hit", key=key)
            return cached

    stats = _compute(records, active_tab)
    if cache is not None:
        cache.set(key, stats, len(records))
    return stats
