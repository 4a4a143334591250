"""
Unit tests for archive statistics aggregation and the two-tier statistics cache.
"""

from typing import Any, Dict, Optional

import pytest

from core.archive_data import build_archive_records
from core.constants import LIST60, LIST61, STATISTICS_CACHE_INDEX_KEY
from core.filtering import FilterOptions, filter_declarations_60
from core.models import ArchiveRecord, RawFields, Statistics
from core.statistics import StatisticsCache, compute_statistics, generate_statistics_hash, normalize_declaration_type, resolve_values


class DummyCache:
    """In-memory stand-in for ``flask_caching.Cache``."""

    def __init__(self) -> None:
        self.store: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self.store.get(key)

    def set(self, key: str, value: Any, timeout: Optional[int] = None) -> bool:
        self.store[key] = value
        return True

    def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _summary_record(make_declaration, declaration_id: str, status: str, hs_codes, **summary: Any) -> ArchiveRecord:
    return ArchiveRecord(declaration=make_declaration(declaration_id, status=status, summary=summary, hsCodes=hs_codes))


@pytest.fixture
def summary_records(make_declaration):
    return [
        _summary_record(
            make_declaration,
            "d1",
            "CLEARED",
            [{"hsCode": "8471"}, {"hsCode": "8517"}],
            customsValue=100,
            invoiceValueUah=200,
            totalItems=2,
            senderName="Sender A",
            recipientName="Receiver B",
            contractHolder="Holder C",
            declarationType="ІМ/40 ДЕ",
            customsOffice=" UA100100 ",
        ),
        _summary_record(
            make_declaration,
            "d2",
            "REJECTED",
            ["8471"],
            customsValue="50",
            invoiceValueUah=10,
            totalItems=1,
            senderName="Sender A",
            declarationType="ІМ / 40  ДЕ",
        ),
    ]


# region Hash
def test_statistics_hash_format_and_stability() -> None:
    key = generate_statistics_hash(["a", "b", "c"], LIST61)

    assert key == generate_statistics_hash(["a", "b", "c"], LIST61)
    assert key.startswith("list61_") and key.endswith("_3")
    assert generate_statistics_hash(["a", "b", "c"], LIST60).startswith("list60_")
    assert generate_statistics_hash(["a", "c", "b"], LIST61) != key


def test_statistics_hash_only_reads_first_hundred_ids() -> None:
    """Sets that differ after the first 100 ids (with the same count) share a key."""
    base = [f"id-{i}" for i in range(100)]

    assert generate_statistics_hash(base + ["x"], LIST61) == generate_statistics_hash(base + ["y"], LIST61)
    assert generate_statistics_hash(base + ["x"], LIST61) != generate_statistics_hash(base + ["x", "y"], LIST61)
# endregion


# region Aggregation
def test_compute_statistics_from_summaries(summary_records) -> None:
    stats = compute_statistics(summary_records, LIST61)

    assert stats.total == 2
    assert stats.by_status == {"CLEARED": 1, "PROCESSING": 0, "REJECTED": 1}
    assert stats.total_customs_value == pytest.approx(150)
    assert stats.total_invoice_value == pytest.approx(210)
    assert stats.total_items == pytest.approx(3)

    assert [(g.name, g.count, g.total_value) for g in stats.top_consignors] == [("Sender A", 2, 150)]
    assert [(g.name, g.count) for g in stats.top_contract_holders] == [("Holder C", 1)]
    assert [(g.code, g.count, g.total_value) for g in stats.top_hs_codes] == [("8471", 2, 100), ("8517", 1, 50)]
    assert [(g.type, g.count) for g in stats.top_declaration_types] == [("ІМ / 40 ДЕ", 2)]
    assert [g.office for g in stats.top_customs_offices] == ["UA100100"]


def test_statistics_after_status_filter(make_declaration) -> None:
    """Totals cover only the declarations left by the list filters."""
    records = [
        ArchiveRecord(declaration=make_declaration(f"d{i}", summary={"customsValue": value}), raw_data=RawFields(ccd_status=status))
        for i, (value, status) in enumerate([(1000, "R"), (2000, "R"), (1500, "N")])
    ]

    cleared = filter_declarations_60(records, FilterOptions(status="cleared"))
    stats = compute_statistics(cleared, LIST60)

    assert stats.total == 2
    assert stats.total_customs_value == pytest.approx(3000)


def test_statistics_dump_uses_camel_case(summary_records) -> None:
    dumped = compute_statistics(summary_records, LIST61).model_dump(by_alias=True)

    assert {"byStatus", "totalCustomsValue", "topHSCodes", "topDeclarationTypes"} <= set(dumped)
    assert dumped["topConsignors"][0] == {"count": 2, "totalValue": 150.0, "name": "Sender A"}


def test_top_groups_are_capped_at_ten(make_declaration) -> None:
    records = [_summary_record(make_declaration, f"d{i}", "CLEARED", [], customsValue=1, invoiceValueUah=1, totalItems=1, senderName=f"S{i % 12}") for i in range(30)]

    stats = compute_statistics(records, LIST61)

    assert len(stats.top_consignors) == 10
    counts = [g.count for g in stats.top_consignors]
    assert counts == sorted(counts, reverse=True)


def test_placeholder_names_are_not_grouped(make_declaration) -> None:
    records = [
        _summary_record(make_declaration, "d1", "CLEARED", ["N/A"], customsValue=1, invoiceValueUah=1, totalItems=1, senderName="---"),
        _summary_record(make_declaration, "d2", "CLEARED", [], customsValue=1, invoiceValueUah=1, totalItems=1, senderName="N/A"),
    ]

    stats = compute_statistics(records, LIST61)

    assert stats.top_consignors == []
    assert stats.top_hs_codes == []


def test_resolve_values_falls_back_to_mapped_detail(make_declaration, json_payload: str) -> None:
    (record,) = build_archive_records([make_declaration(xml_data=json_payload)], LIST61)

    customs_value, invoice_uah, total_items = resolve_values(record, LIST61)

    assert customs_value == pytest.approx(50000)
    assert invoice_uah == pytest.approx(1200.5 * 40)
    assert total_items == 2


def test_list60_statistics_read_raw_xml(make_declaration, sample_xml: str) -> None:
    """Without a summary or mapped detail, totals and groups come from the raw XML."""
    records = build_archive_records([make_declaration(xml_data=sample_xml)], LIST60)

    stats = compute_statistics(records, LIST60)

    assert stats.total_customs_value == pytest.approx(50000)
    assert stats.total_invoice_value == pytest.approx(40000)
    assert stats.total_items == 2
    assert [g.office for g in stats.top_customs_offices] == ["UA100100"]
    assert [g.type for g in stats.top_declaration_types] == ["ІМ 40 ДЕ"]
    assert stats.top_consignors == []


def test_normalize_declaration_type() -> None:
    assert normalize_declaration_type(" ЕК/10  АА ") == "ЕК / 10 АА"
# endregion


# region Cache
def test_compute_statistics_uses_cache(summary_records) -> None:
    cache = StatisticsCache(clock=FakeClock())

    first = compute_statistics(summary_records, LIST61, cache)
    second = compute_statistics(summary_records, LIST61, cache)

    assert second is first
    assert len(cache) == 1


def test_cache_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = StatisticsCache(ttl_seconds=60, clock=clock)
    cache.set("k", Statistics(total=1), count=1)

    clock.now += 59
    assert cache.get("k") is not None

    clock.now += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_memory_tier_evicts_oldest_entries() -> None:
    clock = FakeClock()
    cache = StatisticsCache(max_memory_entries=2, clock=clock)
    for key in ("a", "b", "c"):
        cache.set(key, Statistics(), count=1)
        clock.now += 1

    assert cache.get("a") is None
    assert cache.get("c") is not None
    assert len(cache) == 2


def test_large_results_are_persisted_and_reloaded() -> None:
    """Results over enough declarations survive a new in-memory tier."""
    store = DummyCache()
    clock = FakeClock()
    StatisticsCache(store, min_persist_count=200, clock=clock).set("big", Statistics(total=250), count=250)
    StatisticsCache(store, min_persist_count=200, clock=clock).set("small", Statistics(total=5), count=5)

    assert set(store.get(STATISTICS_CACHE_INDEX_KEY)) == {"big"}

    fresh = StatisticsCache(store, clock=clock)
    assert fresh.get("big").total == 250
    assert len(fresh) == 1
    assert fresh.get("small") is None


def test_persisted_index_keeps_newest_entries() -> None:
    store = DummyCache()
    clock = FakeClock()
    cache = StatisticsCache(store, max_persisted_entries=2, min_persist_count=1, clock=clock)
    for key in ("a", "b", "c"):
        cache.set(key, Statistics(), count=1)
        clock.now += 1

    assert set(store.get(STATISTICS_CACHE_INDEX_KEY)) == {"b", "c"}


def test_expired_persisted_entry_is_dropped() -> None:
    store = DummyCache()
    clock = FakeClock()
    StatisticsCache(store, ttl_seconds=10, min_persist_count=1, clock=clock).set("k", Statistics(), count=1)

    clock.now += 11
    assert StatisticsCache(store, ttl_seconds=10, clock=clock).get("k") is None
    assert store.get(STATISTICS_CACHE_INDEX_KEY) == {}


def test_clear_and_cleanup() -> None:
    store = DummyCache()
    clock = FakeClock()
    cache = StatisticsCache(store, ttl_seconds=10, min_persist_count=1, clock=clock)
    cache.set("old", Statistics(), count=1)
    clock.now += 5
    cache.set("new", Statistics(), count=1)
    clock.now += 6

    cache.cleanup()
    assert len(cache) == 1
    assert set(store.get(STATISTICS_CACHE_INDEX_KEY)) == {"new"}

    cache.clear()
    assert len(cache) == 0
    assert STATISTICS_CACHE_INDEX_KEY not in store.store
# endregion
