"""
Unit tests for the 61.1 XML mapper and the detail adapter built on top of it.
"""

from datetime import datetime

import pytest

from core.detail import get_mapped_detail, mapped_from_summary
from core.models import DeclarationSummary
from core.xml_mapper import format_customs_date, map_xml_to_declaration, parse_declaration_xml


# region Mapper
def test_map_header_fields(sample_xml: str) -> None:
    mapped = map_xml_to_declaration(sample_xml)

    assert mapped is not None
    header = mapped.header
    assert header.mrn == "24UA100000000001A1"
    assert header.type == "ІМ / 40 / ДЕ"
    assert header.raw_date == "20240115T103000"
    assert header.consignor == "Sender GmbH"
    assert header.consignee == "ТОВ Отримувач"
    assert header.contract_holder == "ТОВ Контракт"
    assert header.invoice_value == pytest.approx(1200.5)
    assert header.exchange_rate == pytest.approx(40.0)
    assert header.display_status == "Оформлена"
    assert header.transport_details == "AA1234BB (UA), XX5678 (UA)"


def test_map_goods_payments_and_documents(sample_xml: str) -> None:
    """Goods, their payments and documents are mapped; goods #1 docs are promoted."""
    mapped = map_xml_to_declaration(sample_xml)

    assert [g.index for g in mapped.goods] == [1, 2]
    first = mapped.goods[0]
    assert first.hs_code == "8471300000"
    assert first.net_weight == pytest.approx(100.0)
    assert [(p.code, p.amount) for p in first.payments] == [("020", 4000.0), ("028", 8800.0)]
    assert first.docs[0].date_beg == "10.01.2024"

    assert [(d.type, d.number) for d in mapped.documents] == [("4104", "CONTRACT-7"), ("380", "INV-1")]
    assert [p.code for p in mapped.general_payments] == ["020", "028", "028"]
    assert mapped.protocol[0].server_date == "20240116T090000"


def test_map_returns_none_for_empty_or_malformed_input() -> None:
    assert map_xml_to_declaration(None) is None
    assert map_xml_to_declaration("") is None
    assert map_xml_to_declaration("<ccd><unclosed></ccd>") is None


def test_parser_does_not_expand_entities() -> None:
    """External and internal entities are never resolved."""
    xml = '<?xml version="1.0"?><!DOCTYPE ccd [<!ENTITY secret "leaked">]><ccd><ccd_54_02>&secret;</ccd_54_02></ccd>'

    root = parse_declaration_xml(xml)

    assert "leaked" not in (root.findtext("ccd_54_02") or "")


def test_namespaces_are_stripped() -> None:
    mapped = map_xml_to_declaration('<ccd xmlns="urn:customs"><ccd_07_01>UA1</ccd_07_01></ccd>')
    assert mapped.header.customs_office == "UA1"


def test_format_customs_date_variants() -> None:
    assert format_customs_date("20240115T103000") == "15.01.2024 10:30:00"
    assert format_customs_date("20240115") == "15.01.2024"
    assert format_customs_date("2024-01-15") == "15.01.2024"
    assert format_customs_date(None) == "---"
# endregion


# region Detail adapter
def test_get_mapped_detail_uses_xml_fields(json_payload: str) -> None:
    detail = get_mapped_detail(json_payload, None)

    assert detail.mapped is not None
    assert detail.extracted.ccd_registered == "20240115T103000"
    assert detail.extracted.type_parts() == ["ІМ", "40", "ДЕ"]


def test_get_mapped_detail_falls_back_to_summary_when_mapper_fails(sample_xml: str) -> None:
    """A mapper exception is not fatal: the summary row provides a header-only view."""

    def broken_mapper(_: str):
        raise RuntimeError("boom")

    summary = DeclarationSummary(declarationType="ІМ 40 ДЕ", senderName="Sender", registeredDate=datetime(2024, 1, 15, 10, 30))

    detail = get_mapped_detail(sample_xml, summary, mrn="MRN-1", mapper=broken_mapper)

    assert detail.mapped is not None
    assert detail.mapped.goods == []
    assert detail.mapped.header.mrn == "MRN-1"
    assert detail.mapped.header.consignor == "Sender"
    assert detail.mapped.header.date == "15.01.2024, 10:30:00"
    assert detail.extracted.ccd_registered == "20240115T103000"
    assert detail.extracted.type_parts() == ["ІМ", "40", "ДЕ"]


def test_get_mapped_detail_without_any_source_is_empty() -> None:
    detail = get_mapped_detail(None, None)

    assert detail.mapped is None
    assert detail.extracted.ccd_registered is None


def test_mapped_from_summary_defaults() -> None:
    detail = mapped_from_summary(DeclarationSummary())

    assert detail.mapped.header.mrn == "N/A"
    assert detail.mapped.header.type == "---"
    assert detail.extracted.type_parts() == []
# endregion
