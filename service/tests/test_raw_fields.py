"""
Unit tests for payload sniffing and the raw-field extraction chain.
Each source (JSON envelope, summary row, raw XML) is checked in priority order.
"""

import json
from datetime import datetime

from core.payload import JsonPayload, UnparsablePayload, XmlPayload, get_data_60_1, get_xml_61_1, has_list_data, sniff_payload
from core.raw_fields import extract_raw_fields, raw_fields_for_declaration, split_declaration_type


# region Payload sniffing
def test_sniff_payload_classifies_by_first_character(sample_xml: str, json_payload: str) -> None:
    """Detect JSON envelopes, XML documents and junk from the first visible character."""
    assert isinstance(sniff_payload(json_payload), JsonPayload)
    assert isinstance(sniff_payload("  \n" + sample_xml), XmlPayload)
    assert sniff_payload("not a payload") == UnparsablePayload(reason="unknown_format")
    assert sniff_payload("{broken") == UnparsablePayload(reason="invalid_json")
    assert sniff_payload("   ") == UnparsablePayload(reason="empty")
    assert sniff_payload(None) == UnparsablePayload(reason="empty")


def test_get_xml_61_1_reads_envelope_and_raw_documents(sample_xml: str, json_payload: str) -> None:
    assert get_xml_61_1(json_payload) == sample_xml
    assert get_xml_61_1(sample_xml) is not None
    assert get_xml_61_1(json.dumps({"data60_1": {"guid": "x"}})) is None
    assert get_xml_61_1("") is None


def test_list_data_helpers_only_accept_dict_sections() -> None:
    payload = sniff_payload(json.dumps({"data60_1": ["not", "a", "dict"]}))
    assert has_list_data(payload) is True
    assert get_data_60_1(payload) is None
# endregion


# region Raw-field chain
def test_extract_raw_fields_prefers_json_section(json_payload: str) -> None:
    """The JSON 60.1 section is the first source and wins over the embedded XML."""
    raw = extract_raw_fields(json_payload)

    assert raw is not None
    assert raw.guid == "GUID-60-1"
    assert raw.ccd_type == "ІМ 40 ДЕ"
    assert raw.trn_all == ["AA1234BB", "XX5678"]


def test_extract_raw_fields_joins_type_parts_when_type_missing() -> None:
    payload = json.dumps({"data60_1": {"ccd_01_01": "ЕК", "ccd_01_02": "10", "ccd_01_03": " "}})

    raw = extract_raw_fields(payload)

    assert raw is not None
    assert raw.ccd_type == "ЕК 10"


def test_extract_raw_fields_falls_back_to_xml_tags(sample_xml: str) -> None:
    """Raw XML is matched tag by tag; transport names are collected from every block."""
    raw = extract_raw_fields(sample_xml)

    assert raw is not None
    assert raw.guid == "GUID-61-1"
    assert raw.MRN == "24UA100000000001A1"
    assert raw.ccd_status == "R"
    assert raw.ccd_type == "ІМ 40 ДЕ"
    assert raw.trn_all == "AA1234BB, XX5678"
    assert raw.ccd_07_03 == "123"


def test_extract_raw_fields_returns_none_for_unusable_payloads() -> None:
    assert extract_raw_fields(None) is None
    assert extract_raw_fields("plain text") is None
    assert extract_raw_fields(json.dumps({"other": 1})) is None


def test_extract_raw_fields_is_idempotent(json_payload: str) -> None:
    assert extract_raw_fields(json_payload) == extract_raw_fields(json_payload)


def test_declaration_chain_uses_summary_before_xml(make_declaration, sample_xml: str) -> None:
    """A summary row outranks regex extraction from the stored XML."""
    declaration = make_declaration(
        xml_data=sample_xml,
        customsId="CUSTOMS-9",
        mrn="MRN-9",
        status="REJECTED",
        summary={"declarationType": "ЕК / 10 / АА", "customsOffice": "UA500000", "registeredDate": datetime(2024, 2, 1, 8, 5, 0)},
    )

    raw = raw_fields_for_declaration(declaration)

    assert raw is not None
    assert raw.guid == "CUSTOMS-9"
    assert raw.ccd_status == "N"
    assert raw.ccd_registered == "20240201T080500"
    assert (raw.ccd_01_01, raw.ccd_01_02, raw.ccd_01_03) == ("ЕК", "10", "АА")


def test_declaration_chain_needs_stored_payload(make_declaration) -> None:
    declaration = make_declaration(xml_data=None, summary={"declarationType": "ІМ 40"})
    assert raw_fields_for_declaration(declaration) is None


def test_split_declaration_type_handles_slashes_and_spaces() -> None:
    assert split_declaration_type("ІМ / 40 / ДЕ") == ["ІМ", "40", "ДЕ"]
    assert split_declaration_type("ІМ 40 ДЕ ЕЕ") == ["ІМ", "40", "ДЕ"]
    assert split_declaration_type(None) == []
# endregion
