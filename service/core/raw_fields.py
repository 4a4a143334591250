"""Raw-field extraction for the 60.1 short-format view.

Each source of header fields is a strategy with a ``try_extract`` method. The chain
asks them in order and stops at the first one that produces a record:

1. ``JsonRawFieldsStrategy``: the ``data60_1`` section of a JSON envelope.
2. ``SummaryRawFieldsStrategy``: the denormalized summary row written by sync.
3. ``XmlRawFieldsStrategy``: best-effort tag matching on a raw XML document.
"""

import re
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from core.constants import SUMMARY_STATUS_TO_CCD
from core.models import Declaration, DeclarationSummary, RawFields
from core.payload import ParsedPayload, XmlPayload, get_data_60_1, has_list_data, sniff_payload
from core.xml_fields import extract_type_parts, extract_xml_field, iter_transport_names, join_type_parts

_TYPE_SPLIT_RE = re.compile(r"[/\s]+")

_DATA60_FIELDS = ("guid", "MRN", "ccd_registered", "ccd_status", "ccd_type", "trn_all", "ccd_07_01", "ccd_07_02", "ccd_07_03", "ccd_01_01", "ccd_01_02", "ccd_01_03")


@dataclass(frozen=True)
class ExtractionSource:
    """Everything a strategy may look at for one declaration."""

    payload: ParsedPayload
    declaration: Optional[Declaration] = None


class RawFieldsStrategy(Protocol):
    name: str

    def try_extract(self, source: ExtractionSource) -> Optional[RawFields]: ...


def split_declaration_type(declaration_type: Optional[str]) -> list[str]:
    """Split a summary type such as ``"ІМ / 40 / ДЕ"`` into at most three parts."""
    if not declaration_type:
        return []
    return [part for part in _TYPE_SPLIT_RE.split(declaration_type.strip()) if part][:3]


def format_customs_timestamp(value) -> Optional[str]:
    """Render a datetime as the customs ``YYYYMMDDTHHMMSS`` format."""
    if value is None:
        return None
    return value.strftime("%Y%m%dT%H%M%S")


class JsonRawFieldsStrategy:
    name = "json"

    def try_extract(self, source: ExtractionSource) -> Optional[RawFields]:
        if not has_list_data(source.payload):
            return None

        data60 = get_data_60_1(source.payload) or {}
        fields = {key: data60.get(key) for key in _DATA60_FIELDS}
        if not fields["ccd_type"]:
            fields["ccd_type"] = join_type_parts([_as_text(fields[f"ccd_01_0{i}"]) for i in (1, 2, 3)])
        return RawFields(**fields)


class SummaryRawFieldsStrategy:
    name = "summary"

    def try_extract(self, source: ExtractionSource) -> Optional[RawFields]:
        declaration = source.declaration
        summary: Optional[DeclarationSummary] = declaration.summary if declaration else None
        if declaration is None or summary is None:
            return None

        parts = split_declaration_type(summary.declaration_type)
        parts += [None] * (3 - len(parts))
        return RawFields(
            guid=declaration.customs_id or None,
            MRN=declaration.mrn or None,
            ccd_registered=format_customs_timestamp(summary.registered_date),
            ccd_status=SUMMARY_STATUS_TO_CCD.get(declaration.status),
            ccd_type=summary.declaration_type or None,
            ccd_07_01=summary.customs_office or None,
            ccd_01_01=parts[0],
            ccd_01_02=parts[1],
            ccd_01_03=parts[2],
        )


class XmlRawFieldsStrategy:
    name = "xml"

    def try_extract(self, source: ExtractionSource) -> Optional[RawFields]:
        if not isinstance(source.payload, XmlPayload):
            return None

        xml = source.payload.text.strip()
        ccd_type = extract_xml_field(xml, "ccd_type") or join_type_parts(extract_type_parts(xml))

        trn_all = extract_xml_field(xml, "trn_all")
        if not trn_all:
            trn_all = ", ".join(iter_transport_names(xml)) or None

        return RawFields(
            guid=extract_xml_field(xml, "guid"),
            MRN=extract_xml_field(xml, "MRN"),
            ccd_registered=extract_xml_field(xml, "ccd_registered"),
            ccd_status=extract_xml_field(xml, "ccd_status"),
            ccd_type=ccd_type,
            trn_all=trn_all,
            ccd_07_01=extract_xml_field(xml, "ccd_07_01"),
            ccd_07_02=extract_xml_field(xml, "ccd_07_02"),
            ccd_07_03=extract_xml_field(xml, "ccd_07_03"),
        )


def _as_text(value) -> Optional[str]:
    return value if isinstance(value, str) else (str(value) if value is not None else None)


PAYLOAD_CHAIN: Sequence[RawFieldsStrategy] = (JsonRawFieldsStrategy(), XmlRawFieldsStrategy())
DECLARATION_CHAIN: Sequence[RawFieldsStrategy] = (JsonRawFieldsStrategy(), SummaryRawFieldsStrategy(), XmlRawFieldsStrategy())


def run_chain(source: ExtractionSource, chain: Sequence[RawFieldsStrategy]) -> Optional[RawFields]:
    """Return the first record produced by ``chain``; None when every strategy declines."""
    for strategy in chain:
        raw = strategy.try_extract(source)
        if raw is not None:
            return raw
    return None


def extract_raw_fields(xml_data: Optional[str]) -> Optional[RawFields]:
    """Extract raw fields from a stored payload alone (no summary fallback)."""
    return run_chain(ExtractionSource(payload=sniff_payload(xml_data)), PAYLOAD_CHAIN)


def raw_fields_for_declaration(declaration: Declaration) -> Optional[RawFields]:
    """Extract raw fields for a declaration: JSON, then summary, then XML tags."""
    if not declaration.xml_data:
        return None
    source = ExtractionSource(payload=sniff_payload(declaration.xml_data), declaration=declaration)
    return run_chain(source, DECLARATION_CHAIN)
