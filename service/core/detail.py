"""Adapter between stored payloads and the 61.1 XML mapper.

``get_mapped_detail`` finds the embedded 61.1 document, maps it and reads a few
header values straight from the raw fragment. When mapping is impossible it builds
a header-only declaration from the denormalized summary row instead.
"""

from typing import Callable, Optional

from core.models import DeclarationSummary, DetailResult, ExtractedFields, MappedDeclaration, MappedHeader
from core.payload import get_xml_61_1
from core.raw_fields import format_customs_timestamp, split_declaration_type
from core.xml_fields import extract_type_parts, extract_xml_field
from core.xml_mapper import map_xml_to_declaration
from logger import logger

XmlMapper = Callable[[str], Optional[MappedDeclaration]]


def _extracted_from_xml(xml: str, mapped: MappedDeclaration) -> ExtractedFields:
    part1, part2, part3 = extract_type_parts(xml)
    return ExtractedFields(
        ccd_registered=extract_xml_field(xml, "ccd_registered") or mapped.header.raw_date or None,
        ccd_01_01=part1,
        ccd_01_02=part2,
        ccd_01_03=part3,
    )


def mapped_from_summary(summary: DeclarationSummary, mrn: Optional[str] = None) -> DetailResult:
    """Build a header-only declaration from the summary row."""
    registered = format_customs_timestamp(summary.registered_date)
    header = MappedHeader(
        mrn=mrn or "N/A",
        type=summary.declaration_type or "---",
        date=summary.registered_date.strftime("%d.%m.%Y, %H:%M:%S") if summary.registered_date else "",
        raw_date=registered or "",
        customs_office=summary.customs_office or "",
        consignor=summary.sender_name or "",
        consignee=summary.recipient_name or "",
        contract_holder=summary.contract_holder or "",
        declarant_name=summary.declarant_name or "",
        invoice_value=summary.invoice_value or 0,
        invoice_currency=summary.invoice_currency or "",
        invoice_value_uah=summary.invoice_value_uah or 0,
        total_value=summary.customs_value or 0,
        total_items=summary.total_items or 0,
        currency=summary.currency or "",
        exchange_rate=summary.exchange_rate or 0,
        transport_details=summary.transport_details or "",
    )

    parts = split_declaration_type(summary.declaration_type)
    parts += [None] * (3 - len(parts))
    extracted = ExtractedFields(ccd_registered=registered, ccd_01_01=parts[0], ccd_01_02=parts[1], ccd_01_03=parts[2])
    return DetailResult(mapped=MappedDeclaration(header=header, goods=[]), extracted=extracted)


def get_mapped_detail(
    xml_data: Optional[str],
    summary: Optional[DeclarationSummary],
    *,
    mrn: Optional[str] = None,
    mapper: XmlMapper = map_xml_to_declaration,
) -> DetailResult:
    """Resolve the detailed view of a declaration.

    Args:
        xml_data: Stored payload (JSON envelope, raw XML or None).
        summary: Denormalized summary row used when the payload cannot be mapped.
        mrn: Declaration MRN for the summary fallback header.
        mapper: Callable turning a 61.1 document into a ``MappedDeclaration``.

    Returns:
        ``DetailResult`` with ``mapped`` None and empty ``extracted`` when neither
        source is usable.
    """
    xml = get_xml_61_1(xml_data)
    if xml:
        try:
            mapped = mapper(xml)
        except Exception as exc:
            logger.debug("Declaration mapping failed; using summary fallback", error=str(exc))
            mapped = None
        if mapped is not None:
            return DetailResult(mapped=mapped, extracted=_extracted_from_xml(xml, mapped))

    if summary is not None:
        return mapped_from_summary(summary, mrn)

    return DetailResult()
