"""Turn stored declarations into archive records ready for export and statistics."""

from typing import Iterable, List, Optional

from core.constants import LIST61
from core.detail import XmlMapper, get_mapped_detail
from core.models import ArchiveRecord, Declaration
from core.payload import get_xml_61_1, sniff_payload
from core.raw_fields import ExtractionSource, JsonRawFieldsStrategy, raw_fields_for_declaration, run_chain
from core.xml_mapper import map_xml_to_declaration

_SERVER_RAW_CHAIN = (JsonRawFieldsStrategy(),)


def build_archive_records(
    declarations: Iterable[Declaration],
    active_tab: str,
    mapper: XmlMapper = map_xml_to_declaration,
) -> List[ArchiveRecord]:
    """Attach raw fields to every declaration; on the 61.1 tab also map the detail."""
    records: List[ArchiveRecord] = []
    for declaration in declarations:
        raw = raw_fields_for_declaration(declaration)
        if active_tab != LIST61:
            records.append(ArchiveRecord(declaration=declaration, raw_data=raw))
            continue

        detail = get_mapped_detail(declaration.xml_data, declaration.summary, mrn=declaration.mrn, mapper=mapper)
        records.append(
            ArchiveRecord(
                declaration=declaration,
                raw_data=raw,
                mapped_data=detail.mapped,
                extracted_data=detail.extracted,
            )
        )
    return records


def record_from_61_1(declaration: Declaration, mapper: XmlMapper = map_xml_to_declaration) -> Optional[ArchiveRecord]:
    """Record for the streaming export; None unless the stored 61.1 XML maps.

    Raw fields come from the JSON ``data60_1`` section only.
    """
    xml = get_xml_61_1(declaration.xml_data)
    if not xml:
        return None
    detail = get_mapped_detail(xml, None, mapper=mapper)
    if detail.mapped is None:
        return None
    raw = run_chain(ExtractionSource(payload=sniff_payload(declaration.xml_data)), _SERVER_RAW_CHAIN)
    return ArchiveRecord(declaration=declaration, raw_data=raw, mapped_data=detail.mapped, extracted_data=detail.extracted)
