"""Best-effort field extraction from partial or malformed declaration XML.

These helpers never parse the document. They pattern-match ``<tag>value</tag>``
pairs so they keep working on fragments the real mapper rejects. Results from this
module are degraded-mode data and should not be mistaken for mapper output.
"""

import re
from functools import lru_cache
from typing import Iterator, List, Optional

_TRANSPORT_BLOCK_RE = re.compile(r"<ccd_transport[^>]*>([\s\S]*?)</ccd_transport>", re.IGNORECASE)
_GOODS_BLOCK_RE = re.compile(r"<ccd_goods[^>]*>([\s\S]*?)</ccd_goods>", re.IGNORECASE)
_LEADING_NUMBER_RE = re.compile(r"^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


@lru_cache(maxsize=64)
def _field_pattern(field_name: str) -> re.Pattern:
    name = re.escape(field_name)
    return re.compile(rf"<{name}>([\s\S]*?)</{name}>", re.IGNORECASE)


def extract_xml_field(xml: str, field_name: str) -> Optional[str]:
    """Return the trimmed text of the first ``<field_name>`` element, or None."""
    if not xml:
        return None
    match = _field_pattern(field_name).search(xml)
    return match.group(1).strip() if match else None


def extract_type_parts(xml: str) -> List[Optional[str]]:
    """Return the three declaration type parts ``ccd_01_01..03`` (None when absent)."""
    return [extract_xml_field(xml, f"ccd_01_0{i}") for i in (1, 2, 3)]


def join_type_parts(parts: List[Optional[str]], separator: str = " ") -> Optional[str]:
    """Join non-empty stripped type parts; None when nothing is left."""
    cleaned = [part.strip() for part in parts if part and part.strip()]
    return separator.join(cleaned) if cleaned else None


def iter_transport_names(xml: str) -> Iterator[str]:
    """Yield vehicle names from each ``<ccd_transport>`` block."""
    for match in _TRANSPORT_BLOCK_RE.finditer(xml or ""):
        block = match.group(1)
        name = extract_xml_field(block, "ccd_trn_name") or extract_xml_field(block, "trn_name")
        if name:
            yield name


def iter_goods_blocks(xml: str) -> Iterator[str]:
    """Yield the inner text of each ``<ccd_goods>`` block."""
    for match in _GOODS_BLOCK_RE.finditer(xml or ""):
        yield match.group(1)


def parse_xml_number(value: Optional[str]) -> Optional[float]:
    """Parse a decimal that may use a comma separator; None when not numeric."""
    if not value:
        return None
    match = _LEADING_NUMBER_RE.match(value.replace(",", ".", 1))
    return float(match.group(0)) if match else None
