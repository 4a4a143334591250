"""Sniffing of stored declaration payloads.

``Declaration.xml_data`` is an opaque blob whose shape depends on how the sync job
stored it: a JSON envelope with ``data60_1``/``data61_1`` keys, a raw XML document,
or nothing usable at all. Every caller goes through :func:`sniff_payload` so the
first-character detection lives in one place.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class JsonPayload:
    """Payload that parsed as JSON."""

    data: Any

    def get(self, key: str) -> Any:
        return self.data.get(key) if isinstance(self.data, dict) else None


@dataclass(frozen=True)
class XmlPayload:
    """Payload that looks like an XML document (untrimmed original text)."""

    text: str


@dataclass(frozen=True)
class UnparsablePayload:
    """Payload that is empty, malformed JSON or of an unknown format."""

    reason: str


ParsedPayload = Union[JsonPayload, XmlPayload, UnparsablePayload]


def sniff_payload(xml_data: Optional[str]) -> ParsedPayload:
    """Classify a stored payload by its first non-whitespace character.

    Args:
        xml_data: Raw ``xmlData`` value from storage.

    Returns:
        ``JsonPayload`` for ``{``/``[``, ``XmlPayload`` for ``<``, otherwise
        ``UnparsablePayload``. Never raises.
    """
    if not xml_data or not isinstance(xml_data, str):
        return UnparsablePayload(reason="empty")

    trimmed = xml_data.strip()
    if not trimmed:
        return UnparsablePayload(reason="empty")

    first = trimmed[0]
    if first in "{[":
        try:
            return JsonPayload(data=json.loads(trimmed))
        except ValueError:
            return UnparsablePayload(reason="invalid_json")

    if first == "<":
        return XmlPayload(text=xml_data)

    return UnparsablePayload(reason="unknown_format")


def get_data_60_1(payload: ParsedPayload) -> Optional[dict]:
    """Return the short-format ``data60_1`` object of a JSON payload, if any."""
    if isinstance(payload, JsonPayload):
        data60 = payload.get("data60_1")
        if isinstance(data60, dict):
            return data60
    return None


def has_list_data(payload: ParsedPayload) -> bool:
    """True when a JSON payload carries either the 60.1 or the 61.1 section."""
    return isinstance(payload, JsonPayload) and bool(payload.get("data60_1") or payload.get("data61_1"))


def get_xml_61_1(xml_data: Optional[str]) -> Optional[str]:
    """Return the embedded 61.1 XML document of a stored payload.

    Args:
        xml_data: Raw ``xmlData`` value from storage.

    Returns:
        The ``data61_1`` string of a JSON envelope, the raw text of an XML payload,
        or None when neither is present.
    """
    payload = sniff_payload(xml_data)
    if isinstance(payload, JsonPayload):
        data61 = payload.get("data61_1")
        return str(data61) if data61 else None
    if isinstance(payload, XmlPayload):
        return payload.text
    return None
