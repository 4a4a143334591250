"""Declaration filters and archive list sorting.

``filter_declarations_60`` narrows the short-format list the way the archive list
does and ``sort_records`` orders it by a list column. ``DeclarationQuery`` is the
server-side filter set used by the streaming export: it matches on the stored
declaration and its summary row only.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from functools import cmp_to_key
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from core.constants import LIST61
from core.derivation import get_md_number
from core.models import ArchiveRecord, Declaration

_CUSTOMS_TIMESTAMP_RE = re.compile(r"(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})")
EE_SUFFIX = "ЕЕ"


def parse_filter_date(value: Optional[str]) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` (or ISO datetime) filter value; None when invalid."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    return value.replace(tzinfo=None) if value is not None and value.tzinfo is not None else value


def _parse_registered(value: str) -> Optional[datetime]:
    iso = _CUSTOMS_TIMESTAMP_RE.sub(r"\1-\2-\3T\4:\5:\6", value)
    try:
        return _naive(datetime.fromisoformat(iso.replace("Z", "+00:00")))
    except ValueError:
        return None


def _record_date(record: ArchiveRecord) -> Optional[datetime]:
    raw = record.raw_data
    if raw is not None and raw.ccd_registered:
        return _parse_registered(raw.ccd_registered)
    return _naive(record.declaration.date)


def split_terms(value: Optional[str]) -> List[str]:
    return [term.strip() for term in str(value or "").split(",") if term.strip()]


def _contains(haystack: Optional[str], needle: str) -> bool:
    return bool(haystack) and needle in haystack.lower()


@dataclass(frozen=True)
class FilterOptions:
    """Archive list filters; empty values disable a filter."""

    status: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    customs_office: Optional[str] = None
    declaration_type: Optional[str] = None
    search_term: Optional[str] = None

    @classmethod
    def from_args(cls, args: Mapping[str, str]) -> "FilterOptions":
        """Read the list filters from request arguments (``status``, ``dateFrom``...)."""

        def arg(name: str) -> Optional[str]:
            return (args.get(name) or "").strip() or None

        return cls(
            status=arg("status"),
            date_from=arg("dateFrom"),
            date_to=arg("dateTo"),
            customs_office=arg("customsOffice"),
            declaration_type=arg("declarationType"),
            search_term=arg("searchTerm"),
        )


def _matches_type(record: ArchiveRecord, terms: Sequence[str]) -> bool:
    raw = record.raw_data
    if raw is None:
        return False
    declaration_type = (raw.ccd_type or "").lower()
    if declaration_type and any(term in declaration_type for term in terms):
        return True
    parts = " ".join(p for p in (raw.ccd_01_01, raw.ccd_01_02, raw.ccd_01_03) if p).lower()
    return bool(parts) and any(term in parts for term in terms)


def _matches_search(record: ArchiveRecord, search: str) -> bool:
    declaration = record.declaration
    raw = record.raw_data
    md_number = (raw.MRN if raw is not None else None) or declaration.mrn or ""
    if _contains(declaration.mrn, search) or _contains(declaration.customs_id, search) or _contains(md_number, search):
        return True
    if raw is None:
        return False
    if _contains(raw.guid, search) or _contains(raw.ccd_type, search):
        return True
    if isinstance(raw.trn_all, list):
        return any(search in str(item).lower() for item in raw.trn_all)
    return _contains(raw.trn_all, search)


def filter_declarations_60(records: Iterable[ArchiveRecord], filters: FilterOptions) -> List[ArchiveRecord]:
    """Apply the short-format list filters; all filters must match.

    ``status='cleared'`` selects declarations whose raw status is ``R``. Dates come
    from ``ccd_registered`` with the declaration date as fallback and both bounds
    are inclusive whole days. Searches are case-insensitive substring matches.
    """
    filtered = list(records)

    if filters.status and filters.status != "all":
        if filters.status == "cleared":
            filtered = [r for r in filtered if r.raw_data is not None and r.raw_data.ccd_status == "R"]
        else:
            filtered = [r for r in filtered if r.declaration.status == filters.status]

    date_from = parse_filter_date(filters.date_from)
    if filters.date_from:
        lower = datetime.combine(date_from, time.min) if date_from else None
        filtered = [r for r in filtered if lower is not None and (d := _record_date(r)) is not None and d >= lower]

    date_to = parse_filter_date(filters.date_to)
    if filters.date_to:
        upper = datetime.combine(date_to, time(23, 59, 59, 999000)) if date_to else None
        filtered = [r for r in filtered if upper is not None and (d := _record_date(r)) is not None and d <= upper]

    if filters.declaration_type:
        terms = [term.lower() for term in split_terms(filters.declaration_type)]
        if terms:
            filtered = [r for r in filtered if _matches_type(r, terms)]

    if filters.customs_office:
        office = filters.customs_office.lower()
        filtered = [r for r in filtered if r.raw_data is not None and _contains(r.raw_data.ccd_07_01, office)]

    if filters.search_term:
        search = filters.search_term.lower()
        filtered = [r for r in filtered if _matches_search(r, search)]

    return filtered


@dataclass(frozen=True)
class DeclarationQuery:
    """Server-side export filters over stored declarations and their summaries."""

    company_ids: Sequence[str]
    show_ee_declarations: bool = False
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    customs_office: Optional[str] = None
    currency: Optional[str] = None
    consignor: Optional[str] = None
    consignee: Optional[str] = None
    contract_holder: Optional[str] = None
    hs_code: Optional[str] = None
    declaration_types: Sequence[str] = field(default_factory=tuple)
    search_term: Optional[str] = None

    @classmethod
    def from_args(cls, args: Mapping[str, str], company_ids: Sequence[str], show_ee_declarations: bool) -> "DeclarationQuery":
        """Build a query from request arguments (``dateFrom``, ``customsOffice``...)."""

        def arg(name: str) -> Optional[str]:
            return (args.get(name) or "").strip() or None

        return cls(
            company_ids=tuple(company_ids),
            show_ee_declarations=show_ee_declarations,
            date_from=parse_filter_date(arg("dateFrom")),
            date_to=parse_filter_date(arg("dateTo")),
            customs_office=arg("customsOffice"),
            currency=arg("currency"),
            consignor=arg("consignor"),
            consignee=arg("consignee"),
            contract_holder=arg("contractHolder"),
            hs_code=arg("hsCode"),
            declaration_types=tuple(split_terms(arg("declarationType"))),
            search_term=arg("searchTerm"),
        )

    def _in_date_range(self, declaration: Declaration) -> bool:
        lower = datetime.combine(self.date_from, time.min) if self.date_from else None
        upper = datetime.combine(self.date_to, time(23, 59, 59, 999000)) if self.date_to else None
        summary = declaration.summary
        for candidate in (declaration.date, summary.registered_date if summary else None):
            value = _naive(candidate)
            if value is None:
                continue
            if (lower is None or value >= lower) and (upper is None or value <= upper):
                return True
        return False

    def matches(self, declaration: Declaration) -> bool:
        if self.company_ids and declaration.company_id not in self.company_ids:
            return False

        summary = declaration.summary
        declaration_type = summary.declaration_type if summary else None

        if not self.show_ee_declarations and declaration_type and declaration_type.endswith(EE_SUFFIX):
            return False

        if (self.date_from or self.date_to) and not self._in_date_range(declaration):
            return False

        if self.currency and self.currency != "all":
            if summary is None or self.currency not in (summary.currency, summary.invoice_currency):
                return False

        substring_filters = (
            (self.customs_office, summary.customs_office if summary else None),
            (self.consignor, summary.sender_name if summary else None),
            (self.consignee, summary.recipient_name if summary else None),
            (self.contract_holder, summary.contract_holder if summary else None),
        )
        for needle, haystack in substring_filters:
            if needle and not _contains(haystack, needle.lower()):
                return False

        if self.hs_code and not any(self.hs_code.lower() in code.lower() for code in declaration.hs_codes):
            return False

        if self.declaration_types and declaration_type not in self.declaration_types:
            return False

        if self.search_term:
            search = self.search_term.lower()
            candidates = (
                declaration.mrn,
                declaration.customs_id,
                summary.sender_name if summary else None,
                summary.recipient_name if summary else None,
                summary.contract_holder if summary else None,
                summary.customs_office if summary else None,
                declaration_type,
            )
            if not any(_contains(candidate, search) for candidate in candidates):
                return False

        return True


SortValue = Union[str, float, None]


def _transport_sort_value(trn_all: Any) -> str:
    if not trn_all:
        return ""
    if isinstance(trn_all, str):
        return trn_all.strip()
    if isinstance(trn_all, list):
        return ", ".join(str(item) for item in trn_all if item)
    return str(trn_all)


def _list61_sort_value(record: ArchiveRecord, column: str) -> SortValue:
    raw = record.raw_data
    extracted = record.extracted_data
    header = record.mapped_data.header
    if column == "registeredDate":
        return (extracted.ccd_registered if extracted else None) or (raw.ccd_registered if raw else None) or ""
    if column == "type":
        if extracted is not None:
            return " ".join(extracted.type_parts())
        return (raw.ccd_type if raw else None) or ""
    if column == "consignor":
        return header.consignor or ""
    if column == "consignee":
        return header.consignee or ""
    if column == "invoiceValue":
        return header.invoice_value or 0
    if column == "goodsCount":
        return header.total_items or len(record.mapped_data.goods)
    raise KeyError(column)


def _list60_sort_value(record: ArchiveRecord, column: str) -> SortValue:
    raw = record.raw_data
    if column == "registeredDate":
        return (raw.ccd_registered if raw else None) or ""
    if column == "type":
        return (raw.ccd_type if raw else None) or ""
    if column == "transport":
        return _transport_sort_value(raw.trn_all if raw else None)
    raise KeyError(column)


def _sort_value(record: ArchiveRecord, column: str, use_mapped: bool) -> SortValue:
    raw = record.raw_data
    if column == "mdNumber":
        return get_md_number(raw, record.declaration.mrn)
    if column == "status":
        return (raw.ccd_status if raw else None) or record.declaration.status
    if use_mapped:
        return _list61_sort_value(record, column)
    return _list60_sort_value(record, column)


def _compare(a: SortValue, b: SortValue, descending: bool) -> int:
    if a == b:
        return 0
    # Missing values go last in either direction
    if a is None:
        return 1
    if b is None:
        return -1
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        result = -1 if a < b else 1
    else:
        a_text = str(a or "").lower()
        b_text = str(b or "").lower()
        if a_text == b_text:
            return 0
        result = -1 if a_text < b_text else 1
    return -result if descending else result


def sort_records(records: Iterable[ArchiveRecord], tab: str, column: Optional[str], direction: str = "asc") -> List[ArchiveRecord]:
    """Sort archive records by a list column.

    The 61.1 columns (``consignor``, ``consignee``, ``invoiceValue``, ``goodsCount``)
    read the mapped detail and apply only on the ``list61`` tab when both records
    carry it; otherwise the short-format fields are used and ``transport`` is
    available. Strings compare case-insensitively, numbers numerically. Unknown
    columns and an empty ``column`` keep the input order. The sort is stable.
    """
    items = list(records)
    if not column:
        return items

    descending = direction == "desc"

    def compare(a: ArchiveRecord, b: ArchiveRecord) -> int:
        use_mapped = tab == LIST61 and a.mapped_data is not None and b.mapped_data is not None
        try:
            a_value = _sort_value(a, column, use_mapped)
            b_value = _sort_value(b, column, use_mapped)
        except KeyError:
            return 0
        return _compare(a_value, b_value, descending)

    return sorted(items, key=cmp_to_key(compare))
