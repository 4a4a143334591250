"""Declaration export entry points.

Each export builds its rows with ``core.rows`` and writes one XLSX file into
``output_dir``. Problems are reported through ``notify`` with a user-facing
message and logged; the functions never raise. A cancelled goods export returns
None without notifying.
"""

from datetime import date
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from core.cancellation import CancellationToken, check_cancelled
from core.constants import (
    BASIC_COLUMN_WIDTHS,
    BASIC_EXPORT_FAILED_MESSAGE,
    EXTENDED_EXPORT_FAILED_MESSAGE,
    GOODS_TAB_REQUIRED_MESSAGE,
    LIST60,
    LIST61,
    NO_DATA_MESSAGE,
    NO_DETAILS_MESSAGE,
    NO_GOODS_DECLARATIONS_MESSAGE,
    NO_GOODS_ROWS_MESSAGE,
)
from core.enrichment import DetailFetcher, enrich_with_details
from core.models import ArchiveRecord, ExportProgress
from core.rows import ProgressCallback, build_basic_rows, build_extended_rows, build_goods_rows
from exceptions import ExportAborted, ExportError
from logger import logger
from utils.declaration_excel_export import (
    BASIC_SHEET_TITLE,
    EXTENDED_SHEET_TITLE,
    GOODS_SHEET_TITLE,
    basic_export_filename,
    extended_export_filename,
    goods_export_filename,
    write_workbook,
)
from utils.exchange_rates import NbuRateClient, RateLookup

Notifier = Callable[[str], None]

_TAB_LABELS = {LIST60: "Список", LIST61: "Деталі"}


def log_notice(message: str) -> None:
    """Default notifier: record the user-facing message in the log."""
    logger.warning("Export notice", message=message)


def _write(path: Path, headers, rows, **kwargs) -> Path:
    try:
        return write_workbook(path, headers, rows, **kwargs)
    except OSError as exc:
        raise ExportError(f"Could not write {path.name}: {exc}") from exc


def export_to_excel(
    records: Sequence[ArchiveRecord],
    tab: str,
    columns: Optional[Mapping[str, bool]] = None,
    order: Optional[Sequence[str]] = None,
    *,
    output_dir: Path = Path("."),
    notify: Notifier = log_notice,
    today: Optional[date] = None,
) -> Optional[Path]:
    """Write the list view of ``records`` (one row per declaration).

    Returns:
        Path of the written file, or None when nothing was written.
    """
    if not records:
        notify(NO_DATA_MESSAGE)
        return None

    try:
        headers, rows = build_basic_rows(records, tab, columns, order)
        path = _write(
            output_dir / basic_export_filename(_TAB_LABELS.get(tab, _TAB_LABELS[LIST61]), today),
            headers,
            rows,
            sheet_title=BASIC_SHEET_TITLE,
            column_widths=BASIC_COLUMN_WIDTHS.get(tab),
        )
    except Exception as exc:
        logger.exception("Basic export failed", tab=tab, records=len(records))
        notify(f"{BASIC_EXPORT_FAILED_MESSAGE}\n{exc}")
        return None

    logger.info("Export written", filename=path.name, rows=len(rows))
    return path


def export_extended_to_excel(
    records: Sequence[ArchiveRecord],
    tab: str,
    columns: Mapping[str, bool],
    order: Optional[Sequence[str]] = None,
    *,
    rate_client: Optional[NbuRateClient] = None,
    output_dir: Path = Path("."),
    notify: Notifier = log_notice,
    today: Optional[date] = None,
) -> Optional[Path]:
    """Write one row per goods item of the records that carry mapped detail.

    The USD rate is looked up once, for the first declaration's rate date, and
    applied to every row.
    """
    with_details = [r for r in records if r.mapped_data is not None] if tab == LIST61 else []
    if not with_details:
        notify(NO_DETAILS_MESSAGE)
        return None

    try:
        usd_rate = None
        header = with_details[0].mapped_data.header
        rate_date = header.currency_rate_date_raw or header.raw_date
        if rate_date:
            try:
                usd_rate = (rate_client or NbuRateClient()).get_usd_rate(rate_date)
            except Exception as exc:
                logger.warning("USD rate unavailable for extended export", date=rate_date, error=str(exc))

        headers, rows = build_extended_rows(with_details, columns, order, usd_rate)
        path = _write(output_dir / extended_export_filename(today), headers, rows, sheet_title=EXTENDED_SHEET_TITLE)
    except Exception as exc:
        logger.exception("Extended export failed", records=len(with_details))
        notify(f"{EXTENDED_EXPORT_FAILED_MESSAGE}\n{exc}")
        return None

    logger.info("Export written", filename=path.name, rows=len(rows))
    return path


def export_extended_goods_to_excel(
    records: Sequence[ArchiveRecord],
    tab: str,
    columns: Optional[Mapping[str, bool]] = None,
    order: Optional[Sequence[str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel: Optional[CancellationToken] = None,
    *,
    fetch_xml: DetailFetcher,
    rate_client: Optional[NbuRateClient] = None,
    output_dir: Path = Path("."),
    notify: Notifier = log_notice,
    today: Optional[date] = None,
    debug: bool = False,
) -> Optional[Path]:
    """Goods-level export across the batch, fetching missing detail first.

    Progress is reported as ``fetching_details``, then ``generating_rows``, then a
    single ``writing_file`` update.

    Args:
        records: Declarations currently listed.
        tab: Active tab; only the 61.1 tab is supported.
        columns: Inclusion map; None includes every goods column.
        order: Explicit column order.
        on_progress: Progress callback.
        cancel: Cancellation token; cancelling returns None silently.
        fetch_xml: Returns a declaration's stored payload by ID.
        rate_client: NBU client used for per-declaration USD rates.
        output_dir: Directory the file is written to.
        notify: Receives user-facing messages.
        today: Date used in the filename.
        debug: Append the rate diagnostic columns.

    Returns:
        Path of the written file, or None.
    """
    try:
        check_cancelled(cancel, "start")
        if tab != LIST61:
            notify(GOODS_TAB_REQUIRED_MESSAGE)
            return None

        candidates = [r for r in records if r.declaration.id]
        enriched = enrich_with_details(candidates, fetch_xml, on_progress=on_progress, cancel=cancel)
        if not enriched:
            notify(NO_GOODS_DECLARATIONS_MESSAGE)
            return None

        rate_lookup = RateLookup(rate_client or NbuRateClient())
        headers, rows = build_goods_rows(enriched, columns, order, rate_lookup, on_progress, cancel, debug=debug)
        check_cancelled(cancel, "generating_rows")
        if not rows:
            notify(NO_GOODS_ROWS_MESSAGE)
            return None

        if on_progress is not None:
            on_progress(ExportProgress(phase="writing_file", current=1, total=1))
        path = _write(output_dir / goods_export_filename(today), headers, rows, sheet_title=GOODS_SHEET_TITLE)
    except ExportAborted as exc:
        logger.info("Goods export cancelled", stage=exc.stage)
        return None
    except Exception:
        logger.exception("Goods export failed", records=len(records))
        notify(EXTENDED_EXPORT_FAILED_MESSAGE)
        return None

    logger.info("Export written", filename=path.name, rows=len(rows), declarations=len(enriched))
    return path
