"""Excel rendering for declaration exports.

Row builders in ``core.rows`` produce ``(headers, rows)``; this module owns the XLSX
concerns: sheet naming, header styling, column widths and serialization. The
streaming writer uses an openpyxl write-only workbook so large exports never hold
the whole sheet in memory.
"""

import tempfile
from datetime import date, datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

DEFAULT_COLUMN_WIDTH = 20
STREAM_CHUNK_SIZE = 64 * 1024
# Spooled exports stay in memory up to this size before spilling to disk
STREAM_SPOOL_MAX_BYTES = 8 * 1024 * 1024

BASIC_SHEET_TITLE = "Декларації"
EXTENDED_SHEET_TITLE = "Декларації детально"
GOODS_SHEET_TITLE = "Товари"
STREAM_SHEET_TITLE = "Export"


def export_date(today: Optional[date] = None) -> str:
    """UTC calendar date used in export filenames (``YYYY-MM-DD``)."""
    return (today or datetime.now(timezone.utc).date()).isoformat()


def basic_export_filename(tab_label: str, today: Optional[date] = None) -> str:
    return f"Декларації_{tab_label}_{export_date(today)}.xlsx"


def extended_export_filename(today: Optional[date] = None) -> str:
    return f"Декларації_Розширений_{export_date(today)}.xlsx"


def goods_export_filename(today: Optional[date] = None) -> str:
    return f"Розширений_експорт_{export_date(today)}.xlsx"


def build_workbook_payload(
    headers: Sequence[str],
    rows: Sequence[Sequence[Any]],
    *,
    sheet_title: str,
    column_widths: Optional[Sequence[int]] = None,
) -> bytes:
    """Build XLSX bytes for one sheet of rows.

    Args:
        headers: Header row labels.
        rows: Data rows, already ordered like ``headers``.
        sheet_title: Worksheet title.
        column_widths: Widths by column position; missing positions use the default.

    Returns:
        Serialized workbook bytes.
    """
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_title
    worksheet.append(list(headers))
    for row in rows:
        worksheet.append(list(row))

    header_font = Font(bold=True)
    for col_idx in range(1, len(headers) + 1):
        worksheet.cell(row=1, column=col_idx).font = header_font

    worksheet.freeze_panes = "A2"
    if headers:
        last_column = get_column_letter(len(headers))
        worksheet.auto_filter.ref = f"A1:{last_column}{len(rows) + 1}"

    widths = list(column_widths or [])
    for col_idx in range(1, len(headers) + 1):
        width = widths[col_idx - 1] if col_idx <= len(widths) else DEFAULT_COLUMN_WIDTH
        worksheet.column_dimensions[get_column_letter(col_idx)].width = width

    output = BytesIO()
    workbook.save(output)
    output.seek(0)
    payload = output.getvalue()
    output.close()
    return payload


def write_workbook(path: Path, headers: Sequence[str], rows: Sequence[Sequence[Any]], **kwargs: Any) -> Path:
    """Write ``build_workbook_payload`` output to ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(build_workbook_payload(headers, rows, **kwargs))
    return path


class StreamingWorkbookWriter:
    """Append-only single-sheet XLSX writer backed by a write-only workbook.

    Call ``write_header`` once, ``append`` for each row, then iterate ``chunks`` to
    read the finished file. The workbook can only be serialized once.
    """

    def __init__(self, sheet_title: str = STREAM_SHEET_TITLE, column_width: int = DEFAULT_COLUMN_WIDTH) -> None:
        self._workbook = Workbook(write_only=True)
        self._worksheet = self._workbook.create_sheet(title=sheet_title)
        self._column_width = column_width
        self._header_written = False
        self.row_count = 0

    def write_header(self, headers: Sequence[str]) -> None:
        if self._header_written:
            raise ValueError("Header already written")
        # Dimensions must be set before the first row in write-only mode
        for col_idx in range(1, len(headers) + 1):
            self._worksheet.column_dimensions[get_column_letter(col_idx)].width = self._column_width
        self._worksheet.freeze_panes = "A2"

        header_font = Font(bold=True)
        cells = []
        for label in headers:
            cell = WriteOnlyCell(self._worksheet, value=label)
            cell.font = header_font
            cells.append(cell)
        self._worksheet.append(cells)
        self._header_written = True

    def append(self, row: Sequence[Any]) -> None:
        self._worksheet.append(list(row))
        self.row_count += 1

    def chunks(self, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        """Serialize the workbook and yield it in ``chunk_size`` pieces."""
        with tempfile.SpooledTemporaryFile(max_size=STREAM_SPOOL_MAX_BYTES) as buffer:
            self._workbook.save(buffer)
            buffer.seek(0)
            while True:
                chunk = buffer.read(chunk_size)
                if not chunk:
                    break
                yield chunk
