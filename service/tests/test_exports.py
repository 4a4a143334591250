"""
Unit tests for the export entry points: file output, user notices and cancellation.
"""

from datetime import date
from pathlib import Path

import pytest
from openpyxl import load_workbook

from core.archive_data import build_archive_records
from core.cancellation import CancellationToken
from core.constants import (
    EXTENDED_EXPORT_FAILED_MESSAGE,
    GOODS_TAB_REQUIRED_MESSAGE,
    LIST60,
    LIST61,
    NO_DATA_MESSAGE,
    NO_DETAILS_MESSAGE,
    NO_GOODS_DECLARATIONS_MESSAGE,
    NO_GOODS_ROWS_MESSAGE,
)
from core.models import ArchiveRecord
from exports import export_extended_goods_to_excel, export_extended_to_excel, export_to_excel

TODAY = date(2024, 1, 15)


class FakeRateClient:
    def __init__(self, rate: float = 40.0) -> None:
        self.rate = rate
        self.requested = []

    def get_usd_rate(self, date_str):
        self.requested.append(date_str)
        return self.rate


@pytest.fixture
def notices():
    return []


@pytest.fixture
def list61_records(make_declaration, json_payload: str):
    return build_archive_records([make_declaration(xml_data=json_payload)], LIST61)


# region Basic export
def test_export_to_excel_writes_list_sheet(tmp_path: Path, notices, list61_records) -> None:
    path = export_to_excel(list61_records, LIST61, output_dir=tmp_path, notify=notices.append, today=TODAY)

    assert path == tmp_path / "Декларації_Деталі_2024-01-15.xlsx"
    worksheet = load_workbook(path).active
    assert worksheet.title == "Декларації"
    assert worksheet["A2"].value == "24UA100000000001A1"
    assert worksheet.column_dimensions["A"].width == 20
    assert notices == []


def test_export_to_excel_without_records_notifies(tmp_path: Path, notices) -> None:
    assert export_to_excel([], LIST60, output_dir=tmp_path, notify=notices.append) is None
    assert notices == [NO_DATA_MESSAGE]
    assert list(tmp_path.iterdir()) == []


def test_export_to_excel_reports_write_failure(tmp_path: Path, notices, list61_records) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    assert export_to_excel(list61_records, LIST61, output_dir=blocker, notify=notices.append) is None
    assert len(notices) == 1
    assert notices[0].startswith("Помилка при експорті в Excel")
# endregion


# region Extended export
def test_export_extended_uses_one_rate_for_all_rows(tmp_path: Path, notices, list61_records) -> None:
    rates = FakeRateClient(40.0)

    path = export_extended_to_excel(
        list61_records,
        LIST61,
        {"mdNumber": True, "goodsIndex": True, "goodsInvoiceValueUsd": True},
        rate_client=rates,
        output_dir=tmp_path,
        notify=notices.append,
        today=TODAY,
    )

    assert path.name == "Декларації_Розширений_2024-01-15.xlsx"
    rows = list(load_workbook(path).active.iter_rows(values_only=True))
    assert rows[1:] == [("24UA100000000001A1", 1, 1000), ("24UA100000000001A1", 2, 200.5)]
    assert rates.requested == ["20240115T103000"]


def test_export_extended_requires_details(tmp_path: Path, notices, make_declaration) -> None:
    records = [ArchiveRecord(declaration=make_declaration())]

    assert export_extended_to_excel(records, LIST61, {"mdNumber": True}, output_dir=tmp_path, notify=notices.append) is None
    assert export_extended_to_excel(records, LIST60, {"mdNumber": True}, output_dir=tmp_path, notify=notices.append) is None
    assert notices == [NO_DETAILS_MESSAGE, NO_DETAILS_MESSAGE]
# endregion


# region Goods export
def test_goods_export_fetches_details_and_reports_phases(tmp_path: Path, notices, make_declaration, json_payload: str) -> None:
    """Phases arrive in order: detail fetches, row generation, then the file write."""
    records = [ArchiveRecord(declaration=make_declaration("a")), ArchiveRecord(declaration=make_declaration("b"))]
    events = []

    path = export_extended_goods_to_excel(
        records,
        LIST61,
        {"mdNumber": True, "goodsIndex": True},
        on_progress=events.append,
        fetch_xml=lambda declaration_id: json_payload if declaration_id == "a" else None,
        rate_client=FakeRateClient(),
        output_dir=tmp_path,
        notify=notices.append,
        today=TODAY,
    )

    assert path.name == "Розширений_експорт_2024-01-15.xlsx"
    phases = [event.phase for event in events]
    assert phases == ["fetching_details", "fetching_details", "generating_rows", "generating_rows", "writing_file"]
    worksheet = load_workbook(path).active
    assert worksheet.title == "Товари"
    assert worksheet.max_row == 3
    assert notices == []


def test_goods_export_requires_details_tab(tmp_path: Path, notices, list61_records) -> None:
    assert export_extended_goods_to_excel(list61_records, LIST60, fetch_xml=lambda _: None, output_dir=tmp_path, notify=notices.append) is None
    assert notices == [GOODS_TAB_REQUIRED_MESSAGE]


def test_goods_export_without_declarations(tmp_path: Path, notices) -> None:
    assert export_extended_goods_to_excel([], LIST61, fetch_xml=lambda _: None, output_dir=tmp_path, notify=notices.append) is None
    assert notices == [NO_GOODS_DECLARATIONS_MESSAGE]


def test_goods_export_without_rows(tmp_path: Path, notices, make_declaration) -> None:
    records = [ArchiveRecord(declaration=make_declaration("a"))]

    result = export_extended_goods_to_excel(records, LIST61, fetch_xml=lambda _: None, rate_client=FakeRateClient(), output_dir=tmp_path, notify=notices.append)

    assert result is None
    assert notices == [NO_GOODS_ROWS_MESSAGE]


def test_goods_export_cancelled_is_silent(tmp_path: Path, notices, list61_records) -> None:
    token = CancellationToken()
    token.cancel()

    result = export_extended_goods_to_excel(list61_records, LIST61, cancel=token, fetch_xml=lambda _: None, output_dir=tmp_path, notify=notices.append)

    assert result is None
    assert notices == []
    assert list(tmp_path.iterdir()) == []


def test_goods_export_failure_notifies(tmp_path: Path, notices, list61_records) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    result = export_extended_goods_to_excel(list61_records, LIST61, fetch_xml=lambda _: None, rate_client=FakeRateClient(), output_dir=blocker, notify=notices.append)

    assert result is None
    assert notices == [EXTENDED_EXPORT_FAILED_MESSAGE]
# endregion
