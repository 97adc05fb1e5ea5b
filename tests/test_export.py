import csv
import io

import pytest

from sheetpipe.core.errors import UnsupportedExportFormat
from sheetpipe.services import cell_store, export_service


@pytest.mark.asyncio
async def test_csv_export_round_trips_grid(sheet):
    await cell_store.upsert_many(sheet.id, [(0, 0, "NYC"), (0, 1, "Sunny, 21C"), (2, 2, 'He said "hi"')])

    export = await export_service.build_export(sheet)
    text = export_service.to_csv(export)

    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0] == ["City", "Weather", "News"]
    assert rows[1:] == [
        ["NYC", "Sunny, 21C", ""],
        ["", "", ""],
        ["", "", 'He said "hi"'],
    ]
    assert text.endswith("\r\n")


@pytest.mark.asyncio
async def test_json_export_shape(sheet):
    await cell_store.upsert(sheet.id, 0, 0, "Berlin")

    export = await export_service.build_export(sheet)
    body = export.model_dump(mode="json")

    assert body["sheetId"] == str(sheet.id)
    assert body["sheetName"] == "Cities & Weather (2024)"
    assert [c["title"] for c in body["columns"]] == ["City", "Weather", "News"]
    assert body["rows"] == [["Berlin", "", ""]]
    assert body["rowCount"] == 1
    assert body["columnCount"] == 3


@pytest.mark.asyncio
async def test_export_of_empty_sheet_has_header_only(sheet):
    export = await export_service.build_export(sheet)

    assert export.rowCount == 0
    assert export_service.to_csv(export) == "City,Weather,News\r\n"


def test_export_filename_is_sanitized():
    assert export_service.export_filename("Cities & Weather (2024)") == "Cities___Weather__2024_.csv"
    assert export_service.export_filename("plain") == "plain.csv"


def test_unsupported_format_is_rejected():
    assert export_service.check_format("csv") == "csv"
    with pytest.raises(UnsupportedExportFormat) as exc:
        export_service.check_format("xlsx")
    assert exc.value.status_code == 400
