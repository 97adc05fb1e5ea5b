import csv
import io
import re

from sheetpipe.core.errors import UnsupportedExportFormat
from sheetpipe.models.sheet import Sheet
from sheetpipe.schemas.export import ExportColumn, ExportData
from sheetpipe.services import cell_store
from sheetpipe.services.sheet_service import get_columns

EXPORT_FORMATS = ("json", "csv")


def check_format(fmt: str) -> str:
    if fmt not in EXPORT_FORMATS:
        raise UnsupportedExportFormat(fmt)
    return fmt


async def build_export(sheet: Sheet) -> ExportData:
    """Materializes the sheet grid against its ordered column list."""
    columns = await get_columns(sheet.id)
    rows = await cell_store.read_grid(sheet.id, column_count=len(columns))
    return ExportData(
        sheetId=sheet.id,
        sheetName=sheet.name,
        columns=[ExportColumn(title=c.title, position=c.position) for c in columns],
        rows=rows,
        rowCount=len(rows),
        columnCount=len(columns),
    )


def to_csv(export: ExportData) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n")
    writer.writerow([c.title for c in export.columns])
    writer.writerows(export.rows)
    return buffer.getvalue()


def export_filename(name: str) -> str:
    return f"{re.sub(r'[^a-zA-Z0-9]', '_', name)}.csv"
