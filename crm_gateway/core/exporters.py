import csv
import io
from datetime import datetime
from typing import Any, Iterable, List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

UTF8_BOM = "\ufeff"

CONTENT_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return str(value)
    return value


def to_csv(
    headers: Sequence[str],
    rows: Iterable[Sequence[Any]],
    quote_all: bool = False,
    line_terminator: str = "\n",
    bom: bool = False,
) -> str:
    buffer = io.StringIO()
    writer = csv.writer(
        buffer,
        quoting=csv.QUOTE_ALL if quote_all else csv.QUOTE_MINIMAL,
        lineterminator=line_terminator,
    )
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(value) for value in row])
    content = buffer.getvalue()
    if content.endswith(line_terminator):
        content = content[: -len(line_terminator)]
    return (UTF8_BOM if bom else "") + content


def to_xlsx(headers: Sequence[str], rows: Iterable[Sequence[Any]], sheet_title: str = "Export") -> bytes:
    """Single-sheet workbook with a bold, shaded header row."""
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_title[:31]

    worksheet.append(list(headers))
    header_fill = PatternFill(start_color="FFE0E0E0", end_color="FFE0E0E0", fill_type="solid")
    for col, header in enumerate(headers, start=1):
        cell = worksheet.cell(row=1, column=col)
        cell.font = Font(bold=True)
        cell.fill = header_fill
        worksheet.column_dimensions[get_column_letter(col)].width = max(20, len(header) + 5)

    for row in rows:
        worksheet.append([_cell(value) for value in row])

    for row in worksheet.iter_rows(min_row=2):
        for cell in row:
            cell.alignment = Alignment(vertical="top", wrap_text=True)

    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def humanize_header(key: str) -> str:
    """``status_code`` -> ``Status Code``."""
    return " ".join(part.capitalize() for part in key.split("_"))


def rows_from_dicts(records: List[dict], keys: Sequence[str]) -> List[List[Any]]:
    return [[record.get(key) for key in keys] for record in records]
