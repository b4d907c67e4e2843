"""
Workbook Decoding

Turns uploaded .xlsx / .xls / .csv bytes into plain cell grids.
"""

import csv
import logging
from dataclasses import dataclass, field
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any

from openpyxl import load_workbook

from .base import is_blank
from .columns import has_amount_column, map_columns

logger = logging.getLogger(__name__)

OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
CSV_ENCODINGS = ("utf-8-sig", "cp949")
HEADER_SCAN_ROWS = 20


@dataclass
class Sheet:
    """One worksheet as a list of rows of cell values."""

    name: str
    rows: list[list[Any]] = field(default_factory=list)

    @property
    def data_row_count(self) -> int:
        return sum(1 for row in self.rows if any(not is_blank(v) for v in row))


def _decode_csv(content: bytes) -> str:
    for encoding in CSV_ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ValueError("CSV file is not UTF-8 or CP949 encoded")


def _load_csv(content: bytes, name: str) -> list[Sheet]:
    text = _decode_csv(content)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    rows = [list(row) for row in csv.reader(StringIO(text))]
    return [Sheet(name=name, rows=rows)]


def _load_excel(content: bytes) -> list[Sheet]:
    if content.startswith(OLE2_SIGNATURE):
        raise ValueError(
            "Legacy .xls (Excel 97-2003) workbooks are not supported; "
            "open the file in Excel and save it as .xlsx"
        )
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ValueError(f"Cannot read workbook: {e}") from e

    sheets = []
    try:
        for worksheet in workbook.worksheets:
            rows = [list(row) for row in worksheet.iter_rows(values_only=True)]
            sheets.append(Sheet(name=worksheet.title, rows=rows))
    finally:
        workbook.close()
    return sheets


def load_sheets(content: bytes, file_name: str) -> list[Sheet]:
    """Decode an uploaded statement file.

    Args:
        content: Raw file bytes
        file_name: Upload name, used for the extension

    Returns:
        List of sheets (a CSV yields exactly one)

    Raises:
        ValueError: If the file cannot be decoded
    """
    suffix = Path(file_name).suffix.lower()
    stem = Path(file_name).stem

    if suffix == ".csv":
        sheets = _load_csv(content, stem)
    elif suffix in (".xlsx", ".xls"):
        sheets = _load_excel(content)
    else:
        raise ValueError(f"Unsupported file type: {suffix or file_name}")

    logger.debug(f"Decoded {file_name}: {len(sheets)} sheet(s)")
    return sheets


def find_header_row(rows: list[list[Any]], limit: int = HEADER_SCAN_ROWS) -> tuple[int | None, dict[str, int]]:
    """Locate the header row within the first ``limit`` rows.

    The row recognizing the most fields wins; it must name a date or an
    amount column and at least two fields overall.
    """
    best_index, best_mapping = None, {}
    for index, row in enumerate(rows[:limit]):
        mapping = map_columns(row)
        if len(mapping) < 2:
            continue
        if "date" not in mapping and not has_amount_column(mapping):
            continue
        if len(mapping) > len(best_mapping):
            best_index, best_mapping = index, mapping
    return best_index, best_mapping


def select_sheet(sheets: list[Sheet]) -> Sheet:
    """Pick the sheet holding the transactions.

    Prefers the sheet with the most data rows whose header names a date or
    amount column; otherwise the second sheet (the first is often a summary);
    otherwise the first.
    """
    if not sheets:
        raise ValueError("Workbook contains no sheets")
    if len(sheets) == 1:
        return sheets[0]

    candidates = []
    for sheet in sheets:
        header_index, _ = find_header_row(sheet.rows)
        if header_index is not None:
            candidates.append((sheet.data_row_count - header_index - 1, sheet))

    if candidates:
        return max(candidates, key=lambda item: item[0])[1]
    return sheets[1]
