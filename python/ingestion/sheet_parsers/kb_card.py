"""
KB Kookmin Card Parser

Parses KB국민카드 usage-history exports: six metadata rows, the header on
row 7 and transactions from row 8.
"""

import logging
from typing import Any

from ..models import EXPENSE
from .base import (
    BaseSheetParser,
    ParsedRow,
    ParseResult,
    cell_text,
    is_blank,
    parse_amount_value,
    parse_date_value,
    parse_time_value,
)
from .columns import is_cancel_text
from .metadata import SourceMetadata, extract_source_metadata
from .workbook import Sheet

logger = logging.getLogger(__name__)


class KBCardParser(BaseSheetParser):
    """Parser for KB Kookmin card exports."""

    PARSER_NAME = "kb_card"
    CARD_NAME = "KB국민카드"

    HEADER_ROW = 6  # zero-based, i.e. row 7
    HEADER_SEARCH_ROWS = 20
    FILE_KEYWORDS = ("kb", "국민")
    SIGNATURE_COLUMNS = ("이용일", "이용시간", "이용하신곳")

    COLUMN_NAMES = {
        "date": (("이용일",), ()),
        "time": (("이용시간",), ()),
        "name": (("이용하신곳", "가맹점"), ()),
        "amount": (("국내이용금액", "이용금액"), ("해외", "할인")),
        "transaction_number": (("승인번호",), ()),
        "status": (("상태",), ()),
    }

    @classmethod
    def _is_header(cls, row: list[Any]) -> bool:
        labels = [cell_text(v) for v in row]
        return all(any(column in label for label in labels) for column in cls.SIGNATURE_COLUMNS)

    @classmethod
    def find_header(cls, rows: list[list[Any]]) -> int | None:
        """Row index of the header: row 7 when it fits, else the first match in the top 20."""
        if len(rows) > cls.HEADER_ROW and cls._is_header(rows[cls.HEADER_ROW]):
            return cls.HEADER_ROW
        for index, row in enumerate(rows[:cls.HEADER_SEARCH_ROWS]):
            if cls._is_header(row):
                return index
        return None

    @classmethod
    def matches(cls, sheets: list[Sheet], file_name: str | None, metadata: SourceMetadata | None = None) -> bool:
        """Check whether a workbook is a KB card export.

        Detected by file name, by the card name in the metadata block, or by
        the distinctive column set.
        """
        name = (file_name or "").lower()
        if any(keyword in name for keyword in cls.FILE_KEYWORDS):
            return True
        if metadata and metadata.card_name == cls.CARD_NAME:
            return True
        return any(cls.find_header(sheet.rows) is not None for sheet in sheets)

    def _map_columns(self, header: list[Any]) -> dict[str, int]:
        labels = [cell_text(v).replace(" ", "") for v in header]
        mapping = {}
        for field, (names, exclude) in self.COLUMN_NAMES.items():
            for name in names:
                index = next(
                    (i for i, label in enumerate(labels)
                     if name in label and not any(word in label for word in exclude)),
                    None,
                )
                if index is not None:
                    mapping[field] = index
                    break
        return mapping

    def parse(self, sheets: list[Sheet], file_name: str | None = None) -> ParseResult:
        sheet = next((s for s in sheets if self.find_header(s.rows) is not None), None)
        if sheet is None:
            result = ParseResult(parser=self.PARSER_NAME, source_file=file_name)
            result.errors.append("KB card header row (이용일, 이용시간, 이용하신곳) not found")
            return result

        header_index = self.find_header(sheet.rows)
        columns = self._map_columns(sheet.rows[header_index])
        result = ParseResult(parser=self.PARSER_NAME, sheet_name=sheet.name)

        result.metadata = extract_source_metadata(sheet.rows, header_index + 1)
        if result.metadata.card_name is None:
            result.metadata.card_name = self.CARD_NAME
        result.source_file = result.metadata.label or file_name

        for row_number, row in enumerate(sheet.rows[header_index + 1:], start=header_index + 2):
            if all(is_blank(v) for v in row):
                continue
            parsed = self._parse_row(row, columns, row_number)
            if parsed is None:
                result.skip(row_number, "no readable date")
                continue
            self._accept(result, parsed)

        logger.info(f"Parsed {result.row_count} KB card rows ({result.skipped_rows} skipped)")
        return result

    def _parse_row(self, row: list[Any], columns: dict[str, int], row_number: int) -> ParsedRow | None:
        def cell(field: str) -> Any:
            index = columns.get(field)
            return row[index] if index is not None and index < len(row) else None

        date, time = parse_date_value(cell("date"))
        if not date:
            return None

        time = parse_time_value(cell("time")) or time
        amount = parse_amount_value(cell("amount")) or 0
        status = cell_text(cell("status"))

        return ParsedRow(
            date=date,
            time=time,
            name=cell_text(cell("name")),
            amount=amount,
            type=EXPENSE,
            transaction_number=cell_text(cell("transaction_number")) or None,
            is_cancelled=is_cancel_text(status) or amount < 0,
            row_number=row_number,
        )
