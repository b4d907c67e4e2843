"""
Generic Sheet Parser

Header-inference parser for bank and card exports without a dedicated
parser. Columns are recognized from the vocabulary in ``columns``; cells that
cannot be located by header are found by position.
"""

import logging
from typing import Any

from ..models import EXPENSE, INCOME
from .base import (
    BaseSheetParser,
    ParsedRow,
    ParseResult,
    cell_text,
    is_blank,
    looks_like_date,
    parse_amount_value,
    parse_date_value,
    parse_time_value,
)
from .columns import is_cancel_text, type_from_text
from .metadata import extract_source_metadata
from .workbook import Sheet, find_header_row, select_sheet

logger = logging.getLogger(__name__)

POSITIONAL_AMOUNT_MINIMUM = 100


class GenericSheetParser(BaseSheetParser):
    """Parser that infers the column layout from the header row."""

    PARSER_NAME = "generic"

    def parse(self, sheets: list[Sheet], file_name: str | None = None) -> ParseResult:
        sheet = select_sheet(sheets)
        result = ParseResult(parser=self.PARSER_NAME, sheet_name=sheet.name, source_file=file_name)

        header_index, columns = find_header_row(sheet.rows)
        data_start = 0 if header_index is None else header_index + 1
        if header_index is None:
            result.warnings.append("No header row recognized; reading cells by position")
        else:
            logger.debug(f"Header at row {header_index + 1}: {columns}")

        result.metadata = extract_source_metadata(sheet.rows, data_start)
        headers = sheet.rows[header_index] if header_index is not None else []

        for offset, row in enumerate(sheet.rows[data_start:], start=data_start + 1):
            if all(is_blank(v) for v in row):
                continue
            parsed = self._parse_row(row, columns, headers, offset)
            if parsed is None:
                result.skip(offset, "no readable date")
                continue
            self._accept(result, parsed)

        logger.info(
            f"Parsed {result.row_count} rows from sheet '{sheet.name}' "
            f"({result.skipped_rows} skipped)"
        )
        return result

    def _cell(self, row: list[Any], columns: dict[str, int], field: str) -> Any:
        index = columns.get(field)
        if index is None or index >= len(row):
            return None
        return row[index]

    def _parse_row(
        self,
        row: list[Any],
        columns: dict[str, int],
        headers: list[Any],
        row_number: int,
    ) -> ParsedRow | None:
        """Parse one data row into a draft.

        Args:
            row: Row cells
            columns: Field -> column index mapping (may be empty)
            headers: Header row cells, for reading type hints off column names
            row_number: 1-based row number for logging

        Returns:
            ParsedRow, or None when the row has no readable date
        """
        date_cell = self._cell(row, columns, "date")
        if date_cell is None:
            date_cell = next((v for v in row if looks_like_date(v)), None)
        date, time = parse_date_value(date_cell)
        if not date:
            return None

        time_cell = self._cell(row, columns, "time")
        if time_cell is not None:
            time = parse_time_value(time_cell) or time

        name_cell = self._cell(row, columns, "name")
        if is_blank(name_cell):
            name_cell = self._positional_name(row)
        name = cell_text(name_cell)

        amount, txn_type = self._parse_amount(row, columns, headers)

        type_cell = cell_text(self._cell(row, columns, "type"))
        explicit_type = type_from_text(type_cell)
        if explicit_type:
            txn_type = explicit_type

        status = cell_text(self._cell(row, columns, "status"))
        is_cancelled = (
            is_cancel_text(status)
            or is_cancel_text(type_cell)
            or is_cancel_text(name)
            or amount < 0
        )

        transaction_number = cell_text(self._cell(row, columns, "transaction_number")) or None
        category = cell_text(self._cell(row, columns, "category")) or None

        return ParsedRow(
            date=date,
            time=time,
            name=name,
            amount=amount,
            type=txn_type,
            transaction_number=transaction_number,
            description=cell_text(self._cell(row, columns, "description")),
            source_category=category,
            is_cancelled=is_cancelled,
            row_number=row_number,
        )

    def _parse_amount(
        self,
        row: list[Any],
        columns: dict[str, int],
        headers: list[Any],
    ) -> tuple[int, str]:
        """Read the signed amount and the type implied by its column."""
        income = parse_amount_value(self._cell(row, columns, "income_amount"))
        expense = parse_amount_value(self._cell(row, columns, "expense_amount"))
        if income:
            return income, INCOME
        if expense:
            return expense, EXPENSE

        amount_index = columns.get("amount")
        if amount_index is not None:
            amount = parse_amount_value(self._cell(row, columns, "amount"))
            header = cell_text(headers[amount_index]) if amount_index < len(headers) else ""
            return amount or 0, type_from_text(header) or EXPENSE

        return self._positional_amount(row), EXPENSE

    def _positional_name(self, row: list[Any]) -> Any:
        for value in row:
            if is_blank(value) or looks_like_date(value):
                continue
            if isinstance(value, (int, float)) or parse_amount_value(value) is not None:
                continue
            return value
        return None

    def _positional_amount(self, row: list[Any]) -> int:
        for value in row:
            if looks_like_date(value) or isinstance(value, bool):
                continue
            if isinstance(value, (int, float)) and value != 0:
                return int(round(value))
            if isinstance(value, str):
                amount = parse_amount_value(value)
                if amount is not None and abs(amount) > POSITIONAL_AMOUNT_MINIMUM:
                    return amount
        return 0
