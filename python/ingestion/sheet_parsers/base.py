"""
Base Sheet Parser Module

Shared types and cell coercion for spreadsheet statement parsers.
"""

import datetime as dt
import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from ..models import EXPENSE, Transaction
from .metadata import SourceMetadata

logger = logging.getLogger(__name__)

SERIAL_EPOCH = dt.date(1899, 12, 30)

_ISO_DATE = re.compile(
    r"^(\d{4})\s*[-./년]\s*(\d{1,2})\s*[-./월]\s*(\d{1,2})\s*일?"
    r"(?:[ T]+(\d{1,2}):(\d{2})(?::(\d{2}))?)?"
)
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_SHORT_DATE = re.compile(r"^(\d{2})[-./](\d{1,2})[-./](\d{1,2})$")
_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_COMPACT_SHORT_DATE = re.compile(r"^(\d{2})(\d{2})(\d{2})$")
_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?")


@dataclass
class ParsedRow:
    """A draft transaction read from one spreadsheet row."""

    date: str
    name: str
    amount: int  # signed, as seen in the source
    type: str = EXPENSE
    time: str | None = None
    transaction_number: str | None = None
    description: str = ""
    source_category: str | None = None
    is_cancelled: bool = False
    row_number: int = 0

    @property
    def datetime(self) -> str:
        return f"{self.date} {self.time or '00:00:00'}"

    def to_transaction(self, profile_id: str = "") -> Transaction:
        return Transaction(
            date=self.date,
            datetime=self.datetime,
            name=self.name,
            original_text=self.name,
            amount=self.amount,
            type=self.type,
            profile_id=profile_id,
            description=self.description,
            transaction_number=self.transaction_number,
            is_cancelled=self.is_cancelled,
        )


@dataclass
class ParseResult:
    """Result of parsing a statement workbook."""

    parser: str
    sheet_name: str | None = None
    rows: list[ParsedRow] = field(default_factory=list)
    metadata: SourceMetadata = field(default_factory=SourceMetadata)
    source_file: str | None = None
    skipped_rows: int = 0
    skipped_reasons: Counter = field(default_factory=Counter)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def skip(self, row_number: int, reason: str) -> None:
        self.skipped_rows += 1
        self.skipped_reasons[reason] += 1
        if self.skipped_rows <= 5:
            logger.debug(f"Skipping row {row_number}: {reason}")


class BaseSheetParser(ABC):
    """Abstract base class for statement sheet parsers."""

    PARSER_NAME: str = "base"

    @abstractmethod
    def parse(self, sheets: list, file_name: str | None = None) -> ParseResult:
        """Parse decoded sheets into draft rows.

        Args:
            sheets: Decoded sheets of one workbook
            file_name: Original upload name, if known

        Returns:
            ParseResult object
        """

    def _accept(self, result: ParseResult, row: ParsedRow) -> None:
        if not row.date:
            result.skip(row.row_number, "no date")
        elif not row.name:
            result.skip(row.row_number, "no name")
        elif row.amount == 0:
            result.skip(row.row_number, "zero amount")
        else:
            result.rows.append(row)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _build_date(year: int, month: int, day: int) -> str | None:
    try:
        return dt.date(year, month, day).isoformat()
    except ValueError:
        return None


def _format_time(hour: int, minute: int, second: int = 0) -> str | None:
    if 0 <= hour < 24 and 0 <= minute < 60 and 0 <= second < 60:
        return f"{hour:02d}:{minute:02d}:{second:02d}"
    return None


def _serial_to_date(serial: float) -> tuple[str | None, str | None]:
    day = SERIAL_EPOCH + dt.timedelta(days=int(serial))
    fraction = serial - int(serial)
    time = None
    if fraction > 0:
        time = parse_time_value(fraction)
    return day.isoformat(), time


def parse_date_value(value: Any) -> tuple[str | None, str | None]:
    """Convert a date cell into ``(YYYY-MM-DD, HH:MM:SS | None)``.

    Accepts date/datetime objects, ISO and dotted/slashed strings,
    ``YYYYMMDD``, ``YYMMDD`` (years below 50 are 20xx), ``MM/DD/YYYY`` and
    spreadsheet serial day counts.
    """
    if is_blank(value) or isinstance(value, bool):
        return None, None

    if isinstance(value, dt.datetime):
        time = value.strftime("%H:%M:%S") if value.time() != dt.time.min else None
        return value.date().isoformat(), time
    if isinstance(value, dt.date):
        return value.isoformat(), None

    if isinstance(value, (int, float)):
        if 19000101 <= value <= 21001231 and float(value).is_integer():
            text = str(int(value))
        elif 1 <= value < 100000:
            return _serial_to_date(float(value))
        else:
            text = cell_text(value)
    else:
        text = str(value).strip()

    match = _ISO_DATE.match(text)
    if match:
        date = _build_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        time = None
        if date and match.group(4):
            time = _format_time(int(match.group(4)), int(match.group(5)), int(match.group(6) or 0))
        return date, time

    match = _US_DATE.match(text)
    if match:
        return _build_date(int(match.group(3)), int(match.group(1)), int(match.group(2))), None

    match = _COMPACT_DATE.match(text)
    if match:
        return _build_date(int(match.group(1)), int(match.group(2)), int(match.group(3))), None

    match = _SHORT_DATE.match(text) or _COMPACT_SHORT_DATE.match(text)
    if match:
        year = int(match.group(1))
        year += 2000 if year < 50 else 1900
        return _build_date(year, int(match.group(2)), int(match.group(3))), None

    return None, None


def parse_time_value(value: Any) -> str | None:
    """Convert a time cell (``HH:mm[:ss]``, day fraction, time object) to ``HH:MM:SS``."""
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, dt.datetime):
        return value.strftime("%H:%M:%S")
    if isinstance(value, dt.time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, (int, float)):
        if 0 <= value < 1:
            seconds = int(round(value * 86400)) % 86400
            return _format_time(seconds // 3600, (seconds % 3600) // 60, seconds % 60)
        return None

    match = _TIME.match(str(value).strip())
    if match:
        return _format_time(int(match.group(1)), int(match.group(2)), int(match.group(3) or 0))
    return None


def parse_amount_value(value: Any) -> int | None:
    """Parse an amount cell to a signed integer.

    Handles thousands separators, currency marks, ``(1,000)`` and a
    leading or trailing minus. Returns None when the cell is not numeric.
    """
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(round(value))

    cleaned = re.sub(r"[,\s₩원]|KRW", "", str(value), flags=re.IGNORECASE)
    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = cleaned[1:-1]
        negative = True
    if cleaned.startswith("-"):
        cleaned = cleaned[1:]
        negative = True
    elif cleaned.endswith("-"):
        cleaned = cleaned[:-1]
        negative = True
    elif cleaned.startswith("+"):
        cleaned = cleaned[1:]

    try:
        amount = int(round(float(cleaned)))
    except ValueError:
        return None
    return -amount if negative else amount


def looks_like_date(value: Any) -> bool:
    """True for cells that read as a calendar date (bare counts excluded)."""
    if isinstance(value, (dt.date, dt.datetime)):
        return True
    if isinstance(value, bool) or is_blank(value):
        return False
    if isinstance(value, (int, float)):
        return 19000101 <= value <= 21001231 and parse_date_value(value)[0] is not None
    text = str(value).strip()
    if not any(sep in text for sep in "-./년") and not _COMPACT_DATE.match(text):
        return False
    return parse_date_value(text)[0] is not None

