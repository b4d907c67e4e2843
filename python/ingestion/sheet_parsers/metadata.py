"""
Source Metadata Extraction

Finds the issuing card company, card last-four digits and account number in
the header block of a statement export.
"""

import re
from dataclasses import dataclass
from typing import Any

CARD_COMPANIES = {
    "KB국민카드": ["kb국민", "국민카드", "kb카드", "kbcard", "kb card"],
    "신한카드": ["신한카드", "shinhan"],
    "삼성카드": ["삼성카드", "samsung card"],
    "현대카드": ["현대카드", "hyundai card", "hyundaicard"],
    "롯데카드": ["롯데카드", "lotte card"],
    "하나카드": ["하나카드", "hana card"],
    "우리카드": ["우리카드", "woori card"],
    "BC카드": ["bc카드", "비씨카드", "bc card"],
    "NH농협카드": ["농협카드", "nh카드", "nh농협"],
}

MASKED_CARD_NUMBER = re.compile(
    r"(?:[\d*]{4}[-\s]?){3}(\d{4})|\*{2,}[-\s]?(\d{4})\b"
)
ACCOUNT_LABELED = re.compile(r"(?:계좌|account)[^\d]{0,10}(\d[\d-]{8,}\d)", re.IGNORECASE)
ACCOUNT_NUMBER = re.compile(r"\b(\d{3,6}-\d{2,6}-\d{2,8}(?:-\d{1,4})?)\b")
_DATE_LIKE = re.compile(r"\d{4}[-./]\d{1,2}[-./]\d{1,2}")

HEADER_SCAN_ROWS = 10
DATA_SCAN_ROWS = 5


@dataclass
class SourceMetadata:
    """Where a statement came from."""

    card_name: str | None = None
    card_number: str | None = None  # last four digits
    account_number: str | None = None

    @property
    def label(self) -> str | None:
        """Human label such as "KB국민카드 1234"."""
        if not self.card_name:
            return None
        if self.card_number:
            return f"{self.card_name} {self.card_number}"
        return self.card_name

    def to_dict(self) -> dict:
        return {
            "cardName": self.card_name,
            "cardNumber": self.card_number,
            "accountNumber": self.account_number,
        }


def detect_card_company(text: str) -> str | None:
    """Return the canonical card company named in the text, if any."""
    lowered = (text or "").lower()
    for company, aliases in CARD_COMPANIES.items():
        if any(alias in lowered for alias in aliases):
            return company
    return None


def find_card_last_four(text: str) -> str | None:
    """Last four digits of a masked card number (``****-****-****-1234``)."""
    for match in MASKED_CARD_NUMBER.finditer(text or ""):
        if "*" not in match.group(0):
            continue
        return match.group(1) or match.group(2)
    return None


def find_account_number(text: str) -> str | None:
    if not text or _DATE_LIKE.search(text):
        return None
    match = ACCOUNT_LABELED.search(text) or ACCOUNT_NUMBER.search(text)
    return match.group(1) if match else None


def _string_cells(rows: list[list[Any]]) -> list[str]:
    cells = []
    for row in rows:
        for value in row:
            if isinstance(value, str) and value.strip():
                cells.append(value.strip())
    return cells


def extract_source_metadata(rows: list[list[Any]], data_start: int | None = None) -> SourceMetadata:
    """Scan the top of a sheet for card and account details.

    Args:
        rows: Sheet grid
        data_start: Index of the first data row; a few data rows after it are
            also scanned for masked card numbers

    Returns:
        SourceMetadata (fields left None when nothing is found)
    """
    metadata = SourceMetadata()

    header_rows = HEADER_SCAN_ROWS if data_start is None else min(HEADER_SCAN_ROWS, data_start)
    for text in _string_cells(rows[:header_rows]):
        if metadata.card_name is None:
            metadata.card_name = detect_card_company(text)
        if metadata.card_number is None:
            metadata.card_number = find_card_last_four(text)
        if metadata.account_number is None:
            metadata.account_number = find_account_number(text)

    if metadata.card_number is None and data_start is not None:
        window = rows[data_start:data_start + DATA_SCAN_ROWS]
        for text in _string_cells(window):
            metadata.card_number = find_card_last_four(text)
            if metadata.card_number:
                break

    return metadata
