"""
Ledger Models

Transaction record shared by the parser, categorizer, duplicate detector and
pattern analyzer.
"""

import uuid
from dataclasses import dataclass, field, fields
import datetime as dt
from datetime import date
from typing import Any

INCOME = "INCOME"
EXPENSE = "EXPENSE"
DEFAULT_CATEGORY = "기타"

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def new_transaction_id() -> str:
    """Generate an opaque unique transaction id."""
    return str(uuid.uuid4())


@dataclass
class Transaction:
    """A normalized financial transaction.

    ``amount`` is always a non-negative magnitude. The sign seen in the source
    file is kept in ``original_amount`` and reversals are flagged through
    ``is_cancelled``.
    """

    date: str
    name: str
    amount: int
    type: str = EXPENSE
    id: str = field(default_factory=new_transaction_id)
    profile_id: str = ""
    datetime: str | None = None
    category: str = DEFAULT_CATEGORY
    original_text: str = ""
    description: str = ""
    transaction_number: str | None = None
    confidence: float = 0.0
    needs_review: bool = False
    user_confirmed: bool = False
    ai_category: str | None = None
    classification_reason: str = ""
    possible_duplicate: bool = False
    duplicate_check_confidence: float | None = None
    source_file: str | None = None
    source_card_name: str | None = None
    source_card_number: str | None = None
    source_account_number: str | None = None
    is_cancelled: bool = False
    original_amount: int | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            if self.original_amount is None:
                self.original_amount = int(self.amount)
            self.amount = abs(self.amount)
        self.amount = int(round(self.amount))
        if not self.original_text:
            self.original_text = self.name

    @property
    def is_expense(self) -> bool:
        return self.type == EXPENSE

    @property
    def is_cancellation(self) -> bool:
        """True when this record reverses an earlier purchase."""
        return self.is_cancelled or (self.original_amount or 0) < 0

    @property
    def date_value(self) -> date:
        return date.fromisoformat(self.date)

    @property
    def effective_datetime(self) -> dt.datetime:
        """Datetime used for comparisons; midnight of ``date`` when unknown."""
        if self.datetime:
            try:
                return dt.datetime.strptime(self.datetime, DATETIME_FORMAT)
            except ValueError:
                pass
        return dt.datetime.combine(self.date_value, dt.time.min)

    def to_dict(self) -> dict:
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Transaction":
        """Build a transaction from a stored record (camelCase or snake_case keys)."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _snake(key)
            if name in known:
                kwargs[name] = value
        return cls(**kwargs)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _snake(name: str) -> str:
    out = []
    for char in name:
        if char.isupper():
            out.append("_")
            out.append(char.lower())
        else:
            out.append(char)
    return "".join(out)
