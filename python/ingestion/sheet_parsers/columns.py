"""
Column Vocabulary

Declarative header recognition. Supporting a new export format means adding
words here, not code.
"""

from dataclasses import dataclass
from typing import Any

from ..models import EXPENSE, INCOME


@dataclass(frozen=True)
class ColumnRule:
    """Header vocabulary for one transaction field."""

    field: str
    vocabulary: tuple[str, ...]
    exclude: tuple[str, ...] = ()

    def matches(self, header: str) -> bool:
        header = header.lower().strip()
        if not header:
            return False
        if any(word in header for word in self.exclude):
            return False
        return any(word in header for word in self.vocabulary)


# Order matters: each rule claims the first unclaimed header it matches.
FIELD_RULES = [
    ColumnRule("date", ("거래일", "이용일", "승인일", "사용일", "일자", "날짜", "일시", "date"),
               exclude=("결제예정", "시간")),
    ColumnRule("time", ("시간", "시각", "time"), exclude=("일시", "datetime")),
    ColumnRule("type", ("구분", "입출금", "거래유형", "거래종류", "type")),
    ColumnRule("status", ("상태", "취소여부", "status")),
    ColumnRule("category", ("카테고리", "분류", "category")),
    ColumnRule("transaction_number", ("거래번호", "승인번호", "transaction", "reference", "approval"),
               exclude=("amount", "date", "type", "금액")),
    ColumnRule("income_amount", ("입금", "수입", "deposit", "credit", "income"),
               exclude=("잔액", "balance")),
    ColumnRule("expense_amount", ("출금", "지출", "withdrawal", "debit", "expense"),
               exclude=("잔액", "balance")),
    ColumnRule("amount", ("금액", "amount", "결제액", "이용액", "거래액"),
               exclude=("잔액", "balance", "해외", "overseas", "할인", "discount", "예정", "수수료", "포인트")),
    ColumnRule("name", ("가맹점", "이용하신곳", "이용처", "사용처", "거래처", "상호", "적요", "내용",
                        "merchant", "description", "name", "store", "payee")),
    ColumnRule("description", ("메모", "비고", "memo", "note", "detail")),
]

INCOME_HINTS = ("입금", "수입", "income", "deposit", "credit", "환급")
EXPENSE_HINTS = ("출금", "지출", "expense", "withdrawal", "debit", "결제", "사용")
CANCEL_WORDS = ("취소", "환불", "반품", "cancel", "refund")


def map_columns(headers: list[Any]) -> dict[str, int]:
    """Map transaction fields to column indexes.

    Args:
        headers: Header row cells

    Returns:
        Field name -> column index for every recognized field
    """
    labels = [str(h).strip() if h is not None else "" for h in headers]
    claimed: set[int] = set()
    mapping: dict[str, int] = {}

    for rule in FIELD_RULES:
        for index, label in enumerate(labels):
            if index in claimed:
                continue
            if rule.matches(label):
                mapping[rule.field] = index
                claimed.add(index)
                break

    return mapping


def has_amount_column(mapping: dict[str, int]) -> bool:
    return any(f in mapping for f in ("amount", "income_amount", "expense_amount"))


def type_from_text(text: str) -> str | None:
    """INCOME / EXPENSE from a type cell or header, None when unclear."""
    lowered = (text or "").lower()
    if any(hint in lowered for hint in INCOME_HINTS):
        return INCOME
    if any(hint in lowered for hint in EXPENSE_HINTS):
        return EXPENSE
    return None


def is_cancel_text(text: str) -> bool:
    lowered = (text or "").lower()
    return any(word in lowered for word in CANCEL_WORDS)
