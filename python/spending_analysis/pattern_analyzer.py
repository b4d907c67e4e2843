"""
Spending Pattern Analyzer Module

Finds recurring expenses (subscriptions, rent, regular cafe visits) and builds
per-category, per-weekday and per-month spending aggregates.
"""

import calendar
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from ledger_store.config import default_config_dir

if TYPE_CHECKING:
    from ingestion.models import Transaction

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class Frequency(Enum):
    """How often a recurring expense repeats."""

    MONTHLY = "MONTHLY"
    WEEKLY = "WEEKLY"
    DAILY = "DAILY"
    IRREGULAR = "IRREGULAR"


@dataclass
class RecurringPattern:
    """A series of identical expenses at a regular interval."""

    name: str
    category: str
    amount: int
    dates: list[str]
    frequency: Frequency
    confidence: float

    @property
    def occurrences(self) -> int:
        return len(self.dates)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "category": self.category,
            "amount": self.amount,
            "dates": self.dates,
            "frequency": self.frequency.value,
            "confidence": self.confidence,
        }


@dataclass
class SpendingSummary:
    """Expense aggregates over a set of transactions."""

    total_expenses: int = 0
    total_count: int = 0
    category_spending: dict[str, int] = field(default_factory=dict)
    category_average: dict[str, float] = field(default_factory=dict)
    weekday_spending: dict[int, int] = field(default_factory=dict)  # 0 = Sunday
    weekday_average: dict[int, float] = field(default_factory=dict)
    monthly_spending: dict[str, int] = field(default_factory=dict)  # "YYYY-MM"
    top_category: str | None = None
    top_weekday: int | None = None

    def to_dict(self) -> dict:
        return {
            "totalExpenses": self.total_expenses,
            "totalCount": self.total_count,
            "categorySpending": self.category_spending,
            "categoryAverage": self.category_average,
            "weekdaySpending": self.weekday_spending,
            "weekdayAverage": self.weekday_average,
            "monthlySpending": self.monthly_spending,
            "topCategory": self.top_category,
            "topWeekday": self.top_weekday,
        }


def sunday_weekday(day: date) -> int:
    """Weekday index with 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def months_before(day: date, months: int) -> date:
    """Same day-of-month ``months`` earlier, clamped to the month's length."""
    index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


class PatternAnalyzer:
    """Detects recurring expenses and summarizes spending."""

    DEFAULT_LOOKBACK_MONTHS = 6
    MIN_OCCURRENCES = 2
    MIN_CONFIDENCE = 0.5
    STEADY_STDDEV_DAYS = 2
    STEADY_BONUS = 0.1
    MAX_CONFIDENCE = 0.9

    # (low, high, frequency, confidence), first match wins
    GAP_RULES = [
        (28, 31, Frequency.MONTHLY, 0.8),
        (6, 8, Frequency.WEEKLY, 0.7),
        (0.9, 1.1, Frequency.DAILY, 0.6),
        (25, 35, Frequency.MONTHLY, 0.6),
    ]

    def __init__(self, config_dir: Path | str | None = None):
        """Initialize the analyzer.

        Args:
            config_dir: Path to configuration directory
        """
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self._load_config()

    def _load_config(self) -> None:
        config_file = self.config_dir / "pipeline.yaml"
        config = {}
        if config_file.exists():
            with open(config_file) as f:
                config = (yaml.safe_load(f) or {}).get("analysis", {})
        self.lookback_months = config.get("lookback_months", self.DEFAULT_LOOKBACK_MONTHS)
        self.concentration_threshold = config.get("concentration_threshold", 0.40)
        self.trend_threshold = config.get("trend_threshold", 0.10)

    def recent(self, transactions: list["Transaction"], today: date | None = None) -> list["Transaction"]:
        """Keep transactions inside the lookback window ending today."""
        cutoff = months_before(today or date.today(), self.lookback_months)
        return [t for t in transactions if t.date_value >= cutoff]

    def classify_gaps(self, gaps: list[float]) -> tuple[Frequency, float]:
        """Map consecutive-day gaps to a frequency and confidence.

        Args:
            gaps: Days between consecutive occurrences

        Returns:
            (frequency, confidence)
        """
        mean_gap = statistics.mean(gaps)
        frequency, confidence = Frequency.IRREGULAR, 0.0
        for low, high, rule_frequency, rule_confidence in self.GAP_RULES:
            if low <= mean_gap <= high:
                frequency, confidence = rule_frequency, rule_confidence
                break

        if frequency is not Frequency.IRREGULAR and statistics.pstdev(gaps) < self.STEADY_STDDEV_DAYS:
            confidence = min(confidence + self.STEADY_BONUS, self.MAX_CONFIDENCE)

        return frequency, round(confidence, 2)

    def find_recurring(self, transactions: list["Transaction"]) -> list[RecurringPattern]:
        """Group identical expenses and keep the regular series."""
        groups: dict[tuple[str, str, int], list["Transaction"]] = defaultdict(list)
        for txn in transactions:
            if txn.is_expense and not txn.is_cancellation:
                groups[(txn.category, txn.name, txn.amount)].append(txn)

        patterns = []
        for (category, name, amount), members in groups.items():
            if len(members) < self.MIN_OCCURRENCES:
                continue

            days = sorted(t.date_value for t in members)
            gaps = [(later - earlier).days for earlier, later in zip(days, days[1:])]
            frequency, confidence = self.classify_gaps(gaps)
            if confidence < self.MIN_CONFIDENCE:
                continue

            patterns.append(RecurringPattern(
                name=name,
                category=category,
                amount=amount,
                dates=[d.isoformat() for d in days],
                frequency=frequency,
                confidence=confidence,
            ))

        patterns.sort(key=lambda p: (-p.confidence, -p.amount))
        logger.debug(f"Found {len(patterns)} recurring patterns in {len(groups)} groups")
        return patterns

    def summarize(self, transactions: list["Transaction"]) -> SpendingSummary:
        """Aggregate expense totals and averages."""
        expenses = [t for t in transactions if t.is_expense and not t.is_cancellation]
        summary = SpendingSummary(
            total_expenses=sum(t.amount for t in expenses),
            total_count=len(expenses),
        )

        category_counts: dict[str, int] = defaultdict(int)
        weekday_counts: dict[int, int] = defaultdict(int)
        category_totals: dict[str, int] = defaultdict(int)
        weekday_totals: dict[int, int] = defaultdict(int)
        monthly_totals: dict[str, int] = defaultdict(int)

        for txn in expenses:
            day = txn.date_value
            weekday = sunday_weekday(day)
            category_totals[txn.category] += txn.amount
            category_counts[txn.category] += 1
            weekday_totals[weekday] += txn.amount
            weekday_counts[weekday] += 1
            monthly_totals[day.strftime("%Y-%m")] += txn.amount

        summary.category_spending = dict(category_totals)
        summary.category_average = {
            c: category_totals[c] / category_counts[c] for c in category_totals
        }
        summary.weekday_spending = dict(sorted(weekday_totals.items()))
        summary.weekday_average = {
            w: weekday_totals[w] / weekday_counts[w] for w in sorted(weekday_totals)
        }
        summary.monthly_spending = dict(sorted(monthly_totals.items()))

        if category_totals:
            summary.top_category = max(category_totals, key=category_totals.get)
        if weekday_totals:
            summary.top_weekday = max(weekday_totals, key=weekday_totals.get)

        return summary

    def analyze(self, transactions: list["Transaction"]) -> tuple[list[RecurringPattern], SpendingSummary]:
        """Find recurring patterns and summarize spending.

        Read-only over the given list; apply ``recent`` first for the usual
        lookback window.
        """
        return self.find_recurring(transactions), self.summarize(transactions)
