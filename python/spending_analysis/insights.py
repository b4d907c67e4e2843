"""
Spending Insights

Threshold rules that turn a spending summary and recurring patterns into
short notes for the user.
"""

from dataclasses import dataclass

from .pattern_analyzer import WEEKDAY_NAMES, RecurringPattern, SpendingSummary


@dataclass
class Insight:
    """One generated note."""

    kind: str  # 'concentration', 'recurring', 'weekday', 'trend'
    severity: str  # 'info', 'warning'
    message: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "severity": self.severity, "message": self.message}


def month_over_month(summary: SpendingSummary) -> float | None:
    """Relative change of the latest month against the one before it."""
    months = list(summary.monthly_spending)
    if len(months) < 2:
        return None
    previous = summary.monthly_spending[months[-2]]
    latest = summary.monthly_spending[months[-1]]
    if previous <= 0:
        return None
    return (latest - previous) / previous


def generate_insights(
    patterns: list[RecurringPattern],
    summary: SpendingSummary,
    concentration_threshold: float = 0.40,
    trend_threshold: float = 0.10,
) -> list[Insight]:
    """Build insights from analysis results.

    Args:
        patterns: Recurring patterns
        summary: Spending summary
        concentration_threshold: Share of spend in one category that triggers a warning
        trend_threshold: Month-over-month change that triggers a trend note

    Returns:
        List of insights, most important first
    """
    insights = []
    total = summary.total_expenses
    if total <= 0:
        return insights

    if summary.top_category:
        share = summary.category_spending[summary.top_category] / total
        if share > concentration_threshold:
            insights.append(Insight(
                "concentration",
                "warning",
                f"{summary.top_category} accounts for {share:.0%} of your spending.",
            ))

    change = month_over_month(summary)
    if change is not None:
        if change > trend_threshold:
            insights.append(Insight(
                "trend", "warning", f"Spending rose {change:.0%} compared with the previous month."
            ))
        elif change < -trend_threshold:
            insights.append(Insight(
                "trend", "info", f"Spending fell {abs(change):.0%} compared with the previous month."
            ))

    if patterns:
        recurring_total = sum(p.amount * p.occurrences for p in patterns)
        insights.append(Insight(
            "recurring",
            "info",
            f"{len(patterns)} recurring expenses make up {recurring_total / total:.0%} of spending.",
        ))
        largest = max(patterns, key=lambda p: p.amount)
        insights.append(Insight(
            "recurring",
            "info",
            f"Largest recurring expense: {largest.name} ({largest.amount:,}, "
            f"{largest.frequency.value.lower()}).",
        ))

    if summary.top_weekday is not None:
        average = summary.weekday_average[summary.top_weekday]
        insights.append(Insight(
            "weekday",
            "info",
            f"You spend the most on {WEEKDAY_NAMES[summary.top_weekday]}s "
            f"(average {average:,.0f} per transaction).",
        ))

    return insights
