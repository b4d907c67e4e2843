"""
Spending analysis: recurring-expense detection, aggregates and insights.
"""

from .insights import Insight, generate_insights, month_over_month
from .pattern_analyzer import Frequency, PatternAnalyzer, RecurringPattern, SpendingSummary

__all__ = [
    "Frequency",
    "Insight",
    "PatternAnalyzer",
    "RecurringPattern",
    "SpendingSummary",
    "generate_insights",
    "month_over_month",
]
