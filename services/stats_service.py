"""Aggregations over a user's transactions: totals, category splits, daily and calendar views."""
import calendar
import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Literal, Tuple

from models.stats import CalendarMonth, CategoryTotal, DayGroup, DayTotals, SummaryStats
from models.transaction import Transaction

logger = logging.getLogger(__name__)

ReportPeriod = Literal['weekly', 'monthly']


def get_date_range(period: ReportPeriod, reference: date) -> Tuple[date, date]:
    """
    Returns the inclusive (start, end) days of the period containing `reference`.
    Weeks run Monday to Sunday; months from the 1st to their last day.
    """
    if period == 'weekly':
        start = reference - timedelta(days=reference.weekday())
        return start, start + timedelta(days=6)
    if period == 'monthly':
        last_day = calendar.monthrange(reference.year, reference.month)[1]
        return reference.replace(day=1), reference.replace(day=last_day)
    raise ValueError(f"Unknown report period: {period}")


def summarize(transactions: Iterable[Transaction]) -> SummaryStats:
    total_income = 0.0
    total_expense = 0.0
    for t in transactions:
        if t.type == 'INCOME':
            total_income += t.amount
        else:
            total_expense += t.amount
    return SummaryStats(
        total_income=round(total_income, 2),
        total_expense=round(total_expense, 2),
        balance=round(total_income - total_expense, 2),
    )


def category_breakdown(transactions: Iterable[Transaction], tx_type: str = 'EXPENSE') -> List[CategoryTotal]:
    """Sums amounts per category for one transaction type, largest first."""
    totals: Dict[str, float] = defaultdict(float)
    for t in transactions:
        if t.type == tx_type:
            totals[t.category] += t.amount
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [CategoryTotal(category=cat, amount=round(amount, 2)) for cat, amount in ranked]


def top_categories(transactions: Iterable[Transaction], limit: int = 5) -> str:
    """Formats the top expense categories as 'category: amount, ...' for prompts."""
    breakdown = category_breakdown(transactions, 'EXPENSE')[:limit]
    return ", ".join(f"{c.category}: {c.amount:.2f}" for c in breakdown)


def daily_totals(transactions: Iterable[Transaction]) -> Dict[date, DayTotals]:
    days: Dict[date, DayTotals] = {}
    for t in transactions:
        day = days.setdefault(t.date, DayTotals(date=t.date))
        if t.type == 'INCOME':
            day.income = round(day.income + t.amount, 2)
        else:
            day.expense = round(day.expense + t.amount, 2)
    return days


def recent_daily_totals(transactions: Iterable[Transaction], days: int = 7) -> List[DayTotals]:
    """Totals for the last `days` dates that have any data, oldest first."""
    totals = daily_totals(transactions)
    recent = sorted(totals)[-days:] if days > 0 else []
    return [totals[d] for d in recent]


def month_calendar(transactions: Iterable[Transaction], year: int, month: int) -> CalendarMonth:
    first_weekday, days_in_month = calendar.monthrange(year, month)
    totals = daily_totals(t for t in transactions if t.date.year == year and t.date.month == month)
    days = []
    for day_num in range(1, days_in_month + 1):
        day = date(year, month, day_num)
        days.append(totals.get(day, DayTotals(date=day)))
    # calendar.monthrange counts Monday as 0; the grid starts on Sunday
    return CalendarMonth(year=year, month=month, first_weekday=(first_weekday + 1) % 7, days=days)


def group_by_date(transactions: Iterable[Transaction]) -> List[DayGroup]:
    """Groups transactions per day, most recent day first, keeping the input order within a day."""
    grouped: Dict[date, List[Transaction]] = defaultdict(list)
    for t in transactions:
        grouped[t.date].append(t)
    return [DayGroup(date=d, transactions=grouped[d]) for d in sorted(grouped, reverse=True)]
