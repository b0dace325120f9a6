"""Pydantic models for aggregated views and AI requests"""
from datetime import date
from typing import List, Literal, Optional

from pydantic import Field

from models.base import CamelModel
from models.transaction import Transaction


class SummaryStats(CamelModel):
    total_income: float
    total_expense: float
    balance: float


class CategoryTotal(CamelModel):
    category: str
    amount: float


class DayTotals(CamelModel):
    date: date
    income: float = 0.0
    expense: float = 0.0


class CalendarMonth(CamelModel):
    year: int
    month: int
    # Number of empty cells before day 1 in a Sunday-first grid
    first_weekday: int
    days: List[DayTotals]


class DayGroup(CamelModel):
    date: date
    transactions: List[Transaction]


class ParseRequest(CamelModel):
    input: Optional[str] = None
    image: Optional[str] = Field(default=None, description="Receipt image as a data URL or bare base64.")
    mime_type: Optional[str] = None


class ReportRequest(CamelModel):
    type: Literal['weekly', 'monthly']
    date: date


class ReportResponse(CamelModel):
    report: str
    type: Literal['weekly', 'monthly']
    start_date: date
    end_date: date
