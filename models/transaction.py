"""Pydantic models for Transaction data"""
from datetime import date
from typing import Literal, Optional

from pydantic import Field, field_validator

from models.base import CamelModel

TransactionType = Literal['EXPENSE', 'INCOME']

EXPENSE_CATEGORIES = ['餐饮', '交通', '购物', '娱乐', '居住', '医疗', '教育', '人情', '其他']
INCOME_CATEGORIES = ['工资', '奖金', '理财', '兼职', '礼金', '其他']
FALLBACK_CATEGORY = '其他'

# Chinese labels used by the spreadsheet format and sometimes echoed back by the model
TYPE_ALIASES = {'收入': 'INCOME', '支出': 'EXPENSE'}


def categories_for(tx_type: str) -> list:
    return INCOME_CATEGORIES if tx_type == 'INCOME' else EXPENSE_CATEGORIES


class TransactionBase(CamelModel):
    """
    Fields a client may set on a transaction.
    The amount is always a magnitude; whether it adds or subtracts is decided by `type`.
    """
    amount: float
    type: TransactionType
    category: str
    description: str = ""
    date: date

    @field_validator('amount')
    @classmethod
    def amount_as_magnitude(cls, value: float) -> float:
        return round(abs(value), 2)

    @field_validator('type', mode='before')
    @classmethod
    def upper_case_type(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return TYPE_ALIASES.get(value, value.upper())
        return value

    @field_validator('category', 'description', mode='before')
    @classmethod
    def strip_text(cls, value):
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value


class TransactionCreate(TransactionBase):
    created_at: Optional[int] = None


class TransactionUpdate(TransactionBase):
    # Accepted so clients can send back the full object; never overwrites the stored value
    created_at: Optional[int] = None


class Transaction(TransactionBase):
    """A stored income or expense record."""
    id: str
    user_id: str
    created_at: int = Field(..., description="Creation time in epoch milliseconds.")


class TransactionDraft(TransactionBase):
    """An AI-parsed transaction that has not been saved yet."""
    pass
