"""
Read-side models for dashboards, budget pages and statements.

These are computed on demand from ledger rows and never persisted.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from spendfree.models.ledger import (
    PaymentType,
    TransactionType,
    ViewContext,
)


class MonthlySummary(BaseModel):
    """Totals for one month."""

    view: ViewContext
    total_debit: Decimal = Decimal("0")
    total_credit: Decimal = Decimal("0")
    transaction_count: int = Field(default=0, ge=0)

    @property
    def net_balance(self) -> Decimal:
        """Inflow minus outflow."""
        return self.total_credit - self.total_debit


class CategorySpend(BaseModel):
    """Debit total for one category."""

    category: str
    amount: Decimal


class DailySpend(BaseModel):
    """Debit total for one day of the month."""

    day: date
    amount: Decimal


class PaymentSpend(BaseModel):
    """Debit total for one payment type."""

    payment_type: PaymentType
    amount: Decimal


class BudgetProgress(BaseModel):
    """Spend against the month's budget."""

    view: ViewContext
    budget: Optional[Decimal] = Field(
        default=None,
        description="None when no budget was set for the month"
    )
    spent: Decimal = Decimal("0")
    by_category: list[CategorySpend] = Field(default_factory=list)

    @property
    def remaining(self) -> Optional[Decimal]:
        if self.budget is None:
            return None
        return self.budget - self.spent

    @property
    def ratio(self) -> Optional[float]:
        """Fraction of the budget used. None without a (non-zero) budget."""
        if not self.budget:
            return None
        return float(self.spent / self.budget)

    @property
    def is_over_budget(self) -> bool:
        return self.budget is not None and self.spent > self.budget


class StatementRow(BaseModel):
    """One ledger line on a statement."""

    date: date
    description: str
    category: str
    payment_type: PaymentType
    transaction_type: TransactionType
    amount: Decimal


class Statement(BaseModel):
    """Data for a monthly statement. Rendering is left to the caller."""

    user_id: str
    currency: str
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    summary: MonthlySummary
    rows: list[StatementRow] = Field(default_factory=list)
