"""
Report Builder

DESIGN DECISION: Reports are DETERMINISTIC aggregations over stored rows.
Nothing is cached or estimated; every figure is recomputed from the
ledger for the month the caller asks about.

Spend figures (categories, days, payment types, budget progress) count
Debit rows only. Credits appear in the monthly summary and statements.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from spendfree.models.analytics import (
    BudgetProgress,
    CategorySpend,
    DailySpend,
    MonthlySummary,
    PaymentSpend,
    Statement,
    StatementRow,
)
from spendfree.models.ledger import (
    Expense,
    PaymentType,
    TransactionType,
    ViewContext,
)
from spendfree.services.storage import (
    BudgetStorageInterface,
    ExpenseStorageInterface,
    SettingsStorageInterface,
)


class ReportBuilder:
    """
    Builds dashboard, budget and statement data for one user and month.

    GUARANTEES:
    - Only reads from storage, never writes
    - Empty months produce zero totals, not errors
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        budget_storage: Optional[BudgetStorageInterface] = None,
        settings_storage: Optional[SettingsStorageInterface] = None,
        currency: str = "INR",
    ):
        self._expenses = expense_storage
        self._budgets = budget_storage
        self._settings = settings_storage
        self._currency = currency

    async def _month(self, user_id: str, view: ViewContext) -> list[Expense]:
        return await self._expenses.list_expenses(user_id, view.start_date, view.end_date)

    @staticmethod
    def _debits(expenses: Iterable[Expense]) -> list[Expense]:
        return [e for e in expenses if e.transaction_type == TransactionType.DEBIT]

    @staticmethod
    def _summarize(view: ViewContext, expenses: list[Expense]) -> MonthlySummary:
        total_debit = Decimal("0")
        total_credit = Decimal("0")
        for expense in expenses:
            if expense.transaction_type == TransactionType.DEBIT:
                total_debit += expense.amount
            else:
                total_credit += expense.amount
        return MonthlySummary(
            view=view,
            total_debit=total_debit,
            total_credit=total_credit,
            transaction_count=len(expenses),
        )

    @staticmethod
    def _by_category(expenses: Iterable[Expense]) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = defaultdict(Decimal)
        for expense in expenses:
            totals[expense.category_id] += expense.amount
        return totals

    async def monthly_summary(self, user_id: str, view: ViewContext) -> MonthlySummary:
        """Debit and credit totals plus row count for the month."""
        return self._summarize(view, await self._month(user_id, view))

    async def category_breakdown(self, user_id: str, view: ViewContext) -> list[CategorySpend]:
        """Debit spend per category, largest first."""
        totals = self._by_category(self._debits(await self._month(user_id, view)))
        breakdown = [CategorySpend(category=name, amount=amount) for name, amount in totals.items()]
        breakdown.sort(key=lambda c: c.amount, reverse=True)
        return breakdown

    async def daily_trend(self, user_id: str, view: ViewContext) -> list[DailySpend]:
        """Debit spend per day that has any, in date order."""
        totals: dict[date, Decimal] = defaultdict(Decimal)
        for expense in self._debits(await self._month(user_id, view)):
            totals[expense.date] += expense.amount
        return [DailySpend(day=day, amount=totals[day]) for day in sorted(totals)]

    async def payment_breakdown(self, user_id: str, view: ViewContext) -> list[PaymentSpend]:
        """Debit spend per payment type, in enum order, skipping unused types."""
        totals: dict[PaymentType, Decimal] = defaultdict(Decimal)
        for expense in self._debits(await self._month(user_id, view)):
            totals[expense.payment_type] += expense.amount
        return [
            PaymentSpend(payment_type=payment_type, amount=totals[payment_type])
            for payment_type in PaymentType
            if payment_type in totals
        ]

    async def budget_progress(self, user_id: str, view: ViewContext) -> BudgetProgress:
        """
        Spend against the month's budget.

        by_category lists every category in the user's settings (zero if
        unspent), followed by any category that only exists on expenses.
        """
        debits = self._debits(await self._month(user_id, view))
        totals = self._by_category(debits)

        budget_amount = None
        if self._budgets:
            budget = await self._budgets.get_budget(user_id, view.month, view.year)
            if budget is not None:
                budget_amount = budget.amount

        ordered: list[str] = []
        if self._settings:
            settings = await self._settings.get_settings(user_id)
            if settings is not None:
                ordered = list(settings.categories)
        ordered += [name for name in totals if name not in ordered]

        return BudgetProgress(
            view=view,
            budget=budget_amount,
            spent=sum((e.amount for e in debits), Decimal("0")),
            by_category=[
                CategorySpend(category=name, amount=totals.get(name, Decimal("0")))
                for name in ordered
            ],
        )

    async def build_statement(self, user_id: str, view: ViewContext) -> Statement:
        """Summary and one row per expense, in ledger order."""
        expenses = await self._month(user_id, view)
        return Statement(
            user_id=user_id,
            currency=self._currency,
            summary=self._summarize(view, expenses),
            rows=[
                StatementRow(
                    date=e.date,
                    description=e.description,
                    category=e.category_id,
                    payment_type=e.payment_type,
                    transaction_type=e.transaction_type,
                    amount=e.amount,
                )
                for e in expenses
            ],
        )
