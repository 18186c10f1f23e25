"""
In-Memory Storage Implementation

Used for tests and for running locally without Google credentials.

Each store guards its rows with an asyncio.Lock so that every operation
is one atomic read-compute-write step, and hands out copies so callers
can never mutate stored rows behind the store's back.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from spendfree.models.ledger import (
    Budget,
    CreditCard,
    Expense,
    ExpenseDraft,
    ExpensePatch,
    UserSettings,
)
from spendfree.models.audit import AuditEvent
from spendfree.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ExpenseStorageInterface,
    NotFoundError,
    SettingsStorageInterface,
)


class InMemorySettingsStorage(SettingsStorageInterface):
    """Settings keyed by user ID."""

    def __init__(self):
        self._rows: dict[str, UserSettings] = {}
        self._lock = asyncio.Lock()

    async def get_settings(self, user_id: str) -> Optional[UserSettings]:
        async with self._lock:
            row = self._rows.get(user_id)
            return row.model_copy(deep=True) if row else None

    async def update_settings(
        self,
        user_id: str,
        banks: list[str],
        credit_cards: list[CreditCard],
        categories: list[str],
    ) -> None:
        row = UserSettings(
            user_id=user_id,
            banks=list(banks),
            credit_cards=[card.model_copy() for card in credit_cards],
            categories=list(categories),
        )
        async with self._lock:
            current = self._rows.get(user_id)
            # An identical write leaves the row, timestamp included, as it was
            if current is not None and current.same_taxonomy(row):
                return
            self._rows[user_id] = row


class InMemoryExpenseStorage(ExpenseStorageInterface):
    """Expenses keyed by ID; dict order doubles as insertion order."""

    def __init__(self):
        self._rows: dict[UUID, Expense] = {}
        self._lock = asyncio.Lock()

    async def list_expenses(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
    ) -> list[Expense]:
        async with self._lock:
            matches = [
                expense.model_copy(deep=True)
                for expense in self._rows.values()
                if expense.user_id == user_id
                and start_date <= expense.date <= end_date
            ]
        # Stable sort keeps insertion order within a day
        matches.sort(key=lambda e: e.date)
        return matches

    async def create_expense(self, user_id: str, draft: ExpenseDraft) -> UUID:
        expense = Expense(user_id=user_id, **draft.model_dump())
        async with self._lock:
            self._rows[expense.id] = expense
        return expense.id

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        async with self._lock:
            row = self._rows.get(expense_id)
            return row.model_copy(deep=True) if row else None

    async def update_expense(self, expense_id: UUID, patch: ExpensePatch) -> None:
        async with self._lock:
            row = self._rows.get(expense_id)
            if row is None:
                raise NotFoundError(f"Expense not found: {expense_id}")
            self._rows[expense_id] = row.model_copy(update=patch.changes())

    async def delete_expense(self, expense_id: UUID) -> None:
        async with self._lock:
            self._rows.pop(expense_id, None)

    async def delete_expenses(self, expense_ids: list[UUID]) -> int:
        async with self._lock:
            removed = 0
            for expense_id in expense_ids:
                if self._rows.pop(expense_id, None) is not None:
                    removed += 1
            return removed

    async def get_by_source(self, user_id: str, source_id: str) -> Optional[Expense]:
        async with self._lock:
            for expense in self._rows.values():
                if expense.user_id == user_id and expense.source_id == source_id:
                    return expense.model_copy(deep=True)
        return None

    async def get_by_category(self, user_id: str, category_id: str) -> Optional[Expense]:
        async with self._lock:
            for expense in self._rows.values():
                if expense.user_id == user_id and expense.category_id == category_id:
                    return expense.model_copy(deep=True)
        return None


class InMemoryBudgetStorage(BudgetStorageInterface):
    """
    Budget rows in a list.

    A list rather than a dict keyed by period, because legacy
    per-category rows share a period with the overall row.
    """

    def __init__(self, rows: Optional[list[Budget]] = None):
        self._rows: list[Budget] = list(rows or [])
        self._lock = asyncio.Lock()

    def _find(self, user_id: str, month: int, year: int) -> Optional[int]:
        for idx, row in enumerate(self._rows):
            if (
                row.user_id == user_id
                and row.month == month
                and row.year == year
                and not row.is_legacy
            ):
                return idx
        return None

    async def get_budget(
        self,
        user_id: str,
        month: int,
        year: int,
    ) -> Optional[Budget]:
        async with self._lock:
            idx = self._find(user_id, month, year)
            return self._rows[idx].model_copy() if idx is not None else None

    async def update_budget(
        self,
        user_id: str,
        amount: Decimal,
        month: int,
        year: int,
    ) -> None:
        async with self._lock:
            idx = self._find(user_id, month, year)
            if idx is not None:
                self._rows[idx] = self._rows[idx].model_copy(update={"amount": amount})
            else:
                self._rows.append(
                    Budget(user_id=user_id, month=month, year=year, amount=amount)
                )

    async def clear_legacy_budgets(self) -> int:
        async with self._lock:
            kept = [row for row in self._rows if not row.is_legacy]
            removed = len(self._rows) - len(kept)
            self._rows = kept
            return removed


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_user(
        self,
        user_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.user_id == user_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events
