"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface per record type.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the consistency rules decoupled from the storage implementation

Every operation is scoped to a single user and is one read-then-write
round-trip. There are no foreign keys: expenses reference taxonomy items
by name, and integrity is the Consistency Guard's job, not the store's.
"""

from abc import ABC, abstractmethod
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
    UsageKind,
    UserSettings,
)
from spendfree.models.audit import AuditEvent


class SettingsStorageInterface(ABC):
    """
    Storage for per-user taxonomy.

    Exactly zero or one row per user.
    """

    @abstractmethod
    async def get_settings(self, user_id: str) -> Optional[UserSettings]:
        """
        Retrieve a user's settings.

        Returns:
            The settings if the user has onboarded, None otherwise

        Raises:
            DuplicateError: If more than one row exists for the user
        """
        pass

    @abstractmethod
    async def update_settings(
        self,
        user_id: str,
        banks: list[str],
        credit_cards: list[CreditCard],
        categories: list[str],
    ) -> None:
        """
        Insert or overwrite a user's settings.

        The three lists REPLACE the stored ones; nothing is merged.
        Callers keep entries by passing them back in.
        """
        pass


class ExpenseStorageInterface(ABC):
    """Storage for ledger rows."""

    @abstractmethod
    async def list_expenses(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
    ) -> list[Expense]:
        """
        List a user's expenses dated within [start_date, end_date].

        Both bounds are inclusive. Rows come back in date order.
        """
        pass

    @abstractmethod
    async def create_expense(self, user_id: str, draft: ExpenseDraft) -> UUID:
        """
        Insert one expense. No dedup, no reference checks.

        Returns:
            The new expense ID
        """
        pass

    async def create_expenses(
        self,
        user_id: str,
        drafts: list[ExpenseDraft],
    ) -> list[UUID]:
        """
        Insert several expenses, preserving order.

        Backends with a cheaper bulk path may override this.
        """
        return [await self.create_expense(user_id, draft) for draft in drafts]

    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        """Retrieve an expense by ID, None if it doesn't exist."""
        pass

    @abstractmethod
    async def update_expense(self, expense_id: UUID, patch: ExpensePatch) -> None:
        """
        Apply a partial update.

        Only the fields set on the patch change. There is NO ownership
        check here; callers must only pass IDs belonging to their user.

        Raises:
            NotFoundError: If the expense doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: UUID) -> None:
        """
        Delete an expense.

        Deleting an ID that doesn't exist is not an error.
        """
        pass

    async def delete_expenses(self, expense_ids: list[UUID]) -> int:
        """
        Delete several expenses.

        Returns:
            Number of rows that existed and were removed
        """
        removed = 0
        for expense_id in expense_ids:
            if await self.get_expense(expense_id) is not None:
                await self.delete_expense(expense_id)
                removed += 1
        return removed

    @abstractmethod
    async def get_by_source(self, user_id: str, source_id: str) -> Optional[Expense]:
        """Return any one of the user's expenses paid from source_id."""
        pass

    @abstractmethod
    async def get_by_category(self, user_id: str, category_id: str) -> Optional[Expense]:
        """Return any one of the user's expenses in category_id."""
        pass

    async def check_usage(
        self,
        user_id: str,
        kind: UsageKind,
        identifier: str,
    ) -> bool:
        """
        Check whether any of the user's expenses references identifier.

        Args:
            kind: SOURCE compares source_id, CATEGORY compares category_id

        Returns:
            True if at least one expense matches
        """
        if kind == UsageKind.SOURCE:
            found = await self.get_by_source(user_id, identifier)
        else:
            found = await self.get_by_category(user_id, identifier)
        return found is not None


class BudgetStorageInterface(ABC):
    """Storage for monthly budgets."""

    @abstractmethod
    async def get_budget(
        self,
        user_id: str,
        month: int,
        year: int,
    ) -> Optional[Budget]:
        """
        Retrieve the budget for a period.

        Legacy per-category rows are never returned.
        """
        pass

    @abstractmethod
    async def update_budget(
        self,
        user_id: str,
        amount: Decimal,
        month: int,
        year: int,
    ) -> None:
        """Upsert the budget for (user_id, month, year)."""
        pass

    @abstractmethod
    async def clear_legacy_budgets(self) -> int:
        """
        Purge rows written by the old per-category budget schema.

        Rows whose category_id is set to anything but "total" are deleted.

        Returns:
            Number of rows removed
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_user(
        self,
        user_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent events for a user.

        Returns:
            List of events (newest first)
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one bulk import).

        Returns:
            List of related events in chronological order
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
