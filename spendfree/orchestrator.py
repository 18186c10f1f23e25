"""
Main Orchestrator for SpendFree

This module ties together all the components and defines the
end-to-end flows for:
1. Settings (onboarding → add items → guarded removal)
2. Expenses (draft → validate → save, patch, delete)
3. Budgets (set and read the monthly target, legacy purge)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Taxonomy removals go through the Consistency Guard, never straight to storage
- Expense writes are validated against the owner's settings first
- A user can only touch their own expenses
- Every mutation is audited

The stores underneath are deliberately dumb; the rules live here
and in the guard.
"""

from decimal import Decimal
from datetime import date
from typing import NamedTuple, Optional
from uuid import UUID

import structlog

from spendfree.analytics import ReportBuilder
from spendfree.audit import AuditLogger, configure_logging, create_correlation_id
from spendfree.config import AppSettings, get_settings
from spendfree.consistency import ConsistencyGuard, UserLockRegistry
from spendfree.models.ledger import (
    CASH_SOURCE,
    Budget,
    CreditCard,
    Expense,
    ExpenseDraft,
    ExpensePatch,
    PaymentType,
    TaxonomyKind,
    UserSettings,
    ValidationResult,
    ViewContext,
)
from spendfree.services.storage import (
    BudgetStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    GoogleSheetsSettingsStorage,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    InMemorySettingsStorage,
    NotFoundError,
    SettingsStorageInterface,
    StorageError,
)
from spendfree.validation import ExpenseValidator, ReferenceValidationError


logger = structlog.get_logger("spendfree.orchestrator")


def _issue_dicts(result: ValidationResult) -> list[dict]:
    return [
        {"field": i.field, "type": i.issue_type, "message": i.message}
        for i in result.issues
    ]


class SettingsFlow:
    """
    Orchestrates edits to a user's taxonomy.

    Flow:
    1. Onboarding → first full write of banks, cards, categories
    2. Add → append one item, duplicates rejected
    3. Remove → delegated to the Consistency Guard

    Adds take the same per-user lock as removals, so a concurrent add
    and remove cannot overwrite each other's list.
    """

    def __init__(
        self,
        settings_storage: SettingsStorageInterface,
        guard: ConsistencyGuard,
        validator: Optional[ExpenseValidator] = None,
        locks: Optional[UserLockRegistry] = None,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        self._settings = settings_storage
        self._guard = guard
        self._app_settings = app_settings or get_settings().app
        self._validator = validator or ExpenseValidator(self._app_settings)
        self._locks = locks or UserLockRegistry()
        self._audit_logger = audit_logger

    async def get_settings(self, user_id: str) -> Optional[UserSettings]:
        """The user's taxonomy, None if they haven't onboarded."""
        return await self._settings.get_settings(user_id)

    async def update_settings(
        self,
        user_id: str,
        banks: list[str],
        credit_cards: list[CreditCard],
        categories: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[UserSettings, ValidationResult]:
        """
        Replace the whole taxonomy.

        This bypasses the guard: it is the onboarding and bulk-edit path,
        and the caller is trusted to keep referenced items.

        Returns:
            (settings_as_written, validation_result)

        Raises:
            ReferenceValidationError: Strict mode and a card names a missing bank
        """
        return await self._write_all(
            user_id, banks, credit_cards, categories,
            onboarding=False, correlation_id=correlation_id,
        )

    async def complete_onboarding(
        self,
        user_id: str,
        banks: list[str],
        credit_cards: list[CreditCard],
        categories: Optional[list[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[UserSettings, ValidationResult]:
        """
        First settings write for a new user.

        Falls back to the configured default categories when none are given.
        """
        if not categories:
            categories = self._app_settings.default_categories_list
        return await self._write_all(
            user_id, banks, credit_cards, categories,
            onboarding=True, correlation_id=correlation_id,
        )

    async def _write_all(
        self,
        user_id: str,
        banks: list[str],
        credit_cards: list[CreditCard],
        categories: list[str],
        onboarding: bool,
        correlation_id: Optional[UUID],
    ) -> tuple[UserSettings, ValidationResult]:
        correlation_id = correlation_id or create_correlation_id()

        result = self._validator.validate_settings(banks, credit_cards, categories)
        if result.has_errors:
            raise ReferenceValidationError(result)

        async with self._locks.hold(user_id):
            await self._store(user_id, banks, credit_cards, categories, correlation_id)

        if self._audit_logger:
            if result.issues:
                await self._audit_logger.log_validation_warning(
                    user_id=user_id,
                    issues=_issue_dicts(result),
                    correlation_id=correlation_id,
                )
            await self._audit_logger.log_settings_updated(
                user_id=user_id,
                banks=len(banks),
                cards=len(credit_cards),
                categories=len(categories),
                onboarding=onboarding,
                correlation_id=correlation_id,
            )

        settings = UserSettings(
            user_id=user_id,
            banks=banks,
            credit_cards=credit_cards,
            categories=categories,
        )
        return settings, result

    async def _store(
        self,
        user_id: str,
        banks: list[str],
        credit_cards: list[CreditCard],
        categories: list[str],
        correlation_id: UUID,
    ) -> None:
        try:
            await self._settings.update_settings(user_id, banks, credit_cards, categories)
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    operation="update_settings",
                    error_message=str(e),
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
            raise

    async def _current(self, user_id: str) -> UserSettings:
        # Adding to a user without a settings row starts from an empty taxonomy
        current = await self._settings.get_settings(user_id)
        return current or UserSettings(user_id=user_id)

    async def add_bank(
        self,
        user_id: str,
        bank: str,
        correlation_id: Optional[UUID] = None,
    ) -> UserSettings:
        """
        Append a bank.

        Raises:
            DuplicateError: If the bank already exists
        """
        bank = bank.strip()
        correlation_id = correlation_id or create_correlation_id()
        async with self._locks.hold(user_id):
            current = await self._current(user_id)
            if current.has_bank(bank):
                raise DuplicateError(f"Bank already exists: {bank}")
            current.banks.append(bank)
            await self._store(
                user_id, current.banks, current.credit_cards, current.categories, correlation_id
            )
        await self._added(user_id, TaxonomyKind.BANK, bank, correlation_id)
        return current

    async def add_card(
        self,
        user_id: str,
        card: CreditCard,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[UserSettings, ValidationResult]:
        """
        Append a card.

        The card's bank is checked against the current banks; a miss is
        a warning, or a ReferenceValidationError in strict mode.

        Raises:
            DuplicateError: If a card with the same name exists
            ReferenceValidationError: Strict mode and the bank doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._locks.hold(user_id):
            current = await self._current(user_id)
            if current.has_card(card.name):
                raise DuplicateError(f"Card already exists: {card.name}")
            result = self._validator.validate_settings(
                list(dict.fromkeys(current.banks)), [card], []
            )
            if result.has_errors:
                raise ReferenceValidationError(result)
            current.credit_cards.append(card)
            await self._store(
                user_id, current.banks, current.credit_cards, current.categories, correlation_id
            )
        if self._audit_logger and result.issues:
            await self._audit_logger.log_validation_warning(
                user_id=user_id,
                issues=_issue_dicts(result),
                correlation_id=correlation_id,
            )
        await self._added(user_id, TaxonomyKind.CARD, card.name, correlation_id)
        return current, result

    async def add_category(
        self,
        user_id: str,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> UserSettings:
        """
        Append a category.

        Raises:
            DuplicateError: If the category already exists
        """
        category = category.strip()
        correlation_id = correlation_id or create_correlation_id()
        async with self._locks.hold(user_id):
            current = await self._current(user_id)
            if current.has_category(category):
                raise DuplicateError(f"Category already exists: {category}")
            current.categories.append(category)
            await self._store(
                user_id, current.banks, current.credit_cards, current.categories, correlation_id
            )
        await self._added(user_id, TaxonomyKind.CATEGORY, category, correlation_id)
        return current

    async def _added(
        self,
        user_id: str,
        kind: TaxonomyKind,
        identifier: str,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_item_added(
                user_id=user_id,
                kind=kind.value,
                identifier=identifier,
                correlation_id=correlation_id,
            )

    async def remove_bank(self, user_id: str, bank: str) -> UserSettings:
        return await self._guard.remove_bank(user_id, bank, create_correlation_id())

    async def remove_card(self, user_id: str, card_name: str) -> UserSettings:
        return await self._guard.remove_card(user_id, card_name, create_correlation_id())

    async def remove_category(self, user_id: str, category: str) -> UserSettings:
        return await self._guard.remove_category(user_id, category, create_correlation_id())

    async def check_usage(self, user_id: str, kind: TaxonomyKind, identifier: str) -> bool:
        """Pre-check for the UI: True if deleting the item would be refused."""
        return await self._guard.check_usage(user_id, kind, identifier)


class ExpenseFlow:
    """
    Orchestrates ledger writes.

    Flow:
    1. Draft → validate against the owner's settings
    2. Errors (strict mode only) → refuse with ReferenceValidationError
    3. Warnings → audit, then save anyway
    4. Save → under the user's lock, so a guarded removal can't slip in
       between the validation and the insert

    Updates and deletes check ownership first. The stores don't.
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        settings_storage: SettingsStorageInterface,
        validator: Optional[ExpenseValidator] = None,
        locks: Optional[UserLockRegistry] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._expenses = expense_storage
        self._settings = settings_storage
        self._validator = validator or ExpenseValidator()
        self._locks = locks or UserLockRegistry()
        self._audit_logger = audit_logger

    async def list_expenses(
        self,
        user_id: str,
        view: Optional[ViewContext] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[Expense]:
        """
        List expenses for a month or an explicit inclusive range.

        Raises:
            ValueError: If neither a view nor both dates are given
        """
        if view is not None:
            start_date, end_date = view.start_date, view.end_date
        elif start_date is None or end_date is None:
            raise ValueError("Pass a view or both start_date and end_date")
        return await self._expenses.list_expenses(user_id, start_date, end_date)

    async def _validate(
        self,
        user_id: str,
        draft: ExpenseDraft,
        settings: Optional[UserSettings],
        correlation_id: UUID,
    ) -> ValidationResult:
        result = self._validator.validate(draft, settings)
        if result.has_errors:
            raise ReferenceValidationError(result)
        if self._audit_logger and result.issues:
            await self._audit_logger.log_validation_warning(
                user_id=user_id,
                issues=_issue_dicts(result),
                correlation_id=correlation_id,
            )
        return result

    async def _storage_failed(
        self,
        operation: str,
        error: StorageError,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(error),
                user_id=user_id,
                correlation_id=correlation_id,
            )

    async def create_expense(
        self,
        user_id: str,
        draft: ExpenseDraft,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[UUID, ValidationResult]:
        """
        Validate and insert one expense.

        Returns:
            (expense_id, validation_result)
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._locks.hold(user_id):
            settings = await self._settings.get_settings(user_id)
            result = await self._validate(user_id, draft, settings, correlation_id)
            try:
                expense_id = await self._expenses.create_expense(user_id, draft)
            except StorageError as e:
                await self._storage_failed("create_expense", e, user_id, correlation_id)
                raise

        if self._audit_logger:
            await self._audit_logger.log_expense_created(
                user_id=user_id,
                expense_id=expense_id,
                amount=draft.amount,
                transaction_type=draft.transaction_type.value,
                correlation_id=correlation_id,
            )
        return expense_id, result

    async def create_expenses(
        self,
        user_id: str,
        drafts: list[ExpenseDraft],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[list[UUID], list[ValidationResult]]:
        """
        Validate and insert several expenses (bulk ledger entry).

        All drafts are validated before anything is written; one refused
        draft means none are saved.
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._locks.hold(user_id):
            settings = await self._settings.get_settings(user_id)
            results = [
                await self._validate(user_id, draft, settings, correlation_id)
                for draft in drafts
            ]
            try:
                expense_ids = await self._expenses.create_expenses(user_id, drafts)
            except StorageError as e:
                await self._storage_failed("create_expenses", e, user_id, correlation_id)
                raise

        if self._audit_logger:
            for expense_id, draft in zip(expense_ids, drafts):
                await self._audit_logger.log_expense_created(
                    user_id=user_id,
                    expense_id=expense_id,
                    amount=draft.amount,
                    transaction_type=draft.transaction_type.value,
                    correlation_id=correlation_id,
                )
        return expense_ids, results

    async def _owned(self, user_id: str, expense_id: UUID) -> Optional[Expense]:
        """The expense if it exists and belongs to user_id."""
        expense = await self._expenses.get_expense(expense_id)
        if expense is None or expense.user_id != user_id:
            return None
        return expense

    @staticmethod
    def _reset_source(
        expense: Expense,
        patch: ExpensePatch,
        settings: Optional[UserSettings],
    ) -> ExpensePatch:
        """
        Pick a source for a payment type change that didn't supply one.

        The first card for Card, the first bank for UPI, "Cash" for Cash.
        Left alone when the type doesn't change or nothing legal exists.
        """
        changes = patch.changes()
        new_type = changes.get("payment_type")
        if new_type is None or "source_id" in changes or new_type == expense.payment_type:
            return patch

        if settings is not None:
            sources = settings.sources_for(new_type)
        elif new_type == PaymentType.CASH:
            sources = [CASH_SOURCE]
        else:
            sources = []

        if not sources:
            return patch
        return ExpensePatch(**changes, source_id=sources[0])

    async def update_expense(
        self,
        user_id: str,
        expense_id: UUID,
        patch: ExpensePatch,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Expense, ValidationResult]:
        """
        Patch one of the user's expenses.

        The patched row is validated as a whole before it is written.

        Returns:
            (updated_expense, validation_result)

        Raises:
            NotFoundError: If the expense doesn't exist or isn't the user's
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._locks.hold(user_id):
            expense = await self._owned(user_id, expense_id)
            if expense is None:
                raise NotFoundError(f"Expense not found: {expense_id}")

            settings = await self._settings.get_settings(user_id)
            patch = self._reset_source(expense, patch, settings)
            updated = expense.model_copy(update=patch.changes())
            draft = ExpenseDraft(**updated.model_dump(include=set(ExpenseDraft.model_fields)))
            result = await self._validate(user_id, draft, settings, correlation_id)

            if patch.is_empty:
                return expense, result

            try:
                await self._expenses.update_expense(expense_id, patch)
            except StorageError as e:
                await self._storage_failed("update_expense", e, user_id, correlation_id)
                raise

        if self._audit_logger:
            await self._audit_logger.log_expense_updated(
                user_id=user_id,
                expense_id=expense_id,
                fields=sorted(patch.model_fields_set),
                correlation_id=correlation_id,
            )
        return updated, result

    async def delete_expense(
        self,
        user_id: str,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete one of the user's expenses.

        IDs that don't exist or belong to someone else are ignored.

        Returns:
            True if a row was removed
        """
        return await self.delete_expenses(user_id, [expense_id], correlation_id) == 1

    async def delete_expenses(
        self,
        user_id: str,
        expense_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete several of the user's expenses.

        Returns:
            Number of rows removed
        """
        correlation_id = correlation_id or create_correlation_id()

        owned = []
        for expense_id in dict.fromkeys(expense_ids):
            if await self._owned(user_id, expense_id) is not None:
                owned.append(expense_id)
        if not owned:
            return 0

        try:
            removed = await self._expenses.delete_expenses(owned)
        except StorageError as e:
            await self._storage_failed("delete_expenses", e, user_id, correlation_id)
            raise

        if self._audit_logger:
            for expense_id in owned:
                await self._audit_logger.log_expense_deleted(
                    user_id=user_id,
                    expense_id=expense_id,
                    correlation_id=correlation_id,
                )
        return removed

    async def get_by_source(self, user_id: str, source_id: str) -> Optional[Expense]:
        return await self._expenses.get_by_source(user_id, source_id)

    async def get_by_category(self, user_id: str, category_id: str) -> Optional[Expense]:
        return await self._expenses.get_by_category(user_id, category_id)


class BudgetFlow:
    """Monthly budget reads and writes for the month the caller is viewing."""

    def __init__(
        self,
        budget_storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._budgets = budget_storage
        self._audit_logger = audit_logger

    async def get_budget(self, user_id: str, view: ViewContext) -> Optional[Budget]:
        return await self._budgets.get_budget(user_id, view.month, view.year)

    async def set_budget(
        self,
        user_id: str,
        amount: Decimal,
        view: ViewContext,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Upsert the budget for the viewed month.

        Raises:
            ValueError: If amount is negative
        """
        budget = Budget(user_id=user_id, month=view.month, year=view.year, amount=amount)
        await self._budgets.update_budget(user_id, budget.amount, view.month, view.year)

        if self._audit_logger:
            await self._audit_logger.log_budget_set(
                user_id=user_id,
                month=view.month,
                year=view.year,
                amount=budget.amount,
                correlation_id=correlation_id,
            )
        return budget

    async def clear_legacy_budgets(self) -> int:
        """One-off migration: drop rows from the per-category budget schema."""
        removed = await self._budgets.clear_legacy_budgets()
        if self._audit_logger:
            await self._audit_logger.log_legacy_budgets_purged(removed=removed)
        return removed


class AppComponents(NamedTuple):
    """Everything the presentation layer needs, wired to one backend."""
    settings_flow: SettingsFlow
    expense_flow: ExpenseFlow
    budget_flow: BudgetFlow
    reports: ReportBuilder
    guard: ConsistencyGuard
    audit_logger: AuditLogger
    sheets_client: Optional[GoogleSheetsClient]


def create_app_components(
    backend: Optional[str] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        backend: "memory" or "google_sheets". Defaults to the configured
                 storage_backend. If Google Sheets can't be set up the
                 in-memory backend is used instead.

    Returns:
        AppComponents bundle
    """
    app_settings = get_settings().app
    configure_logging(app_settings.log_level)
    backend = backend or app_settings.storage_backend

    sheets_client = None
    if backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            settings_storage = GoogleSheetsSettingsStorage(sheets_client)
            expense_storage = GoogleSheetsExpenseStorage(sheets_client)
            budget_storage = GoogleSheetsBudgetStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", backend=backend, error=str(e))
            sheets_client = None
            backend = "memory"

    if backend != "google_sheets":
        settings_storage = InMemorySettingsStorage()
        expense_storage = InMemoryExpenseStorage()
        budget_storage = InMemoryBudgetStorage()
        audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)
    locks = UserLockRegistry()
    validator = ExpenseValidator(app_settings)
    guard = ConsistencyGuard(
        settings_storage,
        expense_storage,
        locks=locks,
        verify_cascaded_cards=app_settings.verify_cascaded_cards,
        audit_logger=audit_logger,
    )

    return AppComponents(
        settings_flow=SettingsFlow(
            settings_storage,
            guard,
            validator=validator,
            locks=locks,
            audit_logger=audit_logger,
            app_settings=app_settings,
        ),
        expense_flow=ExpenseFlow(
            expense_storage,
            settings_storage,
            validator=validator,
            locks=locks,
            audit_logger=audit_logger,
        ),
        budget_flow=BudgetFlow(budget_storage, audit_logger=audit_logger),
        reports=ReportBuilder(
            expense_storage,
            budget_storage=budget_storage,
            settings_storage=settings_storage,
            currency=app_settings.currency,
        ),
        guard=guard,
        audit_logger=audit_logger,
        sheets_client=sheets_client,
    )
