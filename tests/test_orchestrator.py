"""
Integration tests for the flows, wired to the in-memory backend.
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from spendfree.config import get_settings
from spendfree.consistency import TaxonomyItemInUseError
from spendfree.models.audit import AuditEventType
from spendfree.models.ledger import (
    Budget,
    CreditCard,
    ExpensePatch,
    PaymentType,
    TaxonomyKind,
    ViewContext,
)
from spendfree.orchestrator import (
    AppComponents,
    BudgetFlow,
    ExpenseFlow,
    SettingsFlow,
    create_app_components,
)
from spendfree.services.storage import (
    DuplicateError,
    InMemoryBudgetStorage,
    NotFoundError,
)
from spendfree.validation import ExpenseValidator, ReferenceValidationError

from conftest import BANKS, CARDS, OTHER_USER, USER


MARCH = ViewContext(month=3, year=2025)


@pytest.fixture
def settings_flow(settings_storage, guard, locks, audit_logger, app_settings):
    return SettingsFlow(
        settings_storage,
        guard,
        validator=ExpenseValidator(app_settings),
        locks=locks,
        audit_logger=audit_logger,
        app_settings=app_settings,
    )


@pytest.fixture
def expense_flow(expense_storage, settings_storage, locks, audit_logger, app_settings):
    return ExpenseFlow(
        expense_storage,
        settings_storage,
        validator=ExpenseValidator(app_settings),
        locks=locks,
        audit_logger=audit_logger,
    )


@pytest.fixture
def strict_expense_flow(expense_storage, settings_storage, locks, audit_logger, strict_settings):
    return ExpenseFlow(
        expense_storage,
        settings_storage,
        validator=ExpenseValidator(strict_settings),
        locks=locks,
        audit_logger=audit_logger,
    )


@pytest.fixture
def budget_flow(budget_storage, audit_logger):
    return BudgetFlow(budget_storage, audit_logger=audit_logger)


async def event_types(audit_storage, user_id=USER):
    return [e.event_type for e in await audit_storage.get_events_by_user(user_id)]


class TestSettingsFlow:
    """Onboarding and taxonomy edits."""

    @pytest.mark.asyncio
    async def test_onboarding_uses_default_categories(
        self, settings_flow, settings_storage, audit_storage
    ):
        """Test onboarding without categories falls back to the defaults."""
        settings, result = await settings_flow.complete_onboarding(USER, ["HDFC"], [])

        assert settings.categories == [
            "Food", "Shopping", "Entertainment", "Travel", "Cabs", "Grocery"
        ]
        assert result.is_valid
        stored = await settings_storage.get_settings(USER)
        assert stored.banks == ["HDFC"]
        assert AuditEventType.ONBOARDING_COMPLETED in await event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_onboarding_keeps_given_categories(self, settings_flow):
        """Test supplied categories win over the defaults."""
        settings, _ = await settings_flow.complete_onboarding(USER, [], [], ["Rent"])
        assert settings.categories == ["Rent"]

    @pytest.mark.asyncio
    async def test_update_settings_strict_rejects_card_drift(
        self, settings_storage, guard, strict_settings
    ):
        """Test a full write with a card on a missing bank is refused in strict mode."""
        flow = SettingsFlow(
            settings_storage, guard, app_settings=strict_settings,
        )
        with pytest.raises(ReferenceValidationError):
            await flow.update_settings(
                USER, ["ICICI"], [CreditCard(name="Regalia", bank="HDFC")], ["Food"]
            )
        assert await settings_storage.get_settings(USER) is None

    @pytest.mark.asyncio
    async def test_add_items(self, settings_flow, settings_storage, onboard, audit_storage):
        """Test adding a bank, card and category appends to the stored lists."""
        await onboard()
        await settings_flow.add_bank(USER, "SBI")
        await settings_flow.add_card(USER, CreditCard(name="SimplyClick", bank="SBI"))
        await settings_flow.add_category(USER, " Rent ")

        stored = await settings_storage.get_settings(USER)
        assert stored.banks == BANKS + ["SBI"]
        assert stored.credit_cards[-1].name == "SimplyClick"
        assert stored.categories[-1] == "Rent"
        added = [
            t for t in await event_types(audit_storage)
            if t == AuditEventType.TAXONOMY_ITEM_ADDED
        ]
        assert len(added) == 3

    @pytest.mark.asyncio
    async def test_add_to_new_user_creates_settings(self, settings_flow, settings_storage):
        """Test adding an item for a user with no row starts an empty taxonomy."""
        await settings_flow.add_category(USER, "Food")
        stored = await settings_storage.get_settings(USER)
        assert stored.categories == ["Food"]
        assert stored.banks == []

    @pytest.mark.asyncio
    async def test_duplicates_rejected(self, settings_flow, onboard):
        """Test adding an existing item raises DuplicateError."""
        await onboard()
        with pytest.raises(DuplicateError):
            await settings_flow.add_bank(USER, "HDFC")
        with pytest.raises(DuplicateError):
            await settings_flow.add_card(USER, CreditCard(name="Regalia", bank="ICICI"))
        with pytest.raises(DuplicateError):
            await settings_flow.add_category(USER, "Food")

    @pytest.mark.asyncio
    async def test_add_card_unknown_bank(self, settings_flow, settings_storage, onboard):
        """Test a card on an unknown bank is saved with a warning by default."""
        await onboard()
        _, result = await settings_flow.add_card(USER, CreditCard(name="X", bank="SBI"))

        assert not result.has_errors
        assert [i.issue_type for i in result.issues] == ["unknown_bank"]
        assert (await settings_storage.get_settings(USER)).has_card("X")

    @pytest.mark.asyncio
    async def test_add_card_unknown_bank_strict(
        self, settings_storage, guard, strict_settings, onboard
    ):
        """Test a card on an unknown bank is refused in strict mode."""
        flow = SettingsFlow(settings_storage, guard, app_settings=strict_settings)
        await onboard()
        with pytest.raises(ReferenceValidationError):
            await flow.add_card(USER, CreditCard(name="X", bank="SBI"))
        assert not (await settings_storage.get_settings(USER)).has_card("X")

    @pytest.mark.asyncio
    async def test_remove_goes_through_guard(
        self, settings_flow, expense_storage, onboard, make_draft
    ):
        """Test flow removals are blocked by usage like guard removals."""
        await onboard()
        await expense_storage.create_expense(USER, make_draft(category_id="Travel"))

        assert await settings_flow.check_usage(USER, TaxonomyKind.CATEGORY, "Travel")
        with pytest.raises(TaxonomyItemInUseError):
            await settings_flow.remove_category(USER, "Travel")
        settings = await settings_flow.remove_category(USER, "Grocery")
        assert settings.categories == ["Food", "Travel"]


class TestExpenseCreation:
    """Validated expense inserts."""

    @pytest.mark.asyncio
    async def test_create_expense(self, expense_flow, expense_storage, onboard, make_draft, audit_storage):
        """Test a clean draft is saved and audited."""
        await onboard()
        expense_id, result = await expense_flow.create_expense(USER, make_draft())

        assert result.issues == []
        stored = await expense_storage.get_expense(expense_id)
        assert stored.user_id == USER
        assert await event_types(audit_storage) == [AuditEventType.EXPENSE_CREATED]

    @pytest.mark.asyncio
    async def test_drift_saved_with_warning(
        self, expense_flow, expense_storage, onboard, make_draft, audit_storage
    ):
        """Test an unknown category is saved by default, with a warning event."""
        await onboard()
        expense_id, result = await expense_flow.create_expense(USER, make_draft(category_id="Rent"))

        assert result.warnings
        assert await expense_storage.get_expense(expense_id) is not None
        assert AuditEventType.EXPENSE_VALIDATION_WARNING in await event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_strict_refuses_drift(
        self, strict_expense_flow, expense_storage, onboard, make_draft
    ):
        """Test strict mode refuses an unresolvable reference and writes nothing."""
        await onboard()
        with pytest.raises(ReferenceValidationError):
            await strict_expense_flow.create_expense(USER, make_draft(category_id="Rent"))
        assert await expense_storage.get_by_category(USER, "Rent") is None

    @pytest.mark.asyncio
    async def test_bulk_create_is_all_or_nothing(
        self, strict_expense_flow, expense_storage, onboard, make_draft
    ):
        """Test one refused draft means none of the batch is saved."""
        await onboard()
        with pytest.raises(ReferenceValidationError):
            await strict_expense_flow.create_expenses(USER, [
                make_draft(category_id="Food"),
                make_draft(category_id="Rent"),
            ])
        assert await expense_storage.get_by_category(USER, "Food") is None

    @pytest.mark.asyncio
    async def test_bulk_create(self, expense_flow, onboard, make_draft):
        """Test a batch returns one ID and result per draft."""
        await onboard()
        ids, results = await expense_flow.create_expenses(
            USER, [make_draft(), make_draft(category_id="Travel")]
        )
        assert len(ids) == 2
        assert len(results) == 2
        rows = await expense_flow.list_expenses(USER, MARCH)
        assert [r.id for r in rows] == ids


class TestExpenseListing:
    """Month and range reads."""

    @pytest.mark.asyncio
    async def test_list_by_view_or_range(self, expense_flow, onboard, make_draft):
        """Test a view and an explicit range select the same rows."""
        await onboard()
        await expense_flow.create_expense(USER, make_draft(date=date(2025, 3, 31)))
        await expense_flow.create_expense(USER, make_draft(date=date(2025, 4, 1)))

        by_view = await expense_flow.list_expenses(USER, MARCH)
        by_range = await expense_flow.list_expenses(
            USER, start_date=date(2025, 3, 1), end_date=date(2025, 3, 31)
        )
        assert len(by_view) == 1
        assert [e.id for e in by_view] == [e.id for e in by_range]

    @pytest.mark.asyncio
    async def test_list_needs_view_or_range(self, expense_flow):
        """Test listing without a period is a caller error."""
        with pytest.raises(ValueError):
            await expense_flow.list_expenses(USER, start_date=date(2025, 3, 1))


class TestExpenseUpdate:
    """Patches with ownership checks and source reset."""

    @pytest.mark.asyncio
    async def test_update_fields(self, expense_flow, expense_storage, onboard, make_draft, audit_storage):
        """Test a patch changes only the supplied fields and is audited."""
        await onboard()
        expense_id, _ = await expense_flow.create_expense(USER, make_draft())
        updated, _ = await expense_flow.update_expense(
            USER, expense_id, ExpensePatch(amount=Decimal("75"), description="Dinner")
        )

        assert updated.amount == Decimal("75")
        stored = await expense_storage.get_expense(expense_id)
        assert stored.description == "Dinner"
        assert stored.category_id == "Food"
        assert AuditEventType.EXPENSE_UPDATED in await event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_update_other_users_expense(self, expense_flow, expense_storage, onboard, make_draft):
        """Test another user's expense looks like it doesn't exist."""
        await onboard()
        expense_id = await expense_storage.create_expense(OTHER_USER, make_draft())

        with pytest.raises(NotFoundError):
            await expense_flow.update_expense(USER, expense_id, ExpensePatch(amount=Decimal("1")))
        assert (await expense_storage.get_expense(expense_id)).amount == Decimal("250.00")

    @pytest.mark.asyncio
    async def test_update_missing_expense(self, expense_flow):
        """Test an unknown ID raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await expense_flow.update_expense(USER, uuid4(), ExpensePatch(amount=Decimal("1")))

    @pytest.mark.asyncio
    async def test_switch_to_card_resets_source(self, expense_flow, expense_storage, onboard, make_draft):
        """Test switching to Card without a source picks the first card."""
        await onboard()
        expense_id, _ = await expense_flow.create_expense(USER, make_draft())
        await expense_flow.update_expense(
            USER, expense_id, ExpensePatch(payment_type=PaymentType.CARD)
        )

        stored = await expense_storage.get_expense(expense_id)
        assert stored.payment_type == PaymentType.CARD
        assert stored.source_id == CARDS[0].name

    @pytest.mark.asyncio
    async def test_switch_to_cash_and_back(self, expense_flow, expense_storage, onboard, make_draft):
        """Test Cash resets to 'Cash' and UPI resets to the first bank."""
        await onboard()
        expense_id, _ = await expense_flow.create_expense(
            USER, make_draft(payment_type=PaymentType.CARD, source_id="Amazon Pay")
        )

        await expense_flow.update_expense(USER, expense_id, ExpensePatch(payment_type=PaymentType.CASH))
        assert (await expense_storage.get_expense(expense_id)).source_id == "Cash"

        await expense_flow.update_expense(USER, expense_id, ExpensePatch(payment_type=PaymentType.UPI))
        assert (await expense_storage.get_expense(expense_id)).source_id == BANKS[0]

    @pytest.mark.asyncio
    async def test_explicit_source_kept(self, expense_flow, expense_storage, onboard, make_draft):
        """Test a supplied source is never overridden by the reset."""
        await onboard()
        expense_id, _ = await expense_flow.create_expense(USER, make_draft())
        await expense_flow.update_expense(
            USER, expense_id, ExpensePatch(payment_type=PaymentType.CARD, source_id="Amazon Pay")
        )
        assert (await expense_storage.get_expense(expense_id)).source_id == "Amazon Pay"

    @pytest.mark.asyncio
    async def test_strict_update_refuses_drift(
        self, strict_expense_flow, expense_storage, onboard, make_draft
    ):
        """Test the patched row is validated as a whole before writing."""
        await onboard()
        expense_id, _ = await strict_expense_flow.create_expense(USER, make_draft())

        with pytest.raises(ReferenceValidationError):
            await strict_expense_flow.update_expense(
                USER, expense_id, ExpensePatch(category_id="Rent")
            )
        assert (await expense_storage.get_expense(expense_id)).category_id == "Food"


class TestExpenseDeletion:
    """Deletes with ownership checks."""

    @pytest.mark.asyncio
    async def test_delete_own_expense(self, expense_flow, expense_storage, onboard, make_draft, audit_storage):
        """Test deleting an owned expense removes it and is audited."""
        await onboard()
        expense_id, _ = await expense_flow.create_expense(USER, make_draft())

        assert await expense_flow.delete_expense(USER, expense_id) is True
        assert await expense_storage.get_expense(expense_id) is None
        assert AuditEventType.EXPENSE_DELETED in await event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_delete_other_users_expense_ignored(self, expense_flow, expense_storage, make_draft):
        """Test another user's expense is left alone."""
        expense_id = await expense_storage.create_expense(OTHER_USER, make_draft())

        assert await expense_flow.delete_expense(USER, expense_id) is False
        assert await expense_storage.get_expense(expense_id) is not None

    @pytest.mark.asyncio
    async def test_delete_many(self, expense_flow, expense_storage, onboard, make_draft):
        """Test bulk delete counts only owned, existing rows."""
        await onboard()
        ids, _ = await expense_flow.create_expenses(USER, [make_draft(), make_draft()])
        foreign = await expense_storage.create_expense(OTHER_USER, make_draft())

        removed = await expense_flow.delete_expenses(USER, ids + [foreign, uuid4()])
        assert removed == 2
        assert await expense_storage.get_expense(foreign) is not None


class TestBudgetFlow:
    """Monthly budgets."""

    @pytest.mark.asyncio
    async def test_set_and_get_budget(self, budget_flow, audit_storage):
        """Test the budget is stored for the viewed month."""
        await budget_flow.set_budget(USER, Decimal("20000"), MARCH)
        await budget_flow.set_budget(USER, Decimal("25000"), MARCH)

        budget = await budget_flow.get_budget(USER, MARCH)
        assert budget.amount == Decimal("25000")
        assert await budget_flow.get_budget(USER, MARCH.next()) is None
        assert (await event_types(audit_storage)).count(AuditEventType.BUDGET_SET) == 2

    @pytest.mark.asyncio
    async def test_negative_budget_rejected(self, budget_flow):
        """Test a negative amount is refused before any write."""
        with pytest.raises(ValueError):
            await budget_flow.set_budget(USER, Decimal("-1"), MARCH)
        assert await budget_flow.get_budget(USER, MARCH) is None

    @pytest.mark.asyncio
    async def test_clear_legacy_budgets(self, audit_logger):
        """Test the purge removes per-category rows and reports the count."""
        storage = InMemoryBudgetStorage([
            Budget(user_id=USER, month=3, year=2025, amount=Decimal("100"), category_id="Food"),
            Budget(user_id=USER, month=3, year=2025, amount=Decimal("5000")),
        ])
        flow = BudgetFlow(storage, audit_logger=audit_logger)

        assert await flow.clear_legacy_budgets() == 1
        assert (await flow.get_budget(USER, MARCH)).amount == Decimal("5000")


class TestAppComponents:
    """The component factory."""

    def test_memory_backend(self):
        """Test the in-memory wiring produces every component."""
        components = create_app_components(backend="memory")

        assert isinstance(components, AppComponents)
        assert components.sheets_client is None
        assert isinstance(components.settings_flow, SettingsFlow)
        assert isinstance(components.expense_flow, ExpenseFlow)
        assert isinstance(components.budget_flow, BudgetFlow)

    def test_unconfigured_sheets_falls_back_to_memory(self, monkeypatch):
        """Test missing Google Sheets settings degrade to the in-memory backend."""
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        get_settings.cache_clear()

        components = create_app_components(backend="google_sheets")
        assert components.sheets_client is None

    @pytest.mark.asyncio
    async def test_components_share_locks_and_storage(self, make_draft):
        """Test the guard sees expenses written through the expense flow."""
        components = create_app_components(backend="memory")
        await components.settings_flow.complete_onboarding(USER, ["HDFC"], [], ["Food"])
        await components.expense_flow.create_expense(USER, make_draft())

        with pytest.raises(TaxonomyItemInUseError):
            await components.settings_flow.remove_category(USER, "Food")
        summary = await components.reports.monthly_summary(USER, MARCH)
        assert summary.transaction_count == 1
