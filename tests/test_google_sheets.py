"""
Tests for the Google Sheets backend.

A fake worksheet stands in for gspread; no network calls are made.
"""

import re

import pytest
from datetime import date
from decimal import Decimal

from spendfree.models.audit import AuditEventBuilder
from spendfree.models.ledger import (
    CreditCard,
    ExpensePatch,
    PaymentType,
    TransactionType,
    UsageKind,
)
from spendfree.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsExpenseStorage,
    GoogleSheetsSettingsStorage,
    NotFoundError,
    StorageError,
)
from spendfree.services.storage.google_sheets import (
    BUDGET_COLUMNS,
    EXPENSE_COLUMNS,
    SETTINGS_COLUMNS,
    AUDIT_COLUMNS,
)

from conftest import OTHER_USER, USER


class FakeWorksheet:
    """The subset of gspread.Worksheet the backend uses, over a list of rows."""

    def __init__(self, header: list[str]):
        self.rows = [list(header)]
        self.input_options: list[str] = []
        self.append_calls = 0

    def get_all_values(self) -> list[list[str]]:
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None):
        self.append_calls += 1
        self.input_options.append(value_input_option)
        self.rows.append([str(v) for v in row])

    def append_rows(self, rows, value_input_option=None):
        self.append_calls += 1
        self.input_options.append(value_input_option)
        self.rows.extend([str(v) for v in row] for row in rows)

    def batch_update(self, updates, value_input_option=None):
        self.input_options.append(value_input_option)
        for update in updates:
            row_number = int(re.match(r"A(\d+):", update["range"]).group(1))
            self.rows[row_number - 1] = [str(v) for v in update["values"][0]]

    def delete_rows(self, index):
        del self.rows[index - 1]


class FlakyAppendWorksheet(FakeWorksheet):
    """Fails every append after recording the attempt."""

    def append_row(self, row, value_input_option=None):
        self.append_calls += 1
        raise RuntimeError("read timed out")

    def append_rows(self, rows, value_input_option=None):
        self.append_calls += 1
        raise RuntimeError("read timed out")


class FakeSheetsClient:
    """Hands out one fake worksheet per record type."""

    def __init__(self):
        self.settings = FakeWorksheet(SETTINGS_COLUMNS)
        self.expenses = FakeWorksheet(EXPENSE_COLUMNS)
        self.budgets = FakeWorksheet(BUDGET_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_settings_sheet(self):
        return self.settings

    def get_expenses_sheet(self):
        return self.expenses

    def get_budgets_sheet(self):
        return self.budgets

    def get_audit_sheet(self):
        return self.audit


class BrokenSheetsClient:
    def get_expenses_sheet(self):
        raise RuntimeError("quota exceeded")


@pytest.fixture
def client():
    return FakeSheetsClient()


class TestSheetsSettingsStorage:
    """Settings rows with JSON list columns."""

    @pytest.mark.asyncio
    async def test_round_trip_and_upsert(self, client):
        """Test a second write overwrites the user's single row."""
        storage = GoogleSheetsSettingsStorage(client)
        await storage.update_settings(
            USER, ["HDFC"], [CreditCard(name="Regalia", bank="HDFC")], ["Food"]
        )
        await storage.update_settings(
            USER, ["HDFC", "ICICI"], [CreditCard(name="Regalia", bank="HDFC")], ["Food"]
        )

        assert len(client.settings.rows) == 2
        settings = await storage.get_settings(USER)
        assert settings.banks == ["HDFC", "ICICI"]
        assert settings.credit_cards[0].name == "Regalia"
        assert await storage.get_settings(OTHER_USER) is None

    @pytest.mark.asyncio
    async def test_identical_write_leaves_row_untouched(self, client):
        """Test repeating the same taxonomy write returns the same settings."""
        storage = GoogleSheetsSettingsStorage(client)
        cards = [CreditCard(name="Regalia", bank="HDFC")]
        await storage.update_settings(USER, ["HDFC"], cards, ["Food"])
        first = await storage.get_settings(USER)
        await storage.update_settings(USER, ["HDFC"], cards, ["Food"])
        second = await storage.get_settings(USER)

        assert first == second
        assert client.settings.input_options == ["RAW"]

    @pytest.mark.asyncio
    async def test_duplicate_rows_detected(self, client):
        """Test two rows for one user raise DuplicateError."""
        client.settings.append_row([USER, "[]", "[]", "[]", ""])
        client.settings.append_row([USER, "[]", "[]", "[]", ""])

        with pytest.raises(DuplicateError):
            await GoogleSheetsSettingsStorage(client).get_settings(USER)


class TestSheetsExpenseStorage:
    """Expense rows."""

    @pytest.mark.asyncio
    async def test_row_codec(self, client, make_draft):
        """Test every column survives a write and a read."""
        storage = GoogleSheetsExpenseStorage(client)
        expense_id = await storage.create_expense(
            USER,
            make_draft(
                amount=Decimal("12.50"),
                payment_type=PaymentType.CARD,
                source_id="Regalia",
                transaction_type=TransactionType.CREDIT,
                description="Refund",
            ),
        )

        expense = await storage.get_expense(expense_id)
        assert expense.user_id == USER
        assert expense.date == date(2025, 3, 10)
        assert expense.amount == Decimal("12.50")
        assert expense.payment_type == PaymentType.CARD
        assert expense.transaction_type == TransactionType.CREDIT
        assert expense.description == "Refund"

    @pytest.mark.asyncio
    async def test_list_filters_user_and_range(self, client, make_draft):
        """Test listing is scoped and date-bounded."""
        storage = GoogleSheetsExpenseStorage(client)
        await storage.create_expenses(USER, [
            make_draft(date=date(2025, 3, 31)),
            make_draft(date=date(2025, 3, 1)),
            make_draft(date=date(2025, 4, 1)),
        ])
        await storage.create_expense(OTHER_USER, make_draft())

        rows = await storage.list_expenses(USER, date(2025, 3, 1), date(2025, 3, 31))
        assert [r.date for r in rows] == [date(2025, 3, 1), date(2025, 3, 31)]

    @pytest.mark.asyncio
    async def test_update_and_not_found(self, client, make_draft):
        """Test a patch rewrites the row; unknown IDs raise NotFoundError."""
        from uuid import uuid4

        storage = GoogleSheetsExpenseStorage(client)
        expense_id = await storage.create_expense(USER, make_draft())
        await storage.update_expense(expense_id, ExpensePatch(category_id="Travel"))

        assert (await storage.get_expense(expense_id)).category_id == "Travel"
        with pytest.raises(NotFoundError):
            await storage.update_expense(uuid4(), ExpensePatch(category_id="Travel"))

    @pytest.mark.asyncio
    async def test_delete_many_bottom_up(self, client, make_draft):
        """Test batch delete removes exactly the requested rows."""
        storage = GoogleSheetsExpenseStorage(client)
        ids = await storage.create_expenses(
            USER, [make_draft(description=str(i)) for i in range(4)]
        )

        assert await storage.delete_expenses([ids[0], ids[2]]) == 2
        remaining = await storage.list_expenses(USER, date(2025, 1, 1), date(2025, 12, 31))
        assert [r.description for r in remaining] == ["1", "3"]

    @pytest.mark.asyncio
    async def test_check_usage_through_sheet(self, client, make_draft):
        """Test check_usage works through the sheet lookups."""
        storage = GoogleSheetsExpenseStorage(client)
        await storage.create_expense(USER, make_draft(category_id="Travel"))

        assert await storage.check_usage(USER, UsageKind.CATEGORY, "Travel")
        assert await storage.check_usage(USER, UsageKind.SOURCE, "HDFC")
        assert not await storage.check_usage(OTHER_USER, UsageKind.CATEGORY, "Travel")

    @pytest.mark.asyncio
    async def test_read_failure_wrapped(self):
        """Test backend exceptions surface as StorageError."""
        storage = GoogleSheetsExpenseStorage(BrokenSheetsClient())
        with pytest.raises(StorageError, match="quota exceeded"):
            await storage.list_expenses(USER, date(2025, 3, 1), date(2025, 3, 31))

    @pytest.mark.asyncio
    async def test_failed_append_is_not_repeated(self, client, make_draft):
        """Test a failed insert is attempted once, so a late success can't duplicate it."""
        client.expenses = FlakyAppendWorksheet(EXPENSE_COLUMNS)
        storage = GoogleSheetsExpenseStorage(client)

        with pytest.raises(StorageError, match="read timed out"):
            await storage.create_expense(USER, make_draft())
        with pytest.raises(StorageError, match="read timed out"):
            await storage.create_expenses(USER, [make_draft(), make_draft()])
        assert client.expenses.append_calls == 2


class TestSheetsBudgetStorage:
    """Budget rows, including legacy per-category rows."""

    @pytest.mark.asyncio
    async def test_upsert_updates_amount_cell(self, client):
        """Test a second write changes the amount in place."""
        storage = GoogleSheetsBudgetStorage(client)
        await storage.update_budget(USER, Decimal("5000"), 3, 2025)
        await storage.update_budget(USER, Decimal("6000"), 3, 2025)

        assert len(client.budgets.rows) == 2
        assert (await storage.get_budget(USER, 3, 2025)).amount == Decimal("6000")
        assert client.budgets.rows[1] == [USER, "3", "2025", "6000", ""]
        assert client.budgets.input_options == ["RAW", "RAW"]

    @pytest.mark.asyncio
    async def test_legacy_purge(self, client):
        """Test only non-'total' category rows are purged."""
        client.budgets.append_row([USER, "3", "2025", "100", "Food"])
        client.budgets.append_row([USER, "3", "2025", "900", "total"])
        client.budgets.append_row([USER, "4", "2025", "200", "Travel"])
        storage = GoogleSheetsBudgetStorage(client)

        assert (await storage.get_budget(USER, 3, 2025)).amount == Decimal("900")
        assert await storage.clear_legacy_budgets() == 2
        assert [row[4] for row in client.budgets.rows[1:]] == ["total"]


class TestSheetsAuditStorage:
    """Audit rows."""

    @pytest.mark.asyncio
    async def test_append_and_read_back(self, client):
        """Test events round-trip through the audit sheet."""
        storage = GoogleSheetsAuditStorage(client)
        event = AuditEventBuilder.cards_cascaded(USER, "HDFC", ["Regalia"])
        assert await storage.append_event(event) is True

        events = await storage.get_events_by_user(USER)
        assert len(events) == 1
        assert events[0].event_id == event.event_id
        assert events[0].details == {"cards": ["Regalia"]}

    @pytest.mark.asyncio
    async def test_failed_append_is_not_repeated(self, client):
        """Test a failed audit write is attempted once."""
        client.audit = FlakyAppendWorksheet(AUDIT_COLUMNS)
        storage = GoogleSheetsAuditStorage(client)

        with pytest.raises(StorageError):
            await storage.append_event(AuditEventBuilder.item_added(USER, "bank", "HDFC"))
        assert client.audit.append_calls == 1
