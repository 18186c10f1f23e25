"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a hosted storage backend because:
1. Users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions: each operation reads the sheet, then writes, so two
  writers to the same row race and the last one wins
- Limited query capabilities (we filter in Python)
- Only upserts are retried. An append that times out may still have
  landed, so retrying it could write the row twice.

The implementation follows the abstract interfaces, so we can swap
to PostgreSQL/SQLite later without changing business logic.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from spendfree.config import GoogleSheetsSettings, get_settings
from spendfree.models.ledger import (
    Budget,
    CreditCard,
    Expense,
    ExpenseDraft,
    ExpensePatch,
    PaymentType,
    TransactionType,
    UserSettings,
)
from spendfree.models.audit import AuditEvent, AuditEventType, AuditSeverity
from spendfree.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    SettingsStorageInterface,
    StorageError,
)


# Column mappings for UserSettings sheet
SETTINGS_COLUMNS = [
    "user_id",
    "banks_json",
    "credit_cards_json",
    "categories_json",
    "updated_at",
]

# Column mappings for Expenses sheet
EXPENSE_COLUMNS = [
    "id",
    "user_id",
    "date",
    "category_id",
    "description",
    "amount",
    "payment_type",
    "source_id",
    "transaction_type",
    "created_at",
]

# Column mappings for Budgets sheet
BUDGET_COLUMNS = [
    "user_id",
    "month",
    "year",
    "amount",
    "category_id",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

_write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type(NotFoundError),
    reraise=True,
)


def _safe_getter(row: list):
    """Index into a sheet row, tolerating short rows and blank cells."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


def _row_range(row_number: int, width: int) -> str:
    """A1 range covering one full row, e.g. 'A5:J5'."""
    return f"A{row_number}:{chr(ord('A') + width - 1)}{row_number}"


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_settings_sheet(self) -> gspread.Worksheet:
        """Get or create the UserSettings worksheet."""
        return self._get_or_create_sheet(
            self._settings.settings_sheet_name, SETTINGS_COLUMNS
        )

    def get_expenses_sheet(self) -> gspread.Worksheet:
        """Get or create the Expenses worksheet."""
        return self._get_or_create_sheet(
            self._settings.expenses_sheet_name, EXPENSE_COLUMNS, rows=5000
        )

    def get_budgets_sheet(self) -> gspread.Worksheet:
        """Get or create the Budgets worksheet."""
        return self._get_or_create_sheet(
            self._settings.budgets_sheet_name, BUDGET_COLUMNS
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsSettingsStorage(SettingsStorageInterface):
    """
    Google Sheets implementation of settings storage.

    One row per user; the three taxonomy lists are JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _settings_to_row(self, settings: UserSettings) -> list:
        return [
            settings.user_id,
            json.dumps(settings.banks),
            json.dumps([card.model_dump(mode="json") for card in settings.credit_cards]),
            json.dumps(settings.categories),
            settings.updated_at.isoformat(),
        ]

    def _row_to_settings(self, row: list) -> UserSettings:
        safe_get = _safe_getter(row)
        updated_at = safe_get(4)
        return UserSettings(
            user_id=safe_get(0),
            banks=json.loads(safe_get(1, "[]")),
            credit_cards=[CreditCard(**c) for c in json.loads(safe_get(2, "[]"))],
            categories=json.loads(safe_get(3, "[]")),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else datetime.utcnow(),
        )

    def _find_rows(self, all_rows: list, user_id: str) -> list[int]:
        """Sheet row numbers (1-based, header is row 1) holding user_id."""
        return [
            idx
            for idx, row in enumerate(all_rows[1:], start=2)
            if row and row[0] == user_id
        ]

    async def get_settings(self, user_id: str) -> Optional[UserSettings]:
        try:
            sheet = self._client.get_settings_sheet()
            all_rows = sheet.get_all_values()
        except Exception as e:
            raise StorageError(f"Failed to get settings: {e}")

        matches = self._find_rows(all_rows, user_id)
        if len(matches) > 1:
            raise DuplicateError(
                f"{len(matches)} settings rows found for user {user_id}"
            )
        if not matches:
            return None
        return self._row_to_settings(all_rows[matches[0] - 1])

    @_write_retry
    async def update_settings(
        self,
        user_id: str,
        banks: list[str],
        credit_cards: list[CreditCard],
        categories: list[str],
    ) -> None:
        new_row = self._settings_to_row(UserSettings(
            user_id=user_id,
            banks=banks,
            credit_cards=credit_cards,
            categories=categories,
        ))
        try:
            sheet = self._client.get_settings_sheet()
            all_rows = sheet.get_all_values()
            matches = self._find_rows(all_rows, user_id)
            if matches:
                current = self._row_to_settings(all_rows[matches[0] - 1])
                # An identical write leaves the row, timestamp included, as it was
                if current.same_taxonomy(self._row_to_settings(new_row)):
                    return
                sheet.batch_update([{
                    "range": _row_range(matches[0], len(SETTINGS_COLUMNS)),
                    "values": [new_row],
                }], value_input_option="RAW")
            else:
                sheet.append_row(new_row, value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to update settings: {e}")


class GoogleSheetsExpenseStorage(ExpenseStorageInterface):
    """
    Google Sheets implementation of expense storage.

    Expenses are stored as rows in a worksheet with one expense per row.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _expense_to_row(self, expense: Expense) -> list:
        """Convert an Expense to a spreadsheet row."""
        return [
            str(expense.id),
            expense.user_id,
            expense.date.isoformat(),
            expense.category_id,
            expense.description,
            str(expense.amount),
            expense.payment_type.value,
            expense.source_id,
            expense.transaction_type.value,
            expense.created_at.isoformat(),
        ]

    def _row_to_expense(self, row: list) -> Expense:
        """Convert a spreadsheet row to an Expense."""
        safe_get = _safe_getter(row)
        created_at = safe_get(9)
        return Expense(
            id=UUID(safe_get(0)),
            user_id=safe_get(1),
            date=date.fromisoformat(safe_get(2)),
            category_id=safe_get(3),
            description=safe_get(4),
            amount=Decimal(safe_get(5, "0")),
            payment_type=PaymentType(safe_get(6, PaymentType.UPI.value)),
            source_id=safe_get(7),
            transaction_type=TransactionType(safe_get(8, TransactionType.DEBIT.value)),
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.utcnow(),
        )

    def _user_rows(self, user_id: str) -> list[Expense]:
        sheet = self._client.get_expenses_sheet()
        expenses = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0] or len(row) < 2 or row[1] != user_id:
                continue
            expenses.append(self._row_to_expense(row))
        return expenses

    def _find_row(self, all_rows: list, expense_id: UUID) -> Optional[int]:
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == str(expense_id):
                return idx
        return None

    async def list_expenses(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
    ) -> list[Expense]:
        try:
            expenses = [
                e for e in self._user_rows(user_id)
                if start_date <= e.date <= end_date
            ]
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")
        expenses.sort(key=lambda e: e.date)
        return expenses

    async def create_expense(self, user_id: str, draft: ExpenseDraft) -> UUID:
        expense = Expense(user_id=user_id, **draft.model_dump())
        try:
            sheet = self._client.get_expenses_sheet()
            sheet.append_row(self._expense_to_row(expense), value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")
        return expense.id

    async def create_expenses(
        self,
        user_id: str,
        drafts: list[ExpenseDraft],
    ) -> list[UUID]:
        expenses = [Expense(user_id=user_id, **d.model_dump()) for d in drafts]
        if not expenses:
            return []
        try:
            sheet = self._client.get_expenses_sheet()
            sheet.append_rows(
                [self._expense_to_row(e) for e in expenses],
                value_input_option="RAW",
            )
        except Exception as e:
            raise StorageError(f"Failed to save expenses: {e}")
        return [e.id for e in expenses]

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        try:
            all_rows = self._client.get_expenses_sheet().get_all_values()
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")
        idx = self._find_row(all_rows, expense_id)
        return self._row_to_expense(all_rows[idx - 1]) if idx else None

    async def update_expense(self, expense_id: UUID, patch: ExpensePatch) -> None:
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()
            idx = self._find_row(all_rows, expense_id)
            if idx is None:
                raise NotFoundError(f"Expense not found: {expense_id}")

            current = self._row_to_expense(all_rows[idx - 1])
            updated = current.model_copy(update=patch.changes())
            sheet.batch_update([{
                "range": _row_range(idx, len(EXPENSE_COLUMNS)),
                "values": [self._expense_to_row(updated)],
            }], value_input_option="RAW")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expense: {e}")

    async def delete_expense(self, expense_id: UUID) -> None:
        try:
            sheet = self._client.get_expenses_sheet()
            idx = self._find_row(sheet.get_all_values(), expense_id)
            if idx is not None:
                sheet.delete_rows(idx)
        except Exception as e:
            raise StorageError(f"Failed to delete expense: {e}")

    async def delete_expenses(self, expense_ids: list[UUID]) -> int:
        wanted = {str(i) for i in expense_ids}
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()
            targets = [
                idx
                for idx, row in enumerate(all_rows[1:], start=2)
                if row and row[0] in wanted
            ]
            # Bottom-up so earlier row numbers stay valid
            for idx in reversed(targets):
                sheet.delete_rows(idx)
            return len(targets)
        except Exception as e:
            raise StorageError(f"Failed to delete expenses: {e}")

    async def get_by_source(self, user_id: str, source_id: str) -> Optional[Expense]:
        try:
            for expense in self._user_rows(user_id):
                if expense.source_id == source_id:
                    return expense
        except Exception as e:
            raise StorageError(f"Failed to look up expenses by source: {e}")
        return None

    async def get_by_category(self, user_id: str, category_id: str) -> Optional[Expense]:
        try:
            for expense in self._user_rows(user_id):
                if expense.category_id == category_id:
                    return expense
        except Exception as e:
            raise StorageError(f"Failed to look up expenses by category: {e}")
        return None


class GoogleSheetsBudgetStorage(BudgetStorageInterface):
    """Google Sheets implementation of budget storage."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _budget_to_row(self, budget: Budget) -> list:
        return [
            budget.user_id,
            str(budget.month),
            str(budget.year),
            str(budget.amount),
            budget.category_id or "",
        ]

    def _row_to_budget(self, row: list) -> Budget:
        safe_get = _safe_getter(row)
        return Budget(
            user_id=safe_get(0),
            month=int(safe_get(1)),
            year=int(safe_get(2)),
            amount=Decimal(safe_get(3, "0")),
            category_id=safe_get(4) or None,
        )

    def _find_row(
        self,
        all_rows: list,
        user_id: str,
        month: int,
        year: int,
    ) -> Optional[int]:
        for idx, row in enumerate(all_rows[1:], start=2):
            if not row or row[0] != user_id:
                continue
            budget = self._row_to_budget(row)
            if budget.month == month and budget.year == year and not budget.is_legacy:
                return idx
        return None

    async def get_budget(
        self,
        user_id: str,
        month: int,
        year: int,
    ) -> Optional[Budget]:
        try:
            all_rows = self._client.get_budgets_sheet().get_all_values()
        except Exception as e:
            raise StorageError(f"Failed to get budget: {e}")
        idx = self._find_row(all_rows, user_id, month, year)
        return self._row_to_budget(all_rows[idx - 1]) if idx else None

    @_write_retry
    async def update_budget(
        self,
        user_id: str,
        amount: Decimal,
        month: int,
        year: int,
    ) -> None:
        try:
            sheet = self._client.get_budgets_sheet()
            all_rows = sheet.get_all_values()
            idx = self._find_row(all_rows, user_id, month, year)
            if idx is not None:
                budget = self._row_to_budget(all_rows[idx - 1])
                sheet.batch_update([{
                    "range": _row_range(idx, len(BUDGET_COLUMNS)),
                    "values": [self._budget_to_row(budget.model_copy(update={"amount": amount}))],
                }], value_input_option="RAW")
            else:
                row = self._budget_to_row(
                    Budget(user_id=user_id, month=month, year=year, amount=amount)
                )
                sheet.append_row(row, value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to update budget: {e}")

    async def clear_legacy_budgets(self) -> int:
        try:
            sheet = self._client.get_budgets_sheet()
            all_rows = sheet.get_all_values()
            targets = [
                idx
                for idx, row in enumerate(all_rows[1:], start=2)
                if row and self._row_to_budget(row).is_legacy
            ]
            for idx in reversed(targets):
                sheet.delete_rows(idx)
            return len(targets)
        except Exception as e:
            raise StorageError(f"Failed to clear legacy budgets: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            user_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _all_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.get_audit_sheet().get_all_values()[1:]:
            if row and row[0]:
                events.append(self._row_to_event(row))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_user(
        self,
        user_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._all_events() if e.user_id == user_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._all_events()
                if e.correlation_id == correlation_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events
