"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The in-memory backend is the default; Google Sheets is the hosted option.
"""

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
from spendfree.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    InMemorySettingsStorage,
)
from spendfree.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    GoogleSheetsSettingsStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "ExpenseStorageInterface",
    "SettingsStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    "InMemoryExpenseStorage",
    "InMemorySettingsStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "GoogleSheetsExpenseStorage",
    "GoogleSheetsSettingsStorage",
]
