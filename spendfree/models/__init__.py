"""
Data Models Package

This package contains all Pydantic models used in SpendFree.
All data flowing through the system must conform to these schemas.
"""

from spendfree.models.ledger import (
    CASH_SOURCE,
    LEGACY_TOTAL_CATEGORY,
    Budget,
    CardType,
    CreditCard,
    Expense,
    ExpenseDraft,
    ExpensePatch,
    PaymentType,
    TaxonomyKind,
    TransactionType,
    UsageKind,
    UserSettings,
    ValidationIssue,
    ValidationResult,
    ViewContext,
)
from spendfree.models.analytics import (
    BudgetProgress,
    CategorySpend,
    DailySpend,
    MonthlySummary,
    PaymentSpend,
    Statement,
    StatementRow,
)
from spendfree.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CASH_SOURCE",
    "LEGACY_TOTAL_CATEGORY",
    "Budget",
    "CardType",
    "CreditCard",
    "Expense",
    "ExpenseDraft",
    "ExpensePatch",
    "PaymentType",
    "TaxonomyKind",
    "TransactionType",
    "UsageKind",
    "UserSettings",
    "ValidationIssue",
    "ValidationResult",
    "ViewContext",
    # Analytics models
    "BudgetProgress",
    "CategorySpend",
    "DailySpend",
    "MonthlySummary",
    "PaymentSpend",
    "Statement",
    "StatementRow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
