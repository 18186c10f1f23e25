"""
Shared fixtures.

Everything runs against the in-memory backend; no real Google API calls.
"""

from datetime import date
from decimal import Decimal

import pytest

from spendfree.audit import AuditLogger
from spendfree.config import AppSettings
from spendfree.consistency import ConsistencyGuard, UserLockRegistry
from spendfree.models.ledger import (
    CreditCard,
    ExpenseDraft,
    PaymentType,
    TransactionType,
)
from spendfree.services.storage import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    InMemorySettingsStorage,
)


USER = "user-a"
OTHER_USER = "user-b"

BANKS = ["HDFC", "ICICI"]
CARDS = [
    CreditCard(name="Regalia", bank="HDFC"),
    CreditCard(name="Millennia", bank="HDFC"),
    CreditCard(name="Amazon Pay", bank="ICICI"),
]
CATEGORIES = ["Food", "Travel", "Grocery"]


@pytest.fixture
def app_settings():
    return AppSettings(_env_file=None, strict_references=False, verify_cascaded_cards=True)


@pytest.fixture
def strict_settings():
    return AppSettings(_env_file=None, strict_references=True, verify_cascaded_cards=True)


@pytest.fixture
def settings_storage():
    return InMemorySettingsStorage()


@pytest.fixture
def expense_storage():
    return InMemoryExpenseStorage()


@pytest.fixture
def budget_storage():
    return InMemoryBudgetStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def locks():
    return UserLockRegistry()


@pytest.fixture
def guard(settings_storage, expense_storage, locks, audit_logger):
    return ConsistencyGuard(
        settings_storage,
        expense_storage,
        locks=locks,
        verify_cascaded_cards=True,
        audit_logger=audit_logger,
    )


@pytest.fixture
def make_draft():
    """Factory for valid drafts; override any field by keyword."""
    def _make(**overrides) -> ExpenseDraft:
        fields = dict(
            date=date(2025, 3, 10),
            category_id="Food",
            description="Lunch",
            amount=Decimal("250.00"),
            payment_type=PaymentType.UPI,
            source_id="HDFC",
            transaction_type=TransactionType.DEBIT,
        )
        fields.update(overrides)
        return ExpenseDraft(**fields)
    return _make


@pytest.fixture
def onboard(settings_storage):
    """Write the standard taxonomy for a user."""
    async def _onboard(user_id: str = USER) -> None:
        await settings_storage.update_settings(
            user_id,
            list(BANKS),
            [card.model_copy() for card in CARDS],
            list(CATEGORIES),
        )
    return _onboard
