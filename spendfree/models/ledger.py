"""
Core Data Models for SpendFree

These models define the strict schemas for all data flowing through the system:
1. UserSettings - the per-user taxonomy (banks, cards, categories)
2. Expense - one ledger row
3. Budget - one monthly spending target per user and period

DESIGN DECISION: References between records are SOFT references.
An expense names its category and source by plain string, exactly as the
user typed them into their settings. Nothing here enforces that those
strings resolve; the Consistency Guard and the validator own that logic.
"""

import calendar
import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# Reserved source for cash payments. Needs no taxonomy entry.
CASH_SOURCE = "Cash"

# Legacy budget rows were keyed per category; this was the overall row.
LEGACY_TOTAL_CATEGORY = "total"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class CardType(str, Enum):
    """Kind of card a user registers against a bank."""
    CREDIT = "Credit"
    DEBIT = "Debit"


class PaymentType(str, Enum):
    """
    How an expense was paid.

    The payment type decides what the expense's source_id names:
    a bank for UPI, a card for Card, the literal "Cash" for Cash.
    """
    UPI = "UPI"
    CARD = "Card"
    CASH = "Cash"
    CREDIT_CARD = "Credit Card"  # legacy rows, resolves like CARD

    @property
    def resolves_to_card(self) -> bool:
        return self in (PaymentType.CARD, PaymentType.CREDIT_CARD)


class TransactionType(str, Enum):
    """Direction of money. Amounts are always non-negative magnitudes."""
    DEBIT = "Debit"
    CREDIT = "Credit"


class UsageKind(str, Enum):
    """Which expense column a usage check looks at."""
    SOURCE = "source"
    CATEGORY = "category"


class TaxonomyKind(str, Enum):
    """Kinds of user-defined taxonomy items."""
    BANK = "bank"
    CARD = "card"
    CATEGORY = "category"

    @property
    def usage_kind(self) -> UsageKind:
        """Banks and cards are referenced as sources, categories as categories."""
        if self is TaxonomyKind.CATEGORY:
            return UsageKind.CATEGORY
        return UsageKind.SOURCE


# =============================================================================
# SETTINGS
# =============================================================================

class CreditCard(BaseModel):
    """
    A card the user pays with.

    The name is the identifier expenses use as their source_id,
    so it must be unique across the user's cards.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Card label, unique per user"
    )
    bank: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Name of the bank that issued the card"
    )
    type: CardType = Field(
        default=CardType.CREDIT,
        description="Credit or debit card"
    )


class UserSettings(BaseModel):
    """
    One user's taxonomy.

    Created on the first settings write (onboarding) and replaced
    wholesale on every later edit. Order of each list is insertion order.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(
        ...,
        min_length=1,
        description="Opaque identifier issued by the identity provider"
    )
    banks: list[str] = Field(default_factory=list)
    credit_cards: list[CreditCard] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Last time the taxonomy was written"
    )

    def has_bank(self, name: str) -> bool:
        return name in self.banks

    def has_card(self, name: str) -> bool:
        return self.card_named(name) is not None

    def has_category(self, name: str) -> bool:
        return name in self.categories

    def card_named(self, name: str) -> Optional[CreditCard]:
        for card in self.credit_cards:
            if card.name == name:
                return card
        return None

    def cards_for_bank(self, bank: str) -> list[CreditCard]:
        """Cards that would be cascade-removed with this bank."""
        return [card for card in self.credit_cards if card.bank == bank]

    def same_taxonomy(self, other: 'UserSettings') -> bool:
        """True if both hold the same three lists, ignoring updated_at."""
        return (
            self.banks == other.banks
            and self.credit_cards == other.credit_cards
            and self.categories == other.categories
        )

    def sources_for(self, payment_type: PaymentType) -> list[str]:
        """Legal source_id values for a payment type, in settings order."""
        if payment_type.resolves_to_card:
            return [card.name for card in self.credit_cards]
        if payment_type == PaymentType.UPI:
            return list(self.banks)
        return [CASH_SOURCE]


# =============================================================================
# EXPENSES
# =============================================================================

class ExpenseDraft(BaseModel):
    """
    Payload for creating an expense.

    Nothing here is checked against the user's settings.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: dt.date = Field(
        ...,
        description="Calendar date of the transaction"
    )
    category_id: str = Field(
        ...,
        min_length=1,
        description="Category name from the user's settings"
    )
    description: str = Field(
        default="",
        description="Free text, may be empty"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Non-negative magnitude; direction is transaction_type"
    )
    payment_type: PaymentType = PaymentType.UPI
    source_id: str = Field(
        ...,
        min_length=1,
        description="Bank name, card name or 'Cash'"
    )
    transaction_type: TransactionType = TransactionType.DEBIT


class Expense(ExpenseDraft):
    """A persisted ledger row."""

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique expense ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the expense"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the row was inserted"
    )

    @property
    def signed_amount(self) -> Decimal:
        """Amount with debits negative, for net balance calculations."""
        if self.transaction_type == TransactionType.DEBIT:
            return -self.amount
        return self.amount

    def references(self, kind: UsageKind, identifier: str) -> bool:
        if kind == UsageKind.SOURCE:
            return self.source_id == identifier
        return self.category_id == identifier


class ExpensePatch(BaseModel):
    """
    Partial update for an expense.

    Only fields explicitly supplied are applied; everything else
    is left at its stored value.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: Optional[dt.date] = None
    category_id: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)
    payment_type: Optional[PaymentType] = None
    source_id: Optional[str] = Field(default=None, min_length=1)
    transaction_type: Optional[TransactionType] = None

    @model_validator(mode='after')
    def reject_explicit_nulls(self) -> 'ExpensePatch':
        """Supplied fields must carry a value; None cannot clear a column."""
        for name in self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"Field '{name}' cannot be set to null")
        return self

    def changes(self) -> dict[str, Any]:
        """The supplied subset of fields."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    @property
    def is_empty(self) -> bool:
        return not self.model_fields_set


# =============================================================================
# BUDGETS
# =============================================================================

class Budget(BaseModel):
    """
    One monthly spending target.

    (user_id, month, year) is unique. category_id is only ever set on
    rows written by the old per-category budget schema.
    """

    user_id: str = Field(..., min_length=1)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=9999)
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Spending target for the month"
    )
    category_id: Optional[str] = Field(
        default=None,
        description="Legacy per-category budget key"
    )

    @property
    def is_legacy(self) -> bool:
        """Rows from the per-category schema that the purge removes."""
        return (
            self.category_id is not None
            and self.category_id != LEGACY_TOTAL_CATEGORY
        )


# =============================================================================
# VIEW CONTEXT
# =============================================================================

class ViewContext(BaseModel):
    """
    The month a caller is looking at.

    The presentation layer owns this and passes it into every read;
    the core keeps no notion of a "current" month.
    """
    model_config = ConfigDict(frozen=True)

    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=9999)

    @classmethod
    def current(cls) -> 'ViewContext':
        today = date.today()
        return cls(month=today.month, year=today.year)

    @classmethod
    def for_date(cls, day: date) -> 'ViewContext':
        return cls(month=day.month, year=day.year)

    @property
    def start_date(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end_date(self) -> date:
        last_day = calendar.monthrange(self.year, self.month)[1]
        return date(self.year, self.month, last_day)

    @property
    def label(self) -> str:
        """Human-readable period, e.g. 'March 2025'."""
        return self.start_date.strftime("%B %Y")

    def previous(self) -> 'ViewContext':
        if self.month == 1:
            return ViewContext(month=12, year=self.year - 1)
        return ViewContext(month=self.month - 1, year=self.year)

    def next(self) -> 'ViewContext':
        if self.month == 12:
            return ViewContext(month=1, year=self.year + 1)
        return ViewContext(month=self.month + 1, year=self.year)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'unknown_category', 'future_date')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (values on their own)
    Stage 2: Reference validation (values against the owner's settings)
    """

    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    schema_valid: bool = Field(
        ...,
        description="Did schema validation pass?"
    )
    references_valid: bool = Field(
        ...,
        description="Did every reference resolve?"
    )
    is_valid: bool = Field(
        ...,
        description="Overall validation result"
    )

    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
