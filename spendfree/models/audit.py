"""
Audit Models for SpendFree

Every mutation of a user's data is logged for audit purposes.
This provides:
1. Traceability of taxonomy edits and the guard decisions behind them
2. Debugging information when things go wrong
3. Ability to reconstruct a user's ledger history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Settings
    ONBOARDING_COMPLETED = "onboarding_completed"
    SETTINGS_UPDATED = "settings_updated"
    TAXONOMY_ITEM_ADDED = "taxonomy_item_added"
    TAXONOMY_ITEM_REMOVED = "taxonomy_item_removed"
    TAXONOMY_REMOVAL_BLOCKED = "taxonomy_removal_blocked"
    CARDS_CASCADE_REMOVED = "cards_cascade_removed"

    # Ledger
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSE_VALIDATION_WARNING = "expense_validation_warning"

    # Budgets
    BUDGET_SET = "budget_set"
    LEGACY_BUDGETS_PURGED = "legacy_budgets_purged"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - whose data and which record?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the affected data"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'bank', 'budget')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID or name of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one bulk import)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_created(user_id, expense_id, amount)
        event = AuditEventBuilder.removal_blocked(user_id, "category", "Food")
    """

    @staticmethod
    def settings_updated(
        user_id: str,
        banks: int,
        cards: int,
        categories: int,
        onboarding: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.ONBOARDING_COMPLETED
            if onboarding
            else AuditEventType.SETTINGS_UPDATED
        )
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="settings",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=(
                f"Settings written: {banks} banks, {cards} cards, "
                f"{categories} categories"
            ),
            details={
                "banks": banks,
                "cards": cards,
                "categories": categories,
            },
            is_user_action=True,
        )

    @staticmethod
    def item_added(
        user_id: str,
        kind: str,
        identifier: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAXONOMY_ITEM_ADDED,
            user_id=user_id,
            entity_type=kind,
            entity_id=identifier,
            correlation_id=correlation_id,
            description=f"Added {kind}: {identifier}",
            is_user_action=True,
        )

    @staticmethod
    def item_removed(
        user_id: str,
        kind: str,
        identifier: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAXONOMY_ITEM_REMOVED,
            user_id=user_id,
            entity_type=kind,
            entity_id=identifier,
            correlation_id=correlation_id,
            description=f"Removed {kind}: {identifier}",
            is_user_action=True,
        )

    @staticmethod
    def removal_blocked(
        user_id: str,
        kind: str,
        identifier: str,
        referenced: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAXONOMY_REMOVAL_BLOCKED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=kind,
            entity_id=identifier,
            correlation_id=correlation_id,
            description=f"Cannot remove {kind} '{identifier}': linked to existing transactions",
            details={
                "referenced_identifier": referenced,
            },
            is_user_action=True,
        )

    @staticmethod
    def cards_cascaded(
        user_id: str,
        bank: str,
        cards: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CARDS_CASCADE_REMOVED,
            user_id=user_id,
            entity_type="bank",
            entity_id=bank,
            correlation_id=correlation_id,
            description=f"Removed {len(cards)} card(s) issued by {bank}",
            details={
                "cards": cards,
            },
        )

    @staticmethod
    def expense_created(
        user_id: str,
        expense_id: UUID,
        amount: str,
        transaction_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"{transaction_type} recorded: ₹{amount}",
            details={
                "amount": amount,
                "transaction_type": transaction_type,
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_updated(
        user_id: str,
        expense_id: UUID,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"Expense updated: {', '.join(sorted(fields))}",
            details={
                "fields": sorted(fields),
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_deleted(
        user_id: str,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            user_id=user_id,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description="Expense deleted",
            is_user_action=True,
        )

    @staticmethod
    def validation_warning(
        user_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_VALIDATION_WARNING,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="expense",
            correlation_id=correlation_id,
            description=f"Expense accepted with {len(issues)} warning(s)",
            details={
                "issues": issues,
            },
        )

    @staticmethod
    def budget_set(
        user_id: str,
        month: int,
        year: int,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_SET,
            user_id=user_id,
            entity_type="budget",
            entity_id=f"{year}-{month:02d}",
            correlation_id=correlation_id,
            description=f"Budget for {year}-{month:02d} set to ₹{amount}",
            details={
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def legacy_budgets_purged(
        removed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEGACY_BUDGETS_PURGED,
            entity_type="budget",
            correlation_id=correlation_id,
            description=f"Purged {removed} legacy per-category budget row(s)",
            details={
                "removed": removed,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={
                "operation": operation,
            },
            correlation_id=correlation_id,
        )
