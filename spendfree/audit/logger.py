"""
Audit Logger

DESIGN DECISION: Every mutation of user data is logged.
This provides:
1. Traceability of taxonomy edits and guard decisions
2. Debugging capability
3. A history the user can review

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from spendfree.models.audit import AuditEvent, AuditEventBuilder
from spendfree.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog's JSON lines through stdlib logging at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("spendfree.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_settings_updated(
        self,
        user_id: str,
        banks: int,
        cards: int,
        categories: int,
        onboarding: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a full settings write."""
        await self.log(AuditEventBuilder.settings_updated(
            user_id=user_id,
            banks=banks,
            cards=cards,
            categories=categories,
            onboarding=onboarding,
            correlation_id=correlation_id,
        ))

    async def log_item_added(
        self,
        user_id: str,
        kind: str,
        identifier: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.item_added(
            user_id=user_id,
            kind=kind,
            identifier=identifier,
            correlation_id=correlation_id,
        ))

    async def log_item_removed(
        self,
        user_id: str,
        kind: str,
        identifier: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.item_removed(
            user_id=user_id,
            kind=kind,
            identifier=identifier,
            correlation_id=correlation_id,
        ))

    async def log_removal_blocked(
        self,
        user_id: str,
        kind: str,
        identifier: str,
        referenced: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a removal the guard refused."""
        await self.log(AuditEventBuilder.removal_blocked(
            user_id=user_id,
            kind=kind,
            identifier=identifier,
            referenced=referenced,
            correlation_id=correlation_id,
        ))

    async def log_cards_cascaded(
        self,
        user_id: str,
        bank: str,
        cards: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cards_cascaded(
            user_id=user_id,
            bank=bank,
            cards=cards,
            correlation_id=correlation_id,
        ))

    async def log_expense_created(
        self,
        user_id: str,
        expense_id: UUID,
        amount: Decimal,
        transaction_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_created(
            user_id=user_id,
            expense_id=expense_id,
            amount=str(amount),
            transaction_type=transaction_type,
            correlation_id=correlation_id,
        ))

    async def log_expense_updated(
        self,
        user_id: str,
        expense_id: UUID,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_updated(
            user_id=user_id,
            expense_id=expense_id,
            fields=fields,
            correlation_id=correlation_id,
        ))

    async def log_expense_deleted(
        self,
        user_id: str,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_deleted(
            user_id=user_id,
            expense_id=expense_id,
            correlation_id=correlation_id,
        ))

    async def log_validation_warning(
        self,
        user_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_warning(
            user_id=user_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_budget_set(
        self,
        user_id: str,
        month: int,
        year: int,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_set(
            user_id=user_id,
            month=month,
            year=year,
            amount=str(amount),
            correlation_id=correlation_id,
        ))

    async def log_legacy_budgets_purged(
        self,
        removed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.legacy_budgets_purged(
            removed=removed,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a storage failure before it propagates to the caller."""
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a bulk import).
    Pass it through all subsequent operations.
    """
    return uuid4()
