"""
Consistency Guard

Expenses reference banks, cards and categories by name, and nothing
in storage stops a taxonomy item from disappearing while expenses
still point at it. The guard is the one place that prevents it.

RULES (removal only; additions are never checked):
1. Before removing an item, ask the ledger whether any of the user's
   expenses references it (banks and cards as sources, categories
   as categories).
2. If one does, refuse with TaxonomyItemInUseError. Nothing is written.
3. Removing a bank also removes every card issued by that bank.
   With verify_cascaded_cards on, each of those cards is usage-checked
   as well and any hit blocks the whole removal.
4. Write the new taxonomy with a single update_settings call.

The check and the write run under the user's lock.
"""

from typing import Optional
from uuid import UUID

from spendfree.audit import AuditLogger
from spendfree.config import get_settings
from spendfree.consistency.locks import UserLockRegistry
from spendfree.models.ledger import (
    TaxonomyKind,
    UsageKind,
    UserSettings,
)
from spendfree.services.storage import (
    ExpenseStorageInterface,
    NotFoundError,
    SettingsStorageInterface,
)


class ConflictError(Exception):
    """The requested change would break a reference."""
    pass


class TaxonomyItemInUseError(ConflictError):
    """
    A taxonomy item is still referenced by at least one expense.

    `referenced` is the identifier the expense actually points at:
    the item itself, or a card that would have been cascade-removed.
    """

    def __init__(
        self,
        kind: TaxonomyKind,
        identifier: str,
        referenced: Optional[str] = None,
    ):
        self.kind = kind
        self.identifier = identifier
        self.referenced = referenced or identifier
        if self.referenced == identifier:
            message = f'Cannot delete: "{identifier}" is linked to existing transactions.'
        else:
            message = (
                f'Cannot delete: "{identifier}" has card "{self.referenced}" '
                "linked to existing transactions."
            )
        super().__init__(message)


class ConsistencyGuard:
    """Guards taxonomy removals against orphaning ledger rows."""

    def __init__(
        self,
        settings_storage: SettingsStorageInterface,
        expense_storage: ExpenseStorageInterface,
        locks: Optional[UserLockRegistry] = None,
        verify_cascaded_cards: Optional[bool] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._settings = settings_storage
        self._expenses = expense_storage
        self._locks = locks or UserLockRegistry()
        if verify_cascaded_cards is None:
            verify_cascaded_cards = get_settings().app.verify_cascaded_cards
        self._verify_cascaded_cards = verify_cascaded_cards
        self._audit_logger = audit_logger

    async def check_usage(
        self,
        user_id: str,
        kind: TaxonomyKind,
        identifier: str,
    ) -> bool:
        """True if any of the user's expenses references the item."""
        return await self._expenses.check_usage(user_id, kind.usage_kind, identifier)

    async def remove_item(
        self,
        user_id: str,
        kind: TaxonomyKind,
        identifier: str,
        correlation_id: Optional[UUID] = None,
    ) -> UserSettings:
        """
        Remove one bank, card or category from a user's settings.

        Returns:
            The settings as written

        Raises:
            NotFoundError: If the user has no settings or the item isn't in them
            TaxonomyItemInUseError: If the item (or a cascaded card) is in use
        """
        async with self._locks.hold(user_id):
            current = await self._settings.get_settings(user_id)
            if current is None:
                raise NotFoundError(f"No settings for user {user_id}")
            if not self._contains(current, kind, identifier):
                raise NotFoundError(f"{kind.value.capitalize()} not found: {identifier}")

            if await self.check_usage(user_id, kind, identifier):
                await self._blocked(user_id, kind, identifier, identifier, correlation_id)

            banks = list(current.banks)
            cards = list(current.credit_cards)
            categories = list(current.categories)
            cascaded: list[str] = []

            if kind == TaxonomyKind.BANK:
                dependents = current.cards_for_bank(identifier)
                if self._verify_cascaded_cards:
                    for card in dependents:
                        if await self._expenses.check_usage(user_id, UsageKind.SOURCE, card.name):
                            await self._blocked(
                                user_id, kind, identifier, card.name, correlation_id
                            )
                cascaded = [card.name for card in dependents]
                banks = [b for b in banks if b != identifier]
                cards = [c for c in cards if c.bank != identifier]
            elif kind == TaxonomyKind.CARD:
                cards = [c for c in cards if c.name != identifier]
            else:
                categories = [c for c in categories if c != identifier]

            await self._settings.update_settings(user_id, banks, cards, categories)

        if self._audit_logger:
            await self._audit_logger.log_item_removed(
                user_id=user_id,
                kind=kind.value,
                identifier=identifier,
                correlation_id=correlation_id,
            )
            if cascaded:
                await self._audit_logger.log_cards_cascaded(
                    user_id=user_id,
                    bank=identifier,
                    cards=cascaded,
                    correlation_id=correlation_id,
                )

        return UserSettings(
            user_id=user_id,
            banks=banks,
            credit_cards=cards,
            categories=categories,
        )

    async def remove_bank(self, user_id: str, bank: str, correlation_id: Optional[UUID] = None) -> UserSettings:
        return await self.remove_item(user_id, TaxonomyKind.BANK, bank, correlation_id)

    async def remove_card(self, user_id: str, card_name: str, correlation_id: Optional[UUID] = None) -> UserSettings:
        return await self.remove_item(user_id, TaxonomyKind.CARD, card_name, correlation_id)

    async def remove_category(self, user_id: str, category: str, correlation_id: Optional[UUID] = None) -> UserSettings:
        return await self.remove_item(user_id, TaxonomyKind.CATEGORY, category, correlation_id)

    @staticmethod
    def _contains(settings: UserSettings, kind: TaxonomyKind, identifier: str) -> bool:
        if kind == TaxonomyKind.BANK:
            return settings.has_bank(identifier)
        if kind == TaxonomyKind.CARD:
            return settings.has_card(identifier)
        return settings.has_category(identifier)

    async def _blocked(
        self,
        user_id: str,
        kind: TaxonomyKind,
        identifier: str,
        referenced: str,
        correlation_id: Optional[UUID],
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_removal_blocked(
                user_id=user_id,
                kind=kind.value,
                identifier=identifier,
                referenced=referenced,
                correlation_id=correlation_id,
            )
        raise TaxonomyItemInUseError(kind, identifier, referenced)
