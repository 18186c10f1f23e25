"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Values judged on their own: zero or absurd amounts, dates far in
  the future, oversized descriptions, the Cash source convention

STAGE 2 - REFERENCE VALIDATION:
- Values judged against the owner's settings: does the category exist,
  does the source name a bank (UPI) or a card (Card), does the card's
  bank still exist

References are soft. By default every reference problem is a WARNING
and the write goes ahead, because the ledger has always tolerated drift.
With strict references enabled they become ERRORS and the flows refuse
the write.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them to the caller.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from spendfree.config import AppSettings, get_settings
from spendfree.models.ledger import (
    CASH_SOURCE,
    CreditCard,
    ExpenseDraft,
    PaymentType,
    UserSettings,
    ValidationIssue,
    ValidationResult,
)


class ReferenceValidationError(ValueError):
    """A write was refused because its references don't resolve."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = [i.message for i in result.issues if i.severity == "error"]
        super().__init__("; ".join(messages) or "Validation failed")


class ExpenseValidator:
    """
    Validates expenses and taxonomy writes.

    Stateless apart from configuration; needs no storage access.
    """

    def __init__(self, app_settings: Optional[AppSettings] = None):
        self._settings = app_settings or get_settings().app

    @property
    def strict(self) -> bool:
        return self._settings.strict_references

    def _reference_severity(self) -> str:
        return "error" if self.strict else "warning"

    def _validate_schema(
        self,
        draft: ExpenseDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        today = date.today()

        if draft.amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="zero_amount",
                message="Amount is zero",
                severity="warning",
                suggested_fix="Enter the transaction amount",
            ))

        max_amount = Decimal(str(self._settings.max_expense_amount))
        if draft.amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount (₹{draft.amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        if draft.date > max_future_date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({draft.date.isoformat()}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        if len(draft.description) > self._settings.max_description_length:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_long",
                message=(
                    f"Description is {len(draft.description)} characters "
                    f"(limit {self._settings.max_description_length})"
                ),
                severity="warning",
                suggested_fix="Shorten the description",
            ))

        if draft.payment_type == PaymentType.CASH and draft.source_id != CASH_SOURCE:
            issues.append(ValidationIssue(
                field="source_id",
                issue_type="cash_source",
                message=f"Cash payments use the source '{CASH_SOURCE}', got '{draft.source_id}'",
                severity="warning",
                suggested_fix=f"Set the source to '{CASH_SOURCE}'",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_references(
        self,
        draft: ExpenseDraft,
        settings: Optional[UserSettings],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Reference validation against the owner's settings.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        severity = self._reference_severity()

        if settings is None:
            issues.append(ValidationIssue(
                field="settings",
                issue_type="not_onboarded",
                message="No banks, cards or categories have been set up yet",
                severity=severity,
                suggested_fix="Complete onboarding first",
            ))
            return not any(i.severity == "error" for i in issues), issues

        if not settings.has_category(draft.category_id):
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="unknown_category",
                message=f"Category '{draft.category_id}' is not in your settings",
                severity=severity,
                suggested_fix="Pick an existing category or add it in Settings",
            ))

        if draft.payment_type.resolves_to_card:
            card = settings.card_named(draft.source_id)
            if card is None:
                issues.append(ValidationIssue(
                    field="source_id",
                    issue_type="unknown_card",
                    message=f"Card '{draft.source_id}' is not in your settings",
                    severity=severity,
                    suggested_fix="Pick an existing card or add it in Settings",
                ))
            elif not settings.has_bank(card.bank):
                issues.append(ValidationIssue(
                    field="source_id",
                    issue_type="card_bank_missing",
                    message=f"Card '{card.name}' belongs to bank '{card.bank}', which no longer exists",
                    severity="warning",
                ))
        elif draft.payment_type == PaymentType.UPI:
            if not settings.has_bank(draft.source_id):
                issues.append(ValidationIssue(
                    field="source_id",
                    issue_type="unknown_bank",
                    message=f"Bank '{draft.source_id}' is not in your settings",
                    severity=severity,
                    suggested_fix="Pick an existing bank or add it in Settings",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        draft: ExpenseDraft,
        settings: Optional[UserSettings],
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            draft: The expense (or the expense as it would look after a patch)
            settings: The owner's current settings, None if not onboarded

        Returns:
            ValidationResult with all issues found
        """
        schema_valid, schema_issues = self._validate_schema(draft)
        references_valid, reference_issues = self._validate_references(draft, settings)

        return ValidationResult(
            schema_valid=schema_valid,
            references_valid=references_valid,
            is_valid=schema_valid and references_valid,
            issues=schema_issues + reference_issues,
        )

    def validate_settings(
        self,
        banks: list[str],
        credit_cards: list[CreditCard],
        categories: list[str],
    ) -> ValidationResult:
        """
        Check a full taxonomy before it is written.

        Flags duplicate entries and cards whose bank is not in `banks`.
        """
        issues = []
        severity = self._reference_severity()

        for field, values in (
            ("banks", banks),
            ("credit_cards", [card.name for card in credit_cards]),
            ("categories", categories),
        ):
            seen = set()
            for value in values:
                if value in seen:
                    issues.append(ValidationIssue(
                        field=field,
                        issue_type="duplicate",
                        message=f"'{value}' appears more than once in {field}",
                        severity=severity,
                        suggested_fix="Remove the repeated entry",
                    ))
                seen.add(value)

        bank_names = set(banks)
        for card in credit_cards:
            if card.bank not in bank_names:
                issues.append(ValidationIssue(
                    field="credit_cards",
                    issue_type="unknown_bank",
                    message=f"Card '{card.name}' references bank '{card.bank}', which is not in your banks",
                    severity=severity,
                    suggested_fix="Add the bank first",
                ))

        references_valid = not any(issue.severity == "error" for issue in issues)
        return ValidationResult(
            schema_valid=True,
            references_valid=references_valid,
            is_valid=references_valid,
            issues=issues,
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.issues:
            return "All checks passed."

        lines = []
        errors = [i for i in result.issues if i.severity == "error"]
        if errors:
            lines.append("Some references could not be resolved:")
            for issue in errors:
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
