"""Validation package."""

from spendfree.validation.validator import ExpenseValidator, ReferenceValidationError

__all__ = ["ExpenseValidator", "ReferenceValidationError"]
