"""Reference-integrity rules between settings and the ledger."""

from spendfree.consistency.guard import (
    ConflictError,
    ConsistencyGuard,
    TaxonomyItemInUseError,
)
from spendfree.consistency.locks import UserLockRegistry

__all__ = [
    "ConflictError",
    "ConsistencyGuard",
    "TaxonomyItemInUseError",
    "UserLockRegistry",
]
