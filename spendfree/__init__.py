"""
SpendFree - Ledger Core

The storage, consistency and reporting core of a personal expense
tracker: per-user banks, cards and categories, the expenses that
reference them, and monthly budgets.

DESIGN PRINCIPLES:
1. References are by name and soft; integrity is enforced on removal
2. Fail early, fail visibly
3. No silent corrections
4. Every mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "SpendFree Team"
