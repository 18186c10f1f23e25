"""Read-side reports over the ledger."""

from spendfree.analytics.reports import ReportBuilder

__all__ = ["ReportBuilder"]
