"""Account analysis."""

from .account_ledger import recompute

__all__ = ["recompute"]
