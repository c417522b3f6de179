"""Notification modules."""

from .notifier import LogNotifier, Notifier, add_subscription

__all__ = ["LogNotifier", "Notifier", "add_subscription"]
