"""
Notifications for trade events and push-subscription management.

Delivery to devices is an external collaborator. The default notifier only
logs; a real transport subclasses Notifier and implements `_deliver`.
"""
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger


def add_subscription(subscriptions: List[Dict[str, Any]], subscription: Mapping[str, Any]) -> bool:
    """Append unless a subscription with the same endpoint exists. Returns True if added."""
    endpoint = subscription.get("endpoint")
    if not endpoint:
        return False
    if any(s.get("endpoint") == endpoint for s in subscriptions):
        return False
    subscriptions.append(dict(subscription))
    return True


class Notifier(ABC):
    """Fans a title/body message out to every push subscription."""

    def __init__(self, subscriptions: Optional[List[Dict[str, Any]]] = None, enabled: bool = True):
        self.subscriptions = subscriptions if subscriptions is not None else []
        self.enabled = enabled

    def notify(self, title: str, body: str) -> bool:
        if not self.enabled:
            return False
        logger.info(f"[notify] {title} | {body} ({len(self.subscriptions)} subscriber(s))")

        def _do():
            for sub in list(self.subscriptions):
                try:
                    self._deliver(sub, title, body)
                except Exception as e:
                    logger.warning(f"Push to {sub.get('endpoint', '?')} failed: {e}")

        if self.subscriptions:
            threading.Thread(target=_do, daemon=True).start()
        return True

    @abstractmethod
    def _deliver(self, subscription: Dict[str, Any], title: str, body: str) -> None:
        """Send one message to one subscription. Raise on failure."""


class LogNotifier(Notifier):
    """No device transport; notifications only reach the activity log."""

    def _deliver(self, subscription: Dict[str, Any], title: str, body: str) -> None:
        logger.debug(f"[notify] no transport for {subscription.get('endpoint', '?')}: {title}")
