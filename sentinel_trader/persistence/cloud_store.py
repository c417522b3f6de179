"""
Remote snapshot store (key-value document with get/set) and best-effort sync.

Pushes run in daemon threads and never block the engine. If several pushes
queue up while a write is in flight, only the newest one is sent.
"""
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import requests
from loguru import logger

from ..utils.config_loader import env_secret, lookup


class CloudStore(ABC):

    @abstractmethod
    def get(self) -> Optional[Dict[str, Any]]:
        """Latest snapshot document, or None when there is none."""

    @abstractmethod
    def set(self, snapshot: Dict[str, Any]) -> None:
        """Replace the stored snapshot."""


class HttpCloudStore(CloudStore):
    """JSON document at a URL: GET to read, PUT to write."""

    def __init__(self, url: str, token: Optional[str] = None, timeout: int = 10):
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def get(self) -> Optional[Dict[str, Any]]:
        resp = requests.get(self.url, headers=self.headers, timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, dict) else None

    def set(self, snapshot: Dict[str, Any]) -> None:
        resp = requests.put(self.url, json=snapshot, headers=self.headers, timeout=self.timeout)
        resp.raise_for_status()


class CloudSync:
    """
    Fire-and-forget pushes plus a blocking pull for boot reconciliation.

    Pushes land in a single pending slot drained by one daemon sender; the
    lock only guards the slot, never the network call.
    """

    def __init__(self, store: Optional[CloudStore]):
        self.store = store
        self._lock = threading.Lock()
        self._pending: Optional[Dict[str, Any]] = None
        self._sender: Optional[threading.Thread] = None

    @property
    def enabled(self) -> bool:
        return self.store is not None

    def push(self, snapshot: Dict[str, Any]) -> Optional[threading.Thread]:
        """Queue `snapshot`, replacing any unsent one. Returns the sender thread."""
        if self.store is None:
            return None
        with self._lock:
            self._pending = snapshot
            if self._sender is None:
                self._sender = threading.Thread(target=self._drain, daemon=True)
                self._sender.start()
            return self._sender

    def _drain(self) -> None:
        while True:
            with self._lock:
                snapshot = self._pending
                self._pending = None
                if snapshot is None:
                    self._sender = None
                    return
            try:
                self.store.set(snapshot)
            except Exception as e:
                logger.warning(f"Cloud save failed: {e}")

    def pull(self) -> Optional[Dict[str, Any]]:
        if self.store is None:
            return None
        try:
            return self.store.get()
        except Exception as e:
            logger.warning(f"Cloud load failed: {e}")
            return None


def create_cloud_sync(cfg: Mapping[str, Any]) -> CloudSync:
    if not lookup(cfg, "cloud.enabled", False) or not lookup(cfg, "cloud.url"):
        return CloudSync(None)
    store = HttpCloudStore(
        url=lookup(cfg, "cloud.url"),
        token=env_secret(cfg, "cloud.token_env"),
        timeout=int(lookup(cfg, "cloud.timeout_sec", 10)),
    )
    return CloudSync(store)
