"""In-process presence registry: which identities are online, and where.

One entry per identity, mapping it to the connection handle that currently
receives targeted deliveries for that identity. Reconnecting replaces the
previous handle (last connection wins). Removal compares the handle itself,
not just the identity, so a late disconnect from a replaced connection can
never evict the newer one.

Thread Safety:
    All mutations hold a ``threading.Lock``. The gateway only touches the
    registry from the event loop, but the lock keeps it correct if handlers
    are ever dispatched from worker threads.

The registry is not durable and starts empty on every process start. It is
injected into the gateway rather than imported as a global, so a shared
implementation (e.g. backed by Redis) can replace it behind the same methods.
"""
import logging
import threading
from typing import Dict, Generic, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

H = TypeVar("H")


class PresenceRegistry(Generic[H]):
    """Maps identity -> active connection handle."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: Dict[str, H] = {}

    def register(self, identity: str, handle: H) -> Optional[H]:
        """Register ``handle`` as the live connection for ``identity``.

        Returns:
            The handle that was replaced, or None if the identity was offline.
        """
        with self._lock:
            previous = self._handles.get(identity)
            self._handles[identity] = handle
        if previous is not None and previous is not handle:
            logger.info(f"[Presence] {identity} reconnected; previous handle replaced")
        return previous

    def unregister(self, identity: str, handle: H) -> bool:
        """Remove ``identity`` only if ``handle`` is its current handle.

        Returns:
            True if the entry was removed, False if the handle was stale or
            the identity was not registered.
        """
        with self._lock:
            if self._handles.get(identity) is not handle:
                return False
            del self._handles[identity]
        return True

    def lookup(self, identity: str) -> Optional[H]:
        with self._lock:
            return self._handles.get(identity)

    def is_online(self, identity: str) -> bool:
        return self.lookup(identity) is not None

    def all_online(self) -> Set[str]:
        with self._lock:
            return set(self._handles)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
