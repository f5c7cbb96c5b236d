"""Connectivity monitor.

Tracks whether the remote store is reachable and what kind of link is in
use, and notifies subscribers when the link comes back. The platform (or a
periodic probe against the backend health endpoint) feeds it through
``update()``.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]
Probe = Callable[[], Awaitable[bool]]


class ConnectionType(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    ETHERNET = "ethernet"
    UNKNOWN = "unknown"


class ConnectivityMonitor:
    """Reachability state with restored/lost subscriptions.

    Args:
        probe: Optional coroutine function returning True when the backend
            answers. Used by ``check()``.
        cache_ttl: Seconds a probe result stays valid.
    """

    def __init__(
        self,
        probe: Optional[Probe] = None,
        cache_ttl: float = 30.0,
        reachable: bool = True,
    ):
        self._probe = probe
        self._cache_ttl = cache_ttl
        self._last_check: Optional[datetime] = None
        self._reachable = reachable
        self.is_expensive = False
        self.is_constrained = False
        self.connection_type = ConnectionType.UNKNOWN
        self._restored: List[Callback] = []
        self._lost: List[Callback] = []
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    # === Subscriptions ===

    def subscribe(self, callback: Callback) -> None:
        """Call ``callback`` on every transition to reachable."""
        self._restored.append(callback)

    def unsubscribe(self, callback: Callback) -> None:
        if callback in self._restored:
            self._restored.remove(callback)
        if callback in self._lost:
            self._lost.remove(callback)

    def subscribe_lost(self, callback: Callback) -> None:
        """Call ``callback`` on every transition to unreachable."""
        self._lost.append(callback)

    def _fire(self, callbacks: List[Callback]) -> None:
        for callback in list(callbacks):
            try:
                result = callback()
            except Exception as e:
                logger.warning(f"Connectivity callback failed: {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                try:
                    task = asyncio.get_running_loop().create_task(result)
                except RuntimeError:
                    logger.warning("No running event loop; dropping async connectivity callback")
                    result.close()
                    continue
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    # === State ===

    def update(
        self,
        reachable: bool,
        *,
        expensive: bool = False,
        constrained: bool = False,
        connection_type: ConnectionType = ConnectionType.UNKNOWN,
    ) -> None:
        """Record a new link state and notify on reachability transitions."""
        was_reachable = self._reachable
        self._reachable = reachable
        self.is_expensive = expensive
        self.is_constrained = constrained
        self.connection_type = connection_type

        if reachable and not was_reachable:
            logger.info(f"Network connection restored ({connection_type.value})")
            self._fire(self._restored)
        elif was_reachable and not reachable:
            logger.info("Network connection lost")
            self._fire(self._lost)

    def should_sync(self, allow_expensive: bool = True, allow_constrained: bool = False) -> bool:
        """Whether the current link satisfies the sync network policy."""
        if not self._reachable:
            return False
        if self.is_expensive and not allow_expensive:
            return False
        if self.is_constrained and not allow_constrained:
            return False
        return True

    async def check(self) -> bool:
        """Probe the backend (cached for ``cache_ttl``) and update state."""
        if self._probe is None:
            return self._reachable

        now = datetime.now(timezone.utc)
        if self._last_check:
            elapsed = (now - self._last_check).total_seconds()
            if elapsed < self._cache_ttl:
                return self._reachable

        try:
            reachable = bool(await self._probe())
        except Exception as e:
            logger.debug(f"Connectivity check failed: {e}", exc_info=True)
            reachable = False

        self._last_check = now
        self.update(
            reachable,
            expensive=self.is_expensive,
            constrained=self.is_constrained,
            connection_type=self.connection_type,
        )
        return reachable

    async def wait_for_callbacks(self) -> None:
        """Await async callbacks fired so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
