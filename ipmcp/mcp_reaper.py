import asyncio
import logging
import time
from typing import Callable, List, Optional

from ipmcp.mcp_session_store import McpSessionStore

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = 30 * 60
DEFAULT_REAP_INTERVAL = 5 * 60


class McpIdleReaper:
    """Evicts sessions whose last activity is older than ``ttl`` seconds."""

    def __init__(
        self,
        store: McpSessionStore,
        ttl: float = DEFAULT_SESSION_TTL,
        interval: float = DEFAULT_REAP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0 or interval <= 0:
            raise ValueError(f"{McpIdleReaper.__name__} ttl and interval must be positive")
        self._store = store
        self.ttl = ttl
        self.interval = interval
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self, now: Optional[float] = None) -> List[str]:
        now = self._clock() if now is None else now
        expired = [s for s in self._store.all() if s.idle_for(now) > self.ttl]
        # evict before closing so no request is routed to a closing session
        for session in expired:
            self._store.remove(session.id)
        for session in expired:
            try:
                await session.close()
            except Exception:
                logger.exception("failed to close idle session %s", session.id)
        if expired:
            logger.info(
                "reaped %d idle session(s), %d active", len(expired), len(self._store)
            )
        return [s.id for s in expired]

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("idle session sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug(
            "idle reaper started, ttl=%ss interval=%ss", self.ttl, self.interval
        )

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
