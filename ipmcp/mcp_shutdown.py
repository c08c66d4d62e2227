import asyncio
import logging
import signal
from enum import StrEnum
from typing import List, Optional, Protocol

from ipmcp.mcp_reaper import McpIdleReaper
from ipmcp.mcp_session_store import McpSessionStore

logger = logging.getLogger(__name__)


class McpClosable(Protocol):
    async def close(self) -> None: ...


class McpShutdownState(StrEnum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class McpShutdownCoordinator:
    """Runs the teardown sequence exactly once.

    Sessions are closed before the listener so that open server-push streams
    end and the listener's cleanup does not wait on them.
    """

    def __init__(
        self,
        store: McpSessionStore,
        listener: Optional[McpClosable] = None,
        reaper: Optional[McpIdleReaper] = None,
    ) -> None:
        self._store = store
        self._listener = listener
        self._reaper = reaper
        self.state = McpShutdownState.RUNNING
        self.exit_code: Optional[int] = None
        self.close_errors: List[BaseException] = []
        self._task: Optional[asyncio.Task] = None
        self._terminated = asyncio.Event()

    def install_signal_handlers(
        self, signals=(signal.SIGINT, signal.SIGTERM)
    ) -> None:
        loop = asyncio.get_running_loop()
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except NotImplementedError:
                # not available on windows event loops
                signal.signal(sig, lambda s, _frame: loop.call_soon_threadsafe(self.request_shutdown, s))

    def request_shutdown(self, sig: Optional[int] = None) -> None:
        if sig is not None:
            logger.info("received %s, shutting down", signal.Signals(sig).name)
        self._start()

    def _start(self) -> asyncio.Task:
        if self._task is None:
            self.state = McpShutdownState.SHUTTING_DOWN
            self._task = asyncio.create_task(self._teardown())
        return self._task

    async def shutdown(self) -> int:
        await asyncio.shield(self._start())
        return self.exit_code

    async def wait_terminated(self) -> int:
        await self._terminated.wait()
        return self.exit_code

    async def _close_sessions(self) -> None:
        sessions = self._store.all()
        for session in sessions:
            self._store.remove(session.id)
            try:
                await session.close()
            except Exception as e:
                logger.exception("failed to close session %s", session.id)
                self.close_errors.append(e)
        if sessions:
            logger.info("closed %d session(s)", len(sessions))

    async def _teardown(self) -> None:
        try:
            logger.info("shutting down gracefully...")
            if self._reaper is not None:
                await self._reaper.stop()
            await self._close_sessions()
            if self._listener is not None:
                await self._listener.close()
                # initializations that completed while the listener drained
                await self._close_sessions()
            self.exit_code = 0
        except Exception:
            logger.exception("error during shutdown")
            self.exit_code = 1
        finally:
            self.state = McpShutdownState.TERMINATED
            self._terminated.set()
