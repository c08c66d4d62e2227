"""
Session state for the Streamable HTTP transport.

:class:`McpSessionStore` is the only owner of the id -> session mapping. The
router, the idle reaper and the shutdown coordinator all receive the same
store instance. Every mutation happens in a synchronous stretch of code on
the event loop, so no lock is needed.
"""

import logging
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional

from ipmcp.mcp_context import McpServerSession

if TYPE_CHECKING:
    from ipmcp.transports.http import McpStreamableHttpHandler

logger = logging.getLogger(__name__)


class McpHttpSession:
    def __init__(
        self,
        session_id: str,
        handler: "McpStreamableHttpHandler",
        server_session: McpServerSession,
        last_activity: float,
    ) -> None:
        self.id = session_id
        self.handler = handler
        self.server_session = server_session
        self.last_activity = last_activity

    def touch(self, now: float) -> None:
        # first writer wins when concurrent requests race on the same session
        if now > self.last_activity:
            self.last_activity = now

    def idle_for(self, now: float) -> float:
        return now - self.last_activity

    async def close(self) -> None:
        """Close the protocol handler, then the server context.

        The server context is closed even when the handler fails; the first
        error is re-raised afterwards.
        """
        try:
            await self.handler.close()
        finally:
            await self.server_session.close()


class McpSessionStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, McpHttpSession] = {}

    def register(self, session_id: str, session: McpHttpSession) -> None:
        if session_id in self._sessions:
            raise ValueError(f"{McpSessionStore.__name__} duplicate session id {session_id}")
        self._sessions[session_id] = session
        logger.debug("registered session %s (%d active)", session_id, len(self._sessions))

    def get(self, session_id: str) -> Optional[McpHttpSession]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[McpHttpSession]:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug("removed session %s (%d active)", session_id, len(self._sessions))
        return session

    def all(self) -> List[McpHttpSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
