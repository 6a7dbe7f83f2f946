"""
Session registry and TTL sweeper.

Sessions live in two in-memory tables, one per transport kind. Tables are
plain dicts mutated only on the event loop, so no locking is needed; the sweep
collects expired ids before deleting them.
"""

import asyncio
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Protocol

import structlog

if TYPE_CHECKING:
    from subtitle_mcp.tools import ToolDispatcher

logger = structlog.get_logger(__name__)

TransportKind = Literal["streamable", "event-stream"]
TRANSPORT_KINDS: tuple[TransportKind, ...] = ("streamable", "event-stream")


class Transport(Protocol):
    """What the registry needs from a transport: a way to close it."""

    closed: bool

    def close(self) -> None: ...


@dataclass
class Session:
    """One logical MCP session bound to its own dispatcher and transport."""

    id: str
    kind: TransportKind
    created_at: float
    dispatcher: "ToolDispatcher"
    transport: Transport = field(repr=False)


class SessionRegistry:
    """
    Two session tables keyed by session id.

    Args:
        clock: Returns the current time in seconds; injected for tests
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._tables: dict[TransportKind, dict[str, Session]] = {kind: {} for kind in TRANSPORT_KINDS}

    def _new_id(self) -> str:
        while True:
            session_id = uuid.uuid4().hex
            if not any(session_id in table for table in self._tables.values()):
                return session_id

    def create(self, kind: TransportKind, dispatcher: "ToolDispatcher", transport: Transport) -> Session:
        """Register a new session and return it."""
        session = Session(
            id=self._new_id(),
            kind=kind,
            created_at=self._clock(),
            dispatcher=dispatcher,
            transport=transport,
        )
        self._tables[kind][session.id] = session
        logger.info("session_created", session_id=session.id, kind=kind, active=self.count(kind))
        return session

    def get(self, kind: TransportKind, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        return self._tables[kind].get(session_id)

    def delete(self, session_id: str) -> bool:
        """
        Remove a session from whichever table holds it and close its transport.

        Returns:
            True if a session was removed; deleting an unknown id is a no-op
        """
        for kind, table in self._tables.items():
            session = table.pop(session_id, None)
            if session is not None:
                session.transport.close()
                logger.info("session_closed", session_id=session_id, kind=kind, active=len(table))
                return True
        return False

    def sweep(self, ttl: float) -> list[str]:
        """
        Delete every session older than ``ttl`` seconds.

        Returns:
            Ids of the removed sessions
        """
        now = self._clock()
        expired = [
            session.id
            for table in self._tables.values()
            for session in table.values()
            if now - session.created_at > ttl
        ]
        for session_id in expired:
            self.delete(session_id)
        if expired:
            logger.info("sessions_expired", removed=len(expired), **self.active_counts())
        return expired

    def count(self, kind: TransportKind) -> int:
        return len(self._tables[kind])

    def active_counts(self) -> dict[str, int]:
        """Active session gauge per transport kind."""
        return {kind: len(table) for kind, table in self._tables.items()}

    def close_all(self) -> None:
        for table in self._tables.values():
            for session_id in list(table):
                self.delete(session_id)


class SessionSweeper:
    """
    Background task that expires sessions on a fixed interval.

    Started and stopped from the application lifespan.
    """

    def __init__(self, registry: SessionRegistry, ttl: float, interval: float):
        """
        Args:
            registry: Registry to sweep
            ttl: Session lifetime in seconds
            interval: Seconds between sweeps
        """
        self._registry = registry
        self._ttl = ttl
        self._interval = interval
        self._task: asyncio.Task | None = None
        self._shutdown_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _sweep_loop(self) -> None:
        logger.info("session_sweeper_started", ttl=self._ttl, interval=self._interval)
        try:
            while not self._shutdown_event.is_set():
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._interval)
                    break  # Shutdown was signaled
                except asyncio.TimeoutError:
                    pass

                try:
                    self._registry.sweep(self._ttl)
                except Exception:
                    logger.exception("session_sweep_failed")
        except asyncio.CancelledError:
            logger.debug("session_sweeper_cancelled")
            raise
        finally:
            logger.info("session_sweeper_stopped")

    def start(self) -> None:
        """Start the sweep task on the running loop."""
        if self.running:
            return
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Signal the sweep task to exit, cancelling it if it does not stop in time."""
        if self._task is None:
            return
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            logger.warning("session_sweeper_stop_timeout")
        self._task = None
        self._shutdown_event = None
