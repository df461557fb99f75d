"""Registry of live signaling connections and their outbound queues."""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Callable, Dict
from uuid import uuid4

SendCallable = Callable[[dict], Awaitable[None]]
DisconnectListener = Callable[[str], Awaitable[None]]

logger = logging.getLogger(__name__)


class SignalingConnection:
    """One client transport with a bounded outbound queue.

    Messages are enqueued without waiting on the network and written by a
    dedicated task, so a slow peer only ever delays its own deliveries.
    """

    def __init__(self, connection_id: str, send: SendCallable, queue_size: int = 256) -> None:
        self.connection_id = connection_id
        self._send = send
        self._queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=queue_size)
        self._writer: asyncio.Task[None] | None = None
        self.closed = False

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._write_loop(), name=f"signaling-writer-{self.connection_id}"
            )

    def deliver(self, message: dict) -> bool:
        """Queue a message for this connection; return False if it was dropped."""

        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Outbound queue full for %s, dropping %s", self.connection_id, message.get("type"))
            return False
        return True

    async def drain(self) -> None:
        """Wait until everything queued so far has been handed to the transport."""

        if self._writer is None:
            return
        await self._queue.join()

    async def close(self) -> None:
        self.closed = True
        if self._writer is None:
            return
        self._writer.cancel()
        with suppress(asyncio.CancelledError):
            await self._writer
        self._writer = None

    async def _write_loop(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._send(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - a broken socket must not stop the writer
                logger.debug("Delivery to %s failed: %s", self.connection_id, exc)
            finally:
                self._queue.task_done()


class ConnectionRegistry:
    """Track live connections by their server-assigned id."""

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._connections: Dict[str, SignalingConnection] = {}
        self._listeners: list[DisconnectListener] = []
        self._cleanups: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def ids(self) -> list[str]:
        return list(self._connections)

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        """Run ``listener(connection_id)`` whenever a connection is unregistered."""

        self._listeners.append(listener)

    def register(self, send: SendCallable) -> str:
        """Create a connection for ``send`` and return its new id."""

        connection_id = uuid4().hex
        connection = SignalingConnection(connection_id, send, queue_size=self._queue_size)
        self._connections[connection_id] = connection
        connection.start()
        logger.info("Connection registered: %s (%d live)", connection_id, len(self._connections))
        return connection_id

    async def unregister(self, connection_id: str) -> None:
        """Drop a connection and run cleanup for every room it belonged to.

        Listener cleanup runs in its own task and finishes even when the
        caller is cancelled part way through.
        """

        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return
        connection.closed = True
        cleanup = asyncio.create_task(
            self._notify_listeners(connection_id), name=f"signaling-cleanup-{connection_id}"
        )
        self._cleanups.add(cleanup)
        cleanup.add_done_callback(self._cleanups.discard)
        try:
            await asyncio.shield(cleanup)
        finally:
            await connection.close()
            logger.info("Connection unregistered: %s (%d live)", connection_id, len(self._connections))

    async def _notify_listeners(self, connection_id: str) -> None:
        for listener in self._listeners:
            try:
                await listener(connection_id)
            except Exception:  # noqa: BLE001 - remaining listeners still need to run
                logger.exception("Disconnect listener failed for %s", connection_id)

    def deliver(self, connection_id: str, message: dict) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        return connection.deliver(message)

    async def drain(self, timeout: float | None = None) -> None:
        """Finish pending disconnect cleanup, then flush every outbound queue.

        Gives up after ``timeout`` seconds.
        """

        try:
            await asyncio.wait_for(self._drain(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Outbound drain timed out after %.1fs", timeout or 0)

    async def _drain(self) -> None:
        if self._cleanups:
            await asyncio.wait(list(self._cleanups))
        await asyncio.gather(*(connection.drain() for connection in list(self._connections.values())))
