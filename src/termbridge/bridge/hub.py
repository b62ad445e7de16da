"""Fan-out of bridge events to connected observers.

Each observer owns an outbound queue drained by its own sender task, so
a slow or dead client never delays the others. Events are queued in the
order they are broadcast, which keeps each session's output in order
for every observer.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Protocol

from termbridge.domain.models import BridgeEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 1000

# Sent when the server gives up on a client that cannot keep up.
CLOSE_OVERLOADED = 1013


class TextSocket(Protocol):
    """The part of a websocket the hub writes to."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Observer:
    """One connected client and its outbound message queue."""

    _ids = itertools.count(1)

    def __init__(self, socket: TextSocket, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.id = next(Observer._ids)
        self._socket = socket
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self._alive = True
        self._task: asyncio.Task[None] | None = None
        self._closer: asyncio.Task[None] | None = None

    @property
    def is_alive(self) -> bool:
        return self._alive

    def start(self) -> None:
        self._task = asyncio.create_task(self._send_loop())

    def enqueue(self, message: str) -> bool:
        """Queue a message without waiting. Returns False if the observer is dead."""
        if not self._alive:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Observer %d backlog full, dropping it", self.id)
            self.abort()
            return False
        return True

    def abort(self) -> None:
        """Stop sending and close the socket, ending the client's connection."""
        self._alive = False
        if self._closer is None:
            self._closer = asyncio.create_task(self._close_socket())

    async def drain(self) -> None:
        """Wait until every queued message has been sent or discarded."""
        if self._task is None or self._task.done():
            return
        await self._queue.join()

    async def close(self) -> None:
        self._alive = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._closer is not None:
            await self._closer

    async def _close_socket(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        # Unsent messages are discarded so drain() cannot wait on them.
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        try:
            await self._socket.close(code=CLOSE_OVERLOADED)
        except Exception as e:
            logger.debug("Observer %d close failed: %s", self.id, e)

    async def _send_loop(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if self._alive:
                    await self._socket.send_text(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.info("Observer %d unreachable: %s", self.id, e)
                self.abort()
            finally:
                self._queue.task_done()


class BroadcastHub:
    """Holds the connected observers and delivers events to them."""

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._max_pending = max_pending
        self._observers: dict[int, Observer] = {}

    def __len__(self) -> int:
        return len(self._observers)

    @property
    def observers(self) -> list[Observer]:
        return list(self._observers.values())

    def register(self, socket: TextSocket) -> Observer:
        observer = Observer(socket, max_pending=self._max_pending)
        observer.start()
        self._observers[observer.id] = observer
        logger.info("Observer %d connected (%d)", observer.id, len(self._observers))
        return observer

    async def unregister(self, observer: Observer) -> None:
        if self._observers.pop(observer.id, None) is not None:
            logger.info("Observer %d disconnected (%d)", observer.id, len(self._observers))
        await observer.close()

    def broadcast(self, event: BridgeEvent) -> None:
        """Queue ``event`` for every live observer; dead ones are dropped."""
        message = event.to_json()
        for observer in list(self._observers.values()):
            if not observer.enqueue(message):
                self._drop(observer)

    def reply(self, observer: Observer, event: BridgeEvent) -> None:
        """Queue ``event`` for a single observer."""
        if not observer.enqueue(event.to_json()):
            self._drop(observer)

    async def drain(self) -> None:
        await asyncio.gather(*(o.drain() for o in self.observers))

    async def close_all(self) -> None:
        observers = self.observers
        self._observers.clear()
        await asyncio.gather(*(o.close() for o in observers))

    def _drop(self, observer: Observer) -> None:
        if self._observers.pop(observer.id, None) is not None:
            # Its socket is being closed; the connection handler then unregisters it.
            logger.info("Dropped observer %d (%d left)", observer.id, len(self._observers))
