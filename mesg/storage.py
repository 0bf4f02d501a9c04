"""In-memory queue storage with per-application delivery tracking."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Optional, Union

from .message import Message

log = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 0.5

MessageId = Union[str, uuid.UUID]


class StorageError(Exception):
    """Raised when the storage cannot carry out a request."""


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _message_key(message_id: MessageId) -> str:
    if isinstance(message_id, uuid.UUID):
        return str(message_id)
    try:
        return str(uuid.UUID(message_id))
    except (ValueError, TypeError, AttributeError) as exc:
        raise StorageError(f"invalid message id: {message_id!r}") from exc


@dataclass
class _QueueMessage:
    id: str
    data: bytes
    timestamp: int
    delivery_count: int = 0


@dataclass
class _ApplicationQueue:
    ready: deque = field(default_factory=deque)
    # message id -> (message, visibility deadline in ms)
    unacked: dict = field(default_factory=dict)

    def restore_expired(self, now: int) -> None:
        expired = [key for key, (_, deadline) in self.unacked.items() if now >= deadline]
        for key in expired:
            message, _ = self.unacked.pop(key)
            message.delivery_count += 1
            self.ready.append(message)


@dataclass
class _Broadcast:
    message: _QueueMessage
    delivered_to: set = field(default_factory=set)


@dataclass
class _QueueState:
    shared: deque = field(default_factory=deque)
    broadcasts: list = field(default_factory=list)
    app_queues: dict = field(default_factory=dict)

    def app_queue(self, application: str) -> _ApplicationQueue:
        existing = self.app_queues.get(application)
        if existing is not None:
            return existing
        created = _ApplicationQueue()
        self.app_queues[application] = created
        # A newly seen application gets every broadcast still pending.
        for broadcast in self.broadcasts:
            if application not in broadcast.delivered_to:
                created.ready.append(replace(broadcast.message))
                broadcast.delivered_to.add(application)
        return created

    def restore_expired(self, now: int) -> None:
        for app_queue in self.app_queues.values():
            app_queue.restore_expired(now)

    def distribute_broadcasts(self) -> None:
        remaining = []
        for broadcast in self.broadcasts:
            for name, app_queue in self.app_queues.items():
                if name not in broadcast.delivered_to:
                    app_queue.ready.append(replace(broadcast.message))
                    broadcast.delivered_to.add(name)
            fully_delivered = bool(self.app_queues) and all(
                name in broadcast.delivered_to for name in self.app_queues
            )
            if not fully_delivered:
                remaining.append(broadcast)
        self.broadcasts = remaining


class InMemoryStorage:
    """Queues kept in memory, with a background task restoring expired messages."""

    def __init__(self) -> None:
        self._queues: dict[str, _QueueState] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    async def create(cls, path=None) -> "InMemoryStorage":
        """Create the storage and start its cleanup task; the path is unused."""
        storage = cls()
        storage._cleanup_task = asyncio.get_running_loop().create_task(storage._cleanup_loop())
        return storage

    def _queue(self, name: str) -> _QueueState:
        return self._queues.setdefault(name, _QueueState())

    async def _cleanup_loop(self) -> None:
        while True:
            self.restore_expired()
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)

    def restore_expired(self, now: Optional[int] = None) -> None:
        """Return timed-out messages to their ready queues and hand out broadcasts."""
        if now is None:
            now = _now_ms()
        for state in self._queues.values():
            state.restore_expired(now)
            state.distribute_broadcasts()

    async def push(self, queue: str, data: bytes, is_broadcast: bool) -> bool:
        state = self._queue(queue)
        message = _QueueMessage(id=str(uuid.uuid4()), data=bytes(data), timestamp=_now_ms())
        if is_broadcast:
            state.broadcasts.append(_Broadcast(message))
            state.distribute_broadcasts()
        else:
            state.shared.append(message)
        return True

    async def pop(
        self, queue: str, application: str, invisibility_timeout_ms: int
    ) -> Optional[Message]:
        state = self._queue(queue)
        now = _now_ms()
        app_queue = state.app_queue(application)
        app_queue.restore_expired(now)

        if app_queue.ready:
            message = app_queue.ready.popleft()
        elif state.shared:
            message = state.shared.popleft()
        else:
            return None

        message.delivery_count += 1
        app_queue.unacked[message.id] = (message, now + invisibility_timeout_ms)
        return Message(message.id, message.data, delivered=True)

    async def commit(self, message_id: MessageId, queue: str, application: str) -> bool:
        key = _message_key(message_id)
        app_queue = self._queue(queue).app_queues.get(application)
        if app_queue is not None and key in app_queue.unacked:
            del app_queue.unacked[key]
            return True
        return False

    async def rollback(self, message_id: MessageId, queue: str, application: str) -> bool:
        key = _message_key(message_id)
        app_queue = self._queue(queue).app_queues.get(application)
        if app_queue is not None and key in app_queue.unacked:
            message, _ = app_queue.unacked.pop(key)
            app_queue.ready.appendleft(message)
            return True
        return False

    def close(self) -> None:
        """Stop the cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None


class Storage:
    """Front for the storage backend used by the broker."""

    def __init__(self, inner: InMemoryStorage) -> None:
        self._inner = inner

    @classmethod
    async def create(cls, base_path="") -> "Storage":
        return cls(await InMemoryStorage.create(base_path))

    async def push(self, queue: str, data: bytes, is_broadcast: bool) -> bool:
        return await self._inner.push(queue, data, is_broadcast)

    async def pop(
        self, queue: str, application: str, invisibility_timeout_ms: int
    ) -> Optional[Message]:
        return await self._inner.pop(queue, application, invisibility_timeout_ms)

    async def commit(self, message_id: MessageId, queue: str, application: str) -> bool:
        return await self._inner.commit(message_id, queue, application)

    async def rollback(self, message_id: MessageId, queue: str, application: str) -> bool:
        return await self._inner.rollback(message_id, queue, application)

    def close(self) -> None:
        self._inner.close()