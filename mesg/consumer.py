"""Consumers: background delivery of queued messages to connected clients."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from .message import Message
from .metrics import MetricsWriter
from .storage import Storage, StorageError

log = logging.getLogger(__name__)

CONSUMER_BUFFER_SIZE = 4096
MIN_POLL_INTERVAL_MS = 10
MAX_POLL_INTERVAL_MS = 500
BACKOFF_MULTIPLIER = 2
SEND_PAUSE_SECONDS = 0.005


class _ChannelClosed(Exception):
    """Raised when data is sent to a consumer whose receiving end is closed."""


class _Channel(asyncio.Queue):
    """Bounded queue whose receiving end can be closed."""

    def __init__(self, maxsize: int = 0) -> None:
        super().__init__(maxsize)
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def put(self, item) -> None:
        if self.closed:
            raise _ChannelClosed("consumer channel is closed")
        await super().put(item)


@dataclass(frozen=True)
class ConsumerDto:
    """A message as delivered to a consumer."""

    id: str
    data: bytes

    @classmethod
    def from_message(cls, message: Message) -> "ConsumerDto":
        return cls(id=message.id, data=bytes(message.data))


@dataclass(frozen=True)
class ConsumerConfig:
    consumer_id: int
    queue: str
    application: str
    invisibility_timeout: int


@dataclass
class ConsumerStatistics:
    """Time of the last consumed message, per consumer, in milliseconds."""

    statistics: dict = field(default_factory=dict)

    def consumed(self, consumer_id: int) -> None:
        self.statistics[consumer_id] = time.time_ns() // 1_000_000


class ConsumerBackgroundJob(ABC):
    """A task run on behalf of one consumer."""

    @abstractmethod
    def start(self, storage: Storage, config: ConsumerConfig, notify: asyncio.Event, data_queue) -> None:
        """Start the job."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the job."""


class EventsWatcher(ConsumerBackgroundJob):
    """Polls storage with exponential backoff and forwards messages to the consumer."""

    def __init__(self, statistics: Optional[ConsumerStatistics] = None) -> None:
        self.statistics = statistics if statistics is not None else ConsumerStatistics()
        self._task: Optional[asyncio.Task] = None

    def start(self, storage: Storage, config: ConsumerConfig, notify: asyncio.Event, data_queue) -> None:
        self._task = asyncio.get_running_loop().create_task(
            self._run(storage, config, notify, data_queue)
        )

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()

    async def _run(self, storage: Storage, config: ConsumerConfig, notify: asyncio.Event, data_queue) -> None:
        interval_ms = MIN_POLL_INTERVAL_MS
        log.debug(
            "consumer[id=%s] events_watcher started, queue=%s, application=%s",
            config.consumer_id, config.queue, config.application,
        )
        while True:
            try:
                message = await storage.pop(
                    config.queue, config.application, config.invisibility_timeout
                )
            except StorageError as exc:
                log.error(
                    "consumer[id=%s] storage.pop error, queue=%s, application=%s, err=%s",
                    config.consumer_id, config.queue, config.application, exc,
                )
                await asyncio.sleep(interval_ms / 1000)
                interval_ms = min(interval_ms * BACKOFF_MULTIPLIER, MAX_POLL_INTERVAL_MS)
                continue

            if message is None:
                try:
                    await asyncio.wait_for(notify.wait(), interval_ms / 1000)
                except asyncio.TimeoutError:
                    interval_ms = min(interval_ms * BACKOFF_MULTIPLIER, MAX_POLL_INTERVAL_MS)
                else:
                    notify.clear()
                    interval_ms = MIN_POLL_INTERVAL_MS
                continue

            interval_ms = MIN_POLL_INTERVAL_MS
            self.statistics.consumed(config.consumer_id)
            log.debug(
                "consumer[id=%s] received message[id=%s], queue=%s, application=%s",
                config.consumer_id, message.id, config.queue, config.application,
            )
            try:
                await data_queue.put(ConsumerDto.from_message(message))
            except _ChannelClosed as exc:
                log.warning(
                    "consumer[id=%s] send data[id=%s] error, queue=%s, application=%s, err=%s",
                    config.consumer_id, message.id, config.queue, config.application, exc,
                )
                try:
                    await storage.rollback(message.id, config.queue, config.application)
                except StorageError as rollback_error:
                    log.error(
                        "rollback error consumer_id=%s, id=%s, queue=%s, application=%s, err=%s",
                        config.consumer_id, message.id, config.queue, config.application,
                        rollback_error,
                    )
                log.warning(
                    "consumer[id=%s] events_watcher exited due to channel error",
                    config.consumer_id,
                )
                break
            # Give other consumers a chance at the queue.
            await asyncio.sleep(SEND_PAUSE_SECONDS)

        log.debug(
            "consumer[id=%s] events_watcher stopped, queue=%s, application=%s",
            config.consumer_id, config.queue, config.application,
        )


class ConsumerJobsCollection:
    """The background jobs of one consumer."""

    def __init__(self, storage: Storage, config: ConsumerConfig, data_queue) -> None:
        self.storage = storage
        self.config = config
        self.data_queue = data_queue
        self.jobs: list[ConsumerBackgroundJob] = [EventsWatcher()]

    def add_job(self, job: ConsumerBackgroundJob) -> None:
        self.jobs.append(job)

    def start(self) -> None:
        for job in self.jobs:
            job.start(self.storage, self.config, asyncio.Event(), self.data_queue)

    def shutdown(self) -> None:
        for job in self.jobs:
            job.stop()


class Consumer:
    """Server-side state of a connected consumer; its jobs start at once."""

    def __init__(
        self,
        consumer_id: int,
        storage: Storage,
        queue: str,
        application: str,
        invisibility_timeout: int,
        data_queue,
    ) -> None:
        self.id = consumer_id
        config = ConsumerConfig(consumer_id, queue, application, invisibility_timeout)
        self.jobs = ConsumerJobsCollection(storage, config, data_queue)
        self.jobs.start()

    def shutdown(self) -> None:
        log.debug("shutting down consumer[id=%s] jobs", self.id)
        self.jobs.shutdown()


@dataclass
class ConsumerHandle:
    id: int
    queue: str
    application: str
    data_queue: asyncio.Queue
    shutdown_queue: asyncio.Queue


class RawConsumer:
    """Client-side end of a consumer: receives messages and reports disconnection."""

    def __init__(
        self,
        consumer_id: int,
        queue: str,
        application: str,
        receiver: asyncio.Queue,
        shutdown_channel: asyncio.Queue,
        metrics: Optional[MetricsWriter] = None,
    ) -> None:
        self.id = consumer_id
        self.queue = queue
        self.application = application
        self.receiver = receiver
        self.shutdown_channel = shutdown_channel
        self.metrics = metrics
        self._closed = False

    @classmethod
    def from_handle(cls, handle: ConsumerHandle, metrics: Optional[MetricsWriter] = None) -> "RawConsumer":
        return cls(
            handle.id,
            handle.queue,
            handle.application,
            handle.data_queue,
            handle.shutdown_queue,
            metrics,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def receive(self) -> ConsumerDto:
        """Wait for the next message."""
        if self._closed:
            raise RuntimeError(f"consumer {self.id} is closed")
        return await self.receiver.get()

    def close(self) -> None:
        """Disconnect: update metrics and ask the collection to shut the consumer down."""
        if self._closed:
            return
        self._closed = True
        if self.metrics is not None:
            self.metrics.decr_consumers_count(self.queue)
        close_receiver = getattr(self.receiver, "close", None)
        if close_receiver is not None:
            close_receiver()
        log.info(
            "send shutdown message for consumer_id=%s, queue=%s, application=%s",
            self.id, self.queue, self.application,
        )
        self.shutdown_channel.put_nowait(self.id)
        log.info("consumer disconnected, consumer_id=%s", self.id)

    def __aiter__(self) -> "RawConsumer":
        return self

    async def __anext__(self) -> ConsumerDto:
        if self._closed:
            raise StopAsyncIteration
        return await self.receive()

    async def __aenter__(self) -> "RawConsumer":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class ConsumerCollection:
    """All live consumers; removes and shuts down those whose client disconnected."""

    def __init__(self) -> None:
        self._ids = itertools.count()
        self._consumers: list[Consumer] = []
        self._shutdown_queue: asyncio.Queue = asyncio.Queue()
        self._waiter: Optional[asyncio.Task] = None

    def _ensure_waiter(self) -> None:
        if self._waiter is None:
            self._waiter = asyncio.get_running_loop().create_task(self._wait_shutdowns())

    async def _wait_shutdowns(self) -> None:
        while True:
            consumer_id = await self._shutdown_queue.get()
            consumer = next((c for c in self._consumers if c.id == consumer_id), None)
            if consumer is None:
                log.warning("consumer[id=%s] removing error: not found", consumer_id)
                continue
            self._consumers.remove(consumer)
            consumer.shutdown()
            log.info("consumer[id=%s] removed", consumer_id)

    async def add_consumer(
        self, storage: Storage, queue: str, application: str, invisibility_timeout_ms: int
    ) -> ConsumerHandle:
        self._ensure_waiter()
        data_queue = _Channel(CONSUMER_BUFFER_SIZE)
        consumer_id = next(self._ids)
        consumer = Consumer(
            consumer_id, storage, queue, application, invisibility_timeout_ms, data_queue
        )
        self._consumers.append(consumer)
        log.info(
            "consumer[id=%s] created, queue=%s, application=%s",
            consumer_id, queue, application,
        )
        return ConsumerHandle(consumer_id, queue, application, data_queue, self._shutdown_queue)

    def close(self) -> None:
        """Stop the shutdown waiter and every consumer."""
        if self._waiter is not None:
            self._waiter.cancel()
            self._waiter = None
        for consumer in self._consumers:
            consumer.shutdown()
        self._consumers.clear()

    def __len__(self) -> int:
        return len(self._consumers)