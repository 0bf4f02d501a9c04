"""Broker controller: ties storage, consumers and background jobs together."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from .consumer import ConsumerCollection, RawConsumer
from .metrics import MetricsWriter
from .storage import MessageId, Storage

log = logging.getLogger(__name__)


class ControllerBackgroundJob(ABC):
    """A task the controller runs against the storage."""

    @abstractmethod
    def start(self, storage: Storage) -> None:
        """Start the job."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the job."""


class ExpiredMessageRestorerJob(ControllerBackgroundJob):
    """Keeps the set of watched queues; the storage itself restores expired messages."""

    def __init__(self) -> None:
        self.watched_queues: set[str] = set()
        self.storage: Optional[Storage] = None

    @property
    def running(self) -> bool:
        return self.storage is not None

    def start(self, storage: Storage) -> None:
        self.storage = storage

    def stop(self) -> None:
        self.storage = None
        self.watched_queues.clear()


class BackgroundJobs:
    """The controller's background jobs, all sharing one storage."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage
        self.jobs: list[ControllerBackgroundJob] = []

    def add_job(self, job: ControllerBackgroundJob) -> None:
        self.jobs.append(job)

    def start(self) -> None:
        for job in self.jobs:
            job.start(self.storage)


class MesgController:
    """Entry point for queue operations and consumer creation."""

    def __init__(self, storage: Storage, metrics: Optional[MetricsWriter] = None) -> None:
        self.storage = storage
        self.metrics = metrics if metrics is not None else MetricsWriter()
        self.consumers = ConsumerCollection()
        self.background_jobs = BackgroundJobs(storage)

    async def create_consumer(
        self, queue: str, application: str, invisibility_timeout: int
    ) -> RawConsumer:
        handle = await self.consumers.add_consumer(
            self.storage, queue, application, invisibility_timeout
        )
        return RawConsumer.from_handle(handle, self.metrics)

    async def push(self, queue: str, data: bytes, is_broadcast: bool) -> bool:
        return await self.storage.push(queue, bytes(data), is_broadcast)

    async def commit(self, message_id: MessageId, queue: str, application: str) -> bool:
        return await self.storage.commit(message_id, queue, application)

    async def rollback(self, message_id: MessageId, queue: str, application: str) -> bool:
        return await self.storage.rollback(message_id, queue, application)

    def start_jobs(self) -> None:
        self.background_jobs.start()

    def close(self) -> None:
        """Shut down every consumer and stop the background jobs."""
        self.consumers.close()
        for job in self.background_jobs.jobs:
            job.stop()