"""Broker operations with request and response models."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from .consumer import RawConsumer
from .controller import MesgController

log = logging.getLogger(__name__)


@dataclass
class PushRequestModel:
    queue: str
    data: bytes
    is_broadcast: bool = False


@dataclass
class PushResponseModel:
    success: bool


@dataclass
class PullRequestModel:
    queue: str
    application: str
    invisibility_timeout_ms: int


@dataclass
class PullResponseModel:
    consumer: RawConsumer


@dataclass
class CommitRequestModel:
    id: str
    queue: str
    application: str


@dataclass
class CommitResponseModel:
    success: bool


@dataclass
class RollbackRequestModel:
    id: str
    queue: str
    application: str


@dataclass
class RollbackResponseModel:
    success: bool


class MesgService:
    """Push, pull, commit and rollback, with metrics recorded for each."""

    def __init__(self, controller: MesgController) -> None:
        self.controller = controller

    @property
    def metrics(self):
        return self.controller.metrics

    async def push(self, request: PushRequestModel) -> PushResponseModel:
        self.metrics.inc_push(request.queue)
        success = await self.controller.push(request.queue, request.data, request.is_broadcast)
        return PushResponseModel(success=success)

    async def pull(self, request: PullRequestModel) -> PullResponseModel:
        self.metrics.inc_consumers_count(request.queue)
        consumer = await self.controller.create_consumer(
            request.queue, request.application, request.invisibility_timeout_ms
        )
        log.info(
            "consumer connected: consumer_id: %s, queue: %s, application=%s",
            consumer.id, request.queue, request.application,
        )
        return PullResponseModel(consumer=consumer)

    async def commit(self, request: CommitRequestModel) -> CommitResponseModel:
        """Commit a delivered message; raises ValueError for a malformed id."""
        self.metrics.inc_commit(request.queue)
        message_id = uuid.UUID(request.id)
        success = await self.controller.commit(message_id, request.queue, request.application)
        return CommitResponseModel(success=success)

    async def rollback(self, request: RollbackRequestModel) -> RollbackResponseModel:
        """Roll a delivered message back; raises ValueError for a malformed id."""
        self.metrics.inc_rollback(request.queue)
        message_id = uuid.UUID(request.id)
        success = await self.controller.rollback(message_id, request.queue, request.application)
        return RollbackResponseModel(success=success)