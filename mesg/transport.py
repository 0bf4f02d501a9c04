"""gRPC binding of the broker service."""

from __future__ import annotations

import logging

import grpc

from .protocol import (
    METHODS,
    SERVICE_NAME,
    CommitRequest,
    CommitResponse,
    PullRequest,
    PullResponse,
    PushRequest,
    PushResponse,
    RollbackRequest,
    RollbackResponse,
)
from .service import (
    CommitRequestModel,
    MesgService,
    PullRequestModel,
    PushRequestModel,
    RollbackRequestModel,
)

log = logging.getLogger(__name__)


class MesgGrpcService:
    """Maps protocol messages onto the broker service."""

    def __init__(self, inner: MesgService) -> None:
        self.inner = inner

    async def push(self, request: PushRequest, context) -> PushResponse:
        result = await self.inner.push(
            PushRequestModel(
                queue=request.queue,
                data=bytes(request.data),
                is_broadcast=request.is_broadcast,
            )
        )
        return PushResponse(success=result.success)

    async def pull(self, request: PullRequest, context):
        """Stream messages to the client until it disconnects."""
        response = await self.inner.pull(
            PullRequestModel(
                queue=request.queue,
                application=request.application,
                invisibility_timeout_ms=request.invisibility_timeout_ms,
            )
        )
        consumer = response.consumer
        try:
            async for item in consumer:
                yield PullResponse(id=str(item.id), data=bytes(item.data))
        finally:
            consumer.close()

    async def commit(self, request: CommitRequest, context) -> CommitResponse:
        try:
            result = await self.inner.commit(
                CommitRequestModel(
                    id=request.id, queue=request.queue, application=request.application
                )
            )
        except ValueError:
            await context.abort(
                grpc.StatusCode.INVALID_ARGUMENT, f"invalid message id: {request.id!r}"
            )
            raise
        return CommitResponse(success=result.success)

    async def rollback(self, request: RollbackRequest, context) -> RollbackResponse:
        try:
            result = await self.inner.rollback(
                RollbackRequestModel(
                    id=request.id, queue=request.queue, application=request.application
                )
            )
        except ValueError:
            await context.abort(
                grpc.StatusCode.INVALID_ARGUMENT, f"invalid message id: {request.id!r}"
            )
            raise
        return RollbackResponse(success=result.success)


def build_handler(servicer: MesgGrpcService) -> grpc.GenericRpcHandler:
    """Build the generic handler serving every protocol method of the servicer."""
    handlers = {}
    for method in METHODS:
        behaviour = getattr(servicer, method.name.lower())
        factory = (
            grpc.unary_stream_rpc_method_handler
            if method.server_streaming
            else grpc.unary_unary_rpc_method_handler
        )
        handlers[method.name] = factory(
            behaviour,
            request_deserializer=method.request.decode,
            response_serializer=method.response.encode,
        )
    return grpc.method_handlers_generic_handler(SERVICE_NAME, handlers)