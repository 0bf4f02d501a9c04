import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import NamedTuple

import grpc
import pytest

from mesg.controller import MesgController
from mesg.protocol import (
    SERVICE_NAME,
    CommitRequest,
    PullRequest,
    PullResponse,
    PushRequest,
    PushResponse,
    RollbackRequest,
)
from mesg.service import MesgService
from mesg.storage import Storage
from mesg.transport import MesgGrpcService, build_handler


class _AbortCalled(Exception):
    def __init__(self, code, details):
        super().__init__(details)
        self.code = code


class _Context:
    async def abort(self, code, details=""):
        raise _AbortCalled(code, details)


class _Details(NamedTuple):
    method: str


@asynccontextmanager
async def _service():
    storage = await Storage.create()
    controller = MesgController(storage)
    try:
        yield MesgGrpcService(MesgService(controller)), controller
    finally:
        controller.close()
        storage.close()


@pytest.mark.asyncio
async def test_push_succeeds():
    async with _service() as (servicer, _):
        response = await servicer.push(PushRequest(queue="q", data=b"\x01"), _Context())
    assert response == PushResponse(success=True)


@pytest.mark.asyncio
async def test_pull_streams_pushed_message_and_commit():
    async with _service() as (servicer, controller):
        await servicer.push(PushRequest(queue="q", data=b"\x01\x02\x03"), _Context())
        stream = servicer.pull(
            PullRequest(queue="q", application="app", invisibility_timeout_ms=5000), _Context()
        )
        first = await asyncio.wait_for(stream.__anext__(), 5)
        committed = await servicer.commit(
            CommitRequest(id=first.id, queue="q", application="app"), _Context()
        )
        await stream.aclose()
        metrics_text = controller.metrics.write()
    assert isinstance(first, PullResponse)
    assert first.data == b"\x01\x02\x03"
    assert committed.success is True
    assert 'mesg_consumers_count { queue="q" } 0' in metrics_text


@pytest.mark.asyncio
async def test_commit_nonexistent_message_fails():
    async with _service() as (servicer, _):
        response = await servicer.commit(
            CommitRequest(id=str(uuid.uuid4()), queue="q", application="app"), _Context()
        )
    assert response.success is False


@pytest.mark.asyncio
async def test_rollback_nonexistent_message_fails():
    async with _service() as (servicer, _):
        response = await servicer.rollback(
            RollbackRequest(id=str(uuid.uuid4()), queue="q", application="app"), _Context()
        )
    assert response.success is False


@pytest.mark.asyncio
async def test_malformed_id_aborts_with_invalid_argument():
    async with _service() as (servicer, _):
        with pytest.raises(_AbortCalled) as info:
            await servicer.commit(
                CommitRequest(id="not-a-uuid", queue="q", application="app"), _Context()
            )
        with pytest.raises(_AbortCalled) as rollback_info:
            await servicer.rollback(
                RollbackRequest(id="not-a-uuid", queue="q", application="app"), _Context()
            )
    assert info.value.code == grpc.StatusCode.INVALID_ARGUMENT
    assert rollback_info.value.code == grpc.StatusCode.INVALID_ARGUMENT


@pytest.mark.asyncio
async def test_build_handler_routes_methods():
    async with _service() as (servicer, _):
        handler = build_handler(servicer)
        pull = handler.service(_Details(f"/{SERVICE_NAME}/Pull"))
        push = handler.service(_Details(f"/{SERVICE_NAME}/Push"))
        missing = handler.service(_Details(f"/{SERVICE_NAME}/Missing"))
    assert pull.response_streaming is True
    assert push.response_streaming is False
    assert missing is None
    request = PushRequest(queue="q", data=b"abc", is_broadcast=True)
    assert push.request_deserializer(request.encode()) == request
    assert push.response_serializer(PushResponse(success=True)) == PushResponse(success=True).encode()