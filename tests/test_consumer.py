import asyncio
from contextlib import asynccontextmanager

import pytest

from mesg.consumer import (
    Consumer,
    ConsumerBackgroundJob,
    ConsumerCollection,
    ConsumerConfig,
    ConsumerDto,
    ConsumerHandle,
    ConsumerJobsCollection,
    ConsumerStatistics,
    EventsWatcher,
    RawConsumer,
)
from mesg.message import Message
from mesg.metrics import MetricsWriter
from mesg.storage import Storage


@asynccontextmanager
async def open_storage():
    storage = await Storage.create()
    try:
        yield storage
    finally:
        storage.close()


@asynccontextmanager
async def open_collection():
    collection = ConsumerCollection()
    try:
        yield collection
    finally:
        collection.close()


class RecordingJob(ConsumerBackgroundJob):
    def __init__(self):
        self.started_with = None
        self.stopped = False

    def start(self, storage, config, notify, data_queue):
        self.started_with = (storage, config, notify, data_queue)

    def stop(self):
        self.stopped = True


def test_dto_from_message_copies_id_and_data():
    dto = ConsumerDto.from_message(Message("abc", b"\x01\x02", delivered=True))
    assert dto == ConsumerDto(id="abc", data=b"\x01\x02")


def test_statistics_records_consumption():
    stats = ConsumerStatistics()
    stats.consumed(7)
    assert list(stats.statistics) == [7]
    assert stats.statistics[7] > 0


@pytest.mark.asyncio
async def test_events_watcher_forwards_messages_in_order():
    async with open_storage() as storage:
        for i in range(3):
            await storage.push("q", bytes([i]), False)
        out = asyncio.Queue()
        watcher = EventsWatcher()
        watcher.start(storage, ConsumerConfig(1, "q", "app", 5000), asyncio.Event(), out)
        try:
            received = [await asyncio.wait_for(out.get(), 2) for _ in range(3)]
        finally:
            watcher.stop()
        assert [dto.data for dto in received] == [b"\x00", b"\x01", b"\x02"]
        assert len({dto.id for dto in received}) == 3
        assert 1 in watcher.statistics.statistics


@pytest.mark.asyncio
async def test_events_watcher_delivered_message_can_be_committed():
    async with open_storage() as storage:
        await storage.push("q", b"x", False)
        out = asyncio.Queue()
        watcher = EventsWatcher()
        watcher.start(storage, ConsumerConfig(1, "q", "app", 5000), asyncio.Event(), out)
        try:
            dto = await asyncio.wait_for(out.get(), 2)
        finally:
            watcher.stop()
        assert await storage.commit(dto.id, "q", "app") is True
        assert await storage.commit(dto.id, "q", "app") is False


@pytest.mark.asyncio
async def test_jobs_collection_starts_and_stops_jobs():
    async with open_storage() as storage:
        config = ConsumerConfig(3, "q", "app", 1000)
        data_queue = asyncio.Queue()
        jobs = ConsumerJobsCollection(storage, config, data_queue)
        job = RecordingJob()
        jobs.add_job(job)
        jobs.start()
        jobs.shutdown()
        assert job.started_with[0] is storage
        assert job.started_with[1] == config
        assert isinstance(job.started_with[2], asyncio.Event)
        assert job.started_with[3] is data_queue
        assert job.stopped is True


@pytest.mark.asyncio
async def test_consumer_receives_pushed_data():
    async with open_storage() as storage:
        data_queue = asyncio.Queue()
        consumer = Consumer(5, storage, "q", "app", 5000, data_queue)
        try:
            await storage.push("q", b"hello", False)
            dto = await asyncio.wait_for(data_queue.get(), 2)
        finally:
            consumer.shutdown()
        assert consumer.id == 5
        assert dto.data == b"hello"


@pytest.mark.asyncio
async def test_collection_assigns_increasing_ids():
    async with open_storage() as storage, open_collection() as collection:
        first = await collection.add_consumer(storage, "q", "a", 1000)
        second = await collection.add_consumer(storage, "q", "b", 1000)
        assert (first.id, second.id) == (0, 1)
        assert (first.queue, first.application) == ("q", "a")
        assert len(collection) == 2


@pytest.mark.asyncio
async def test_raw_consumer_iterates_messages():
    async with open_storage() as storage, open_collection() as collection:
        for i in range(3):
            await storage.push("q", bytes([i]), False)
        handle = await collection.add_consumer(storage, "q", "app", 5000)
        consumer = RawConsumer.from_handle(handle)
        received = []
        async with consumer:
            async for dto in consumer:
                received.append(dto.data)
                if len(received) == 3:
                    break
        assert received == [b"\x00", b"\x01", b"\x02"]
        assert consumer.closed is True


@pytest.mark.asyncio
async def test_closing_raw_consumer_removes_it_from_collection():
    async with open_storage() as storage, open_collection() as collection:
        handle = await collection.add_consumer(storage, "q", "app", 5000)
        consumer = RawConsumer.from_handle(handle)
        assert len(collection) == 1
        consumer.close()
        for _ in range(100):
            if len(collection) == 0:
                break
            await asyncio.sleep(0.01)
        assert len(collection) == 0


@pytest.mark.asyncio
async def test_closing_raw_consumer_decrements_metric():
    metrics = MetricsWriter()
    async with open_storage() as storage, open_collection() as collection:
        handle = await collection.add_consumer(storage, "q", "app", 5000)
        metrics.inc_consumers_count("q")
        consumer = RawConsumer.from_handle(handle, metrics)
        consumer.close()
        consumer.close()
    assert 'mesg_consumers_count { queue="q" } 0' in metrics.write()


@pytest.mark.asyncio
async def test_receive_after_close_raises():
    async with open_storage() as storage, open_collection() as collection:
        handle = await collection.add_consumer(storage, "q", "app", 5000)
        consumer = RawConsumer.from_handle(handle)
        consumer.close()
        with pytest.raises(RuntimeError):
            await consumer.receive()


@pytest.mark.asyncio
async def test_message_rolled_back_when_consumer_channel_closed():
    async with open_storage() as storage, open_collection() as collection:
        await storage.push("q", b"keep", False)
        handle = await collection.add_consumer(storage, "q", "app", 60000)
        handle.data_queue.close()
        await asyncio.sleep(0.2)
        message = await storage.pop("q", "app", 60000)
        assert message is not None
        assert message.data == b"keep"
        assert await storage.pop("q", "app", 60000) is None


@pytest.mark.asyncio
async def test_handle_fields_feed_raw_consumer():
    shutdown = asyncio.Queue()
    data = asyncio.Queue()
    handle = ConsumerHandle(9, "q", "app", data, shutdown)
    consumer = RawConsumer.from_handle(handle)
    await data.put(ConsumerDto("id1", b"z"))
    assert await consumer.receive() == ConsumerDto("id1", b"z")
    consumer.close()
    assert shutdown.get_nowait() == 9