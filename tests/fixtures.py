from kafkabridge.consumer import Consumer
from kafkabridge.producer import Producer
from tests.utils import FakeCluster
from tests.utils import FakeConsumer
from tests.utils import FakeProducer
from unittest.mock import DEFAULT
from unittest.mock import patch

import os
import pytest_asyncio
import uuid


@pytest_asyncio.fixture()
async def kafka():
    yield os.environ.get("KAFKA", "localhost:9092").split(":")


@pytest_asyncio.fixture()
def topic_prefix():
    return uuid.uuid4().hex


@pytest_asyncio.fixture()
def cluster():
    cluster = FakeCluster()
    cluster.create_topic("topic", partitions=2)
    return cluster


@pytest_asyncio.fixture()
def native_consumer(cluster):
    return FakeConsumer(cluster, group_id="group", auto_offset_reset="earliest")


@pytest_asyncio.fixture()
def native_producer(cluster):
    return FakeProducer(cluster)


@pytest_asyncio.fixture()
async def consumer(native_consumer):
    consumer = Consumer(native_consumer, wakeup_interval=0.01)
    yield consumer
    if not consumer.closed:
        await consumer.close()


@pytest_asyncio.fixture()
async def producer(native_producer):
    producer = Producer(native_producer)
    yield producer
    if not producer.closed:
        await producer.close()


@pytest_asyncio.fixture()
def metrics():
    with patch.multiple(
        "kafkabridge.producer",
        PUBLISHED_MESSAGES=DEFAULT,
        PRODUCER_TOPIC_OFFSET=DEFAULT,
    ) as mock:
        yield mock
