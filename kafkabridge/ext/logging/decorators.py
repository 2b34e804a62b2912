from ...consumer import CommitResult
from ...consumer import Consumer
from ...consumer import RebalanceListener
from ...producer import Producer
from ...structs import ConsumerRecords
from ...structs import Offset
from ...structs import OffsetAndMetadata
from ...structs import ProducerRecord
from ...structs import RecordMetadata
from ...structs import Topic
from ...structs import TopicPartition
from .record import LogModel
from datetime import datetime
from typing import Any
from typing import Dict
from typing import Generic
from typing import Iterable
from typing import Mapping
from typing import Optional
from typing import Pattern
from typing import Set
from typing import TypeVar
from typing import Union

import asyncio
import logging

K = TypeVar("K")
V = TypeVar("V")

default_logger = logging.getLogger("kafkabridge")


class SendLog(LogModel):
    topic: str
    partition: Optional[int] = None
    offset: Optional[int] = None
    error: Optional[str] = None


class PollLog(LogModel):
    partitions: int
    records: int


class CommitLog(LogModel):
    offsets: Optional[Dict[str, int]] = None


def _offsets_log(offsets: Optional[Mapping[TopicPartition, OffsetAndMetadata]]) -> CommitLog:
    if offsets is None:
        return CommitLog()
    return CommitLog(
        offsets={f"{tp.topic}-{tp.partition}": om.offset for tp, om in offsets.items()}
    )


class LoggingProducer(Generic[K, V]):
    """
    Same contract as the wrapped producer, plus a log line per completed call.
    The futures handed back are the wrapped producer's own.
    """

    def __init__(self, producer: Producer[K, V], logger: Optional[logging.Logger] = None):
        self.producer = producer
        self.logger = logger or default_logger

    def __repr__(self) -> str:
        return f"<LoggingProducer {self.producer!r}>"

    @property
    def closed(self) -> bool:
        return self.producer.closed

    async def __aenter__(self) -> "LoggingProducer[K, V]":
        return self

    async def __aexit__(self, *args: Any) -> None:
        if not self.closed:
            await self.close()

    def send(self, record: ProducerRecord[K, V]) -> "asyncio.Future[RecordMetadata]":
        fut = self.producer.send(record)
        fut.add_done_callback(lambda f: self._log_send(record, f))
        return fut

    def _log_send(self, record: ProducerRecord[K, V], fut: asyncio.Future) -> None:
        if fut.cancelled():
            self.logger.debug("Send cancelled", SendLog(topic=record.topic))
            return
        exc = fut.exception()
        if exc is not None:
            self.logger.warning(
                f"Failed to send record to {record.topic}",
                SendLog(topic=record.topic, error=repr(exc)),
                exc_info=exc,
            )
            return
        metadata: RecordMetadata = fut.result()
        self.logger.debug(
            f"Sent record to {metadata.topic_partition.topic}",
            SendLog(
                topic=metadata.topic_partition.topic,
                partition=metadata.topic_partition.partition,
                offset=metadata.offset,
            ),
        )

    def flush(self, timeout: Optional[float] = None) -> "asyncio.Future[None]":
        fut = self.producer.flush(timeout)
        fut.add_done_callback(lambda f: self._log_done("flush", f, logging.DEBUG))
        return fut

    def close(self, timeout: Optional[float] = None) -> "asyncio.Future[None]":
        fut = self.producer.close(timeout)
        fut.add_done_callback(lambda f: self._log_done("close", f, logging.INFO))
        return fut

    def _log_done(self, action: str, fut: asyncio.Future, level: int) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            self.logger.warning(f"Producer {action} failed", exc_info=exc)
        else:
            self.logger.log(level, f"Producer {action} done")


class LoggingConsumer(Generic[K, V]):
    """
    Same contract as the wrapped consumer, logging polls, commits, seeks and
    lifecycle. Synchronous calls are logged after they return.
    """

    def __init__(self, consumer: Consumer[K, V], logger: Optional[logging.Logger] = None):
        self.consumer = consumer
        self.logger = logger or default_logger

    def __repr__(self) -> str:
        return f"<LoggingConsumer {self.consumer!r}>"

    def __getattr__(self, name: str) -> Any:
        # queries without side effects are forwarded as is
        return getattr(self.consumer, name)

    async def __aenter__(self) -> "LoggingConsumer[K, V]":
        return self

    async def __aexit__(self, *args: Any) -> None:
        if not self.consumer.closed:
            await self.close()

    def _watch(self, action: str, fut: asyncio.Future, model: Optional[LogModel] = None) -> None:
        def log(f: asyncio.Future) -> None:
            if f.cancelled():
                return
            exc = f.exception()
            if exc is not None:
                self.logger.debug(f"Consumer {action} failed: {exc!r}", exc_info=exc)
            elif model is not None:
                self.logger.debug(f"Consumer {action} done", model)
            else:
                self.logger.debug(f"Consumer {action} done")

        fut.add_done_callback(log)

    def assign(self, partitions: Iterable[TopicPartition]) -> None:
        partitions = list(partitions)
        self.consumer.assign(partitions)
        self.logger.info(f"Consumer assigned to {sorted(partitions)}")

    def subscribe(
        self, topics: Iterable[Topic], listener: Optional[RebalanceListener] = None
    ) -> None:
        topics = list(topics)
        self.consumer.subscribe(topics, _LoggingRebalanceListener(self.logger, listener))
        self.logger.info(f"Consumer subscribed to {topics}")

    def subscribe_pattern(
        self, pattern: Union[str, Pattern[str]], listener: Optional[RebalanceListener] = None
    ) -> None:
        self.consumer.subscribe_pattern(pattern, _LoggingRebalanceListener(self.logger, listener))
        self.logger.info(f"Consumer subscribed to pattern {pattern}")

    def unsubscribe(self) -> "asyncio.Future[None]":
        fut = self.consumer.unsubscribe()
        self._watch("unsubscribe", fut)
        return fut

    def poll(self, timeout: float) -> "asyncio.Future[ConsumerRecords[K, V]]":
        fut = self.consumer.poll(timeout)

        def log(f: asyncio.Future) -> None:
            if f.cancelled():
                return
            exc = f.exception()
            if exc is not None:
                self.logger.debug(f"Consumer poll failed: {exc!r}")
                return
            records: ConsumerRecords = f.result()
            if records.count:
                self.logger.debug(
                    "Consumer poll done", PollLog(partitions=len(records), records=records.count)
                )

        fut.add_done_callback(log)
        return fut

    def commit(
        self, offsets: Optional[Mapping[TopicPartition, OffsetAndMetadata]] = None
    ) -> "asyncio.Future[None]":
        fut = self.consumer.commit(offsets)
        self._watch("commit", fut, _offsets_log(offsets))
        return fut

    def commit_later(
        self, offsets: Optional[Mapping[TopicPartition, OffsetAndMetadata]] = None
    ) -> "asyncio.Future[CommitResult]":
        fut = self.consumer.commit_later(offsets)
        self._watch("commit_later", fut, _offsets_log(offsets))
        return fut

    def seek(self, partition: TopicPartition, offset: Offset) -> None:
        self.consumer.seek(partition, offset)
        self.logger.debug(f"Consumer seek {partition} to {offset}")

    def seek_to_beginning(self, partitions: Iterable[TopicPartition]) -> None:
        partitions = list(partitions)
        self.consumer.seek_to_beginning(partitions)
        self.logger.debug(f"Consumer seek {sorted(partitions)} to beginning")

    def seek_to_end(self, partitions: Iterable[TopicPartition]) -> None:
        partitions = list(partitions)
        self.consumer.seek_to_end(partitions)
        self.logger.debug(f"Consumer seek {sorted(partitions)} to end")

    def pause(self, partitions: Iterable[TopicPartition]) -> None:
        partitions = list(partitions)
        self.consumer.pause(partitions)
        self.logger.debug(f"Consumer paused {sorted(partitions)}")

    def resume(self, partitions: Iterable[TopicPartition]) -> None:
        partitions = list(partitions)
        self.consumer.resume(partitions)
        self.logger.debug(f"Consumer resumed {sorted(partitions)}")

    def offsets_for_times(
        self, timestamps: Mapping[TopicPartition, Union[datetime, int]]
    ) -> "asyncio.Future":
        fut = self.consumer.offsets_for_times(timestamps)
        self._watch("offsets_for_times", fut)
        return fut

    def close(self, timeout: Optional[float] = None) -> "asyncio.Future[None]":
        fut = self.consumer.close(timeout)

        def log(f: asyncio.Future) -> None:
            if not f.cancelled() and f.exception() is None:
                self.logger.info("Consumer closed")

        fut.add_done_callback(log)
        return fut

    def wakeup(self) -> None:
        self.consumer.wakeup()
        self.logger.debug("Consumer woken up")


class _LoggingRebalanceListener(RebalanceListener):
    def __init__(self, logger: logging.Logger, listener: Optional[RebalanceListener]):
        self.logger = logger
        self.listener = listener or RebalanceListener()

    def on_partitions_assigned(self, partitions: Set[TopicPartition]) -> None:
        self.logger.info(f"Partitions assigned: {sorted(partitions)}")
        self.listener.on_partitions_assigned(partitions)

    def on_partitions_revoked(self, partitions: Set[TopicPartition]) -> None:
        self.logger.info(f"Partitions revoked: {sorted(partitions)}")
        self.listener.on_partitions_revoked(partitions)
