from .config import ConsumerConfig
from .converters import consumer_records_from_native
from .converters import convert_map
from .converters import datetime_to_ms
from .converters import offset_and_metadata_from_native
from .converters import offset_and_timestamp_from_native
from .converters import offsets_from_native
from .converters import offsets_to_native
from .converters import partition_infos_from_cluster
from .converters import tp_from_native
from .converters import tp_to_native
from .converters import tps_from_native
from .converters import tps_to_native
from .exceptions import DeserializationError
from .exceptions import InvalidStateError
from .exceptions import translate_error
from .exceptions import translate_errors
from .exceptions import WakeupError
from .metrics import CONSUMED_MESSAGES
from .metrics import CONSUMER_REBALANCED
from .metrics import watch_kafka
from .serialization import bytes_deserializer
from .serialization import Deserializer
from .structs import ConsumerRecords
from .structs import Offset
from .structs import OffsetAndMetadata
from .structs import OffsetAndTimestamp
from .structs import PartitionInfo
from .structs import Topic
from .structs import TopicPartition
from .utils import failed_future
from .utils import Promise
from .utils import run_blocking
from concurrent.futures import Executor
from concurrent.futures.thread import ThreadPoolExecutor
from datetime import datetime
from types import TracebackType
from typing import Any
from typing import Callable
from typing import Dict
from typing import Generic
from typing import Iterable
from typing import List
from typing import Mapping
from typing import Optional
from typing import Pattern
from typing import Set
from typing import Type
from typing import TypeVar
from typing import Union

import asyncio
import kafka
import logging
import threading
import time

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T")

CommitResult = Dict[TopicPartition, OffsetAndMetadata]


class RebalanceListener:
    """
    Override the callbacks you need. They are invoked from the thread running
    the native poll, while the poll future is still pending.
    """

    def on_partitions_assigned(self, partitions: Set[TopicPartition]) -> None:
        ...

    def on_partitions_revoked(self, partitions: Set[TopicPartition]) -> None:
        ...


class _NativeRebalanceListener(kafka.ConsumerRebalanceListener):
    def __init__(self, listener: RebalanceListener):
        self.listener = listener

    def on_partitions_revoked(self, revoked: Iterable[kafka.TopicPartition]) -> None:
        CONSUMER_REBALANCED.labels(event="revoked").inc()
        self.listener.on_partitions_revoked(tps_from_native(revoked))

    def on_partitions_assigned(self, assigned: Iterable[kafka.TopicPartition]) -> None:
        CONSUMER_REBALANCED.labels(event="assigned").inc()
        self.listener.on_partitions_assigned(tps_from_native(assigned))


def _non_empty(items: Iterable[T], name: str) -> List[T]:
    result = list(items)
    if not result:
        raise ValueError(f"'{name}' must not be empty")
    return result


class Consumer(Generic[K, V]):
    """
    Non-blocking facade over a kafka-python `KafkaConsumer`.

    The native consumer must not be used from two threads at once. This
    adapter does not lock around it: holding a `Consumer` is the exclusive
    access token for the native handle, and callers must not run two
    poll/commit/seek sequences on the same instance concurrently. `wakeup`
    is the only method that may be called from any thread at any time.

    Operations that only touch local state (assignment, subscription, seek,
    pause) run synchronously. Everything that may block on the network is run
    on `executor` and returned as an `asyncio.Future`; failures are only ever
    reported through that future.

    The native consumer has to hand back raw bytes, decoding happens here
    with the given deserializers so they can see the topic name.
    """

    def __init__(
        self,
        native: kafka.KafkaConsumer,
        key_deserializer: Deserializer[K] = bytes_deserializer,  # type: ignore
        value_deserializer: Deserializer[V] = bytes_deserializer,  # type: ignore
        *,
        executor: Optional[Executor] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        wakeup_interval: float = 0.1,
    ):
        self._native = native
        self._key_deserializer = key_deserializer
        self._value_deserializer = value_deserializer
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="kafkabridge-consumer"
        )
        self._loop = loop
        self._wakeup_interval = wakeup_interval
        self._wakeup = threading.Event()
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: ConsumerConfig,
        key_deserializer: Deserializer[K] = bytes_deserializer,  # type: ignore
        value_deserializer: Deserializer[V] = bytes_deserializer,  # type: ignore
        *,
        executor: Optional[Executor] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> "Consumer[K, V]":
        with translate_errors("consumer_start"), watch_kafka("consumer_start"):
            native = kafka.KafkaConsumer(**config.to_native())
        logger.info(f"Created kafka consumer for group {config.group_id}")
        return cls(
            native, key_deserializer, value_deserializer, executor=executor, loop=loop
        )

    def __repr__(self) -> str:
        return f"<Consumer: {self._native!r}, closed: {self._closed}>"

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "Consumer[K, V]":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]] = None,
        exc: Optional[BaseException] = None,
        traceback: Optional[TracebackType] = None,
    ) -> None:
        if not self._closed:
            await self.close()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def _check_open(self, action: str) -> None:
        if self._closed:
            raise InvalidStateError(f"{action}: consumer is closed")

    def _blocking(self, action: str, func: Callable[[], T]) -> "asyncio.Future[T]":
        loop = self._get_loop()
        if self._closed:
            return failed_future(loop, InvalidStateError(f"{action}: consumer is closed"))

        def watched() -> T:
            with watch_kafka(action):
                return func()

        return run_blocking(loop, self._executor, watched)

    def _local(self, action: str, func: Callable[..., T], *args: Any) -> T:
        self._check_open(action)
        with translate_errors(action):
            return func(*args)

    # Assignment and subscription bookkeeping, no network round-trip

    def assign(self, partitions: Iterable[TopicPartition]) -> None:
        native_partitions = tps_to_native(_non_empty(partitions, "partitions"))
        self._local("assign", self._native.assign, native_partitions)

    def assignment(self) -> Set[TopicPartition]:
        return tps_from_native(self._local("assignment", self._native.assignment))

    def subscribe(
        self, topics: Iterable[Topic], listener: Optional[RebalanceListener] = None
    ) -> None:
        topics = _non_empty(topics, "topics")
        self._local(
            "subscribe",
            lambda: self._native.subscribe(
                topics=topics, listener=_NativeRebalanceListener(listener or RebalanceListener())
            ),
        )

    def subscribe_pattern(
        self, pattern: Union[str, Pattern[str]], listener: Optional[RebalanceListener] = None
    ) -> None:
        if not isinstance(pattern, str):
            pattern = pattern.pattern
        self._local(
            "subscribe",
            lambda: self._native.subscribe(
                pattern=pattern,
                listener=_NativeRebalanceListener(listener or RebalanceListener()),
            ),
        )

    def subscription(self) -> Set[Topic]:
        return set(self._local("subscription", self._native.subscription) or ())

    def unsubscribe(self) -> "asyncio.Future[None]":
        def unsubscribe() -> None:
            with translate_errors("unsubscribe"):
                self._native.unsubscribe()

        return self._blocking("unsubscribe", unsubscribe)

    # Fetching

    def poll(self, timeout: float) -> "asyncio.Future[ConsumerRecords[K, V]]":
        """
        Fetch the next batch, waiting at most `timeout` seconds for one.

        The wait is split in native polls of at most `wakeup_interval` seconds
        so a concurrent `wakeup()` is noticed. A poll that has been woken up
        fails with `WakeupError`.

        When a fetched record cannot be decoded the poll fails with
        `DeserializationError` and the positions go back to the start of the
        fetched batch, so no record is skipped.
        """

        def poll() -> ConsumerRecords[K, V]:
            deadline = time.monotonic() + max(timeout, 0.0)
            while True:
                if self._wakeup.is_set():
                    self._wakeup.clear()
                    raise WakeupError("poll interrupted by wakeup")
                remaining = max(deadline - time.monotonic(), 0.0)
                last = remaining <= self._wakeup_interval
                with translate_errors("poll"):
                    fetched = self._native.poll(
                        timeout_ms=int(min(remaining, self._wakeup_interval) * 1000)
                    )
                if fetched or last:
                    break

            try:
                records = consumer_records_from_native(
                    fetched, self._key_deserializer, self._value_deserializer
                )
            except DeserializationError:
                # nothing of the batch is returned, so fetch all of it again
                with translate_errors("poll"):
                    for native_tp, batch in fetched.items():
                        if batch:
                            self._native.seek(native_tp, batch[0].offset)
                raise
            for tp, batch in records.items():
                CONSUMED_MESSAGES.labels(topic=tp.topic, partition=tp.partition).inc(len(batch))
            return records

        return self._blocking("poll", poll)

    def wakeup(self) -> None:
        """
        Interrupt the running poll, or the next one if none is running.
        Safe to call from any thread.
        """
        self._check_open("wakeup")
        self._wakeup.set()
        client = getattr(self._native, "_client", None)
        if client is not None:
            # cut the current network wait short
            client.wakeup()

    # Offsets

    def commit(
        self, offsets: Optional[Mapping[TopicPartition, OffsetAndMetadata]] = None
    ) -> "asyncio.Future[None]":
        """
        Commit synchronously on the blocking executor. The future resolves once
        the broker has acknowledged and fails, without retry, otherwise.
        """
        def commit() -> None:
            native_offsets = None if offsets is None else offsets_to_native(offsets)
            with translate_errors("commit"):
                if native_offsets is None:
                    self._native.commit()
                else:
                    self._native.commit(offsets=native_offsets)

        return self._blocking("commit", commit)

    def commit_later(
        self, offsets: Optional[Mapping[TopicPartition, OffsetAndMetadata]] = None
    ) -> "asyncio.Future[CommitResult]":
        """
        Register an asynchronous commit. The native client calls back once the
        broker answered, which can only happen while it is being polled.

        The returned future is resolved exactly once: by the callback with the
        committed offsets or its error, or with the error raised while
        registering the commit.
        """
        loop = self._get_loop()
        if self._closed:
            return failed_future(loop, InvalidStateError("commit_later: consumer is closed"))

        promise: Promise[CommitResult] = Promise(loop)

        def callback(native_offsets: Any, response: Any) -> None:
            if isinstance(response, BaseException):
                promise.failure(translate_error("commit_later", response))
            else:
                promise.success(offsets_from_native(native_offsets))

        try:
            native_offsets = None if offsets is None else offsets_to_native(offsets)
            with translate_errors("commit_later"):
                if native_offsets is None:
                    self._native.commit_async(callback=callback)
                else:
                    self._native.commit_async(offsets=native_offsets, callback=callback)
        except Exception as exc:
            promise.failure(exc)
        return promise.future

    def seek(self, partition: TopicPartition, offset: Offset) -> None:
        if offset < 0:
            raise ValueError(f"Offset must be non negative, got {offset}")
        self._local("seek", self._native.seek, tp_to_native(partition), offset)

    def seek_to_beginning(self, partitions: Iterable[TopicPartition]) -> None:
        native_partitions = tps_to_native(_non_empty(partitions, "partitions"))
        self._local("seek_to_beginning", self._native.seek_to_beginning, *native_partitions)

    def seek_to_end(self, partitions: Iterable[TopicPartition]) -> None:
        native_partitions = tps_to_native(_non_empty(partitions, "partitions"))
        self._local("seek_to_end", self._native.seek_to_end, *native_partitions)

    def position(self, partition: TopicPartition) -> "asyncio.Future[Offset]":
        def position() -> Offset:
            with translate_errors("position"):
                return self._native.position(tp_to_native(partition))

        return self._blocking("position", position)

    def committed(
        self, partition: TopicPartition
    ) -> "asyncio.Future[Optional[OffsetAndMetadata]]":
        """Resolves with None when nothing was committed for the partition yet"""

        def committed() -> Optional[OffsetAndMetadata]:
            with translate_errors("committed"):
                result = self._native.committed(tp_to_native(partition), metadata=True)
            if result is None:
                return None
            return offset_and_metadata_from_native(result)

        return self._blocking("committed", committed)

    # Metadata

    def partitions_for(self, topic: Topic) -> "asyncio.Future[List[PartitionInfo]]":
        def partitions_for() -> List[PartitionInfo]:
            with translate_errors("partitions_for"):
                partitions = self._native.partitions_for_topic(topic)
                return partition_infos_from_cluster(
                    self._native._client.cluster, topic, partitions
                )

        return self._blocking("partitions_for", partitions_for)

    def list_topics(self) -> "asyncio.Future[Dict[Topic, List[PartitionInfo]]]":
        def list_topics() -> Dict[Topic, List[PartitionInfo]]:
            with translate_errors("list_topics"):
                topics = self._native.topics()
                cluster = self._native._client.cluster
                return {
                    topic: partition_infos_from_cluster(
                        cluster, topic, cluster.partitions_for_topic(topic)
                    )
                    for topic in sorted(topics)
                }

        return self._blocking("list_topics", list_topics)

    # Flow control, local only

    def pause(self, partitions: Iterable[TopicPartition]) -> None:
        native_partitions = tps_to_native(_non_empty(partitions, "partitions"))
        self._local("pause", self._native.pause, *native_partitions)

    def paused(self) -> Set[TopicPartition]:
        return tps_from_native(self._local("paused", self._native.paused))

    def resume(self, partitions: Iterable[TopicPartition]) -> None:
        native_partitions = tps_to_native(_non_empty(partitions, "partitions"))
        self._local("resume", self._native.resume, *native_partitions)

    # Offset lookups

    def offsets_for_times(
        self, timestamps: Mapping[TopicPartition, Union[datetime, int]]
    ) -> "asyncio.Future[Dict[TopicPartition, Optional[OffsetAndTimestamp]]]":
        """
        Timestamps are datetimes or epoch milliseconds. Partitions without a
        record at or after the timestamp map to None.
        """
        def offsets_for_times() -> Dict[TopicPartition, Optional[OffsetAndTimestamp]]:
            native_timestamps = convert_map(
                timestamps,
                tp_to_native,
                lambda ts: datetime_to_ms(ts) if isinstance(ts, datetime) else int(ts),
            )
            with translate_errors("offsets_for_times"):
                result = self._native.offsets_for_times(native_timestamps)
            return convert_map(result, tp_from_native, offset_and_timestamp_from_native)

        return self._blocking("offsets_for_times", offsets_for_times)

    def beginning_offsets(
        self, partitions: Iterable[TopicPartition]
    ) -> "asyncio.Future[Dict[TopicPartition, Offset]]":
        return self._offsets("beginning_offsets", partitions)

    def end_offsets(
        self, partitions: Iterable[TopicPartition]
    ) -> "asyncio.Future[Dict[TopicPartition, Offset]]":
        return self._offsets("end_offsets", partitions)

    def _offsets(
        self, action: str, partitions: Iterable[TopicPartition]
    ) -> "asyncio.Future[Dict[TopicPartition, Offset]]":
        partitions = list(partitions)

        def offsets() -> Dict[TopicPartition, Offset]:
            native_partitions = tps_to_native(_non_empty(partitions, "partitions"))
            with translate_errors(action):
                result = getattr(self._native, action)(native_partitions)
            return convert_map(result, tp_from_native, int)

        return self._blocking(action, offsets)

    # Lifecycle

    def close(self, timeout: Optional[float] = None) -> "asyncio.Future[None]":
        """
        Release the native consumer, committing first when auto commit is
        enabled. Every call made after this one fails.
        """

        def close() -> None:
            with translate_errors("close"):
                if timeout is None:
                    self._native.close()
                else:
                    self._native.close(timeout_ms=int(timeout * 1000))

        fut = self._blocking("consumer_stop", close)
        if not self._closed:
            self._closed = True
            fut.add_done_callback(self._on_closed)
        return fut

    def _on_closed(self, fut: asyncio.Future) -> None:
        if not fut.cancelled() and fut.exception() is not None:
            logger.warning(f"Consumer {self} did not close cleanly", exc_info=fut.exception())
        else:
            logger.info(f"Consumer {self} closed")
        if self._owns_executor:
            self._executor.shutdown(wait=False)