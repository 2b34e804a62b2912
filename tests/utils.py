from kafka.errors import IllegalStateError
from kafka.structs import OffsetAndMetadata
from kafka.structs import TopicPartition
from typing import Any
from typing import Callable
from typing import Dict
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Tuple

import re
import threading
import time


class FakeRecord(NamedTuple):
    topic: str
    partition: int
    offset: int
    timestamp: int
    timestamp_type: int
    key: Optional[bytes]
    value: Optional[bytes]
    headers: List[Tuple[str, bytes]]
    checksum: Optional[int]
    serialized_key_size: int
    serialized_value_size: int
    serialized_header_size: int


class FakeRecordMetadata(NamedTuple):
    topic: str
    partition: int
    topic_partition: TopicPartition
    offset: int
    timestamp: int
    serialized_key_size: int
    serialized_value_size: int


class FakeOffsetAndTimestamp(NamedTuple):
    offset: int
    timestamp: int


class FakeBroker(NamedTuple):
    nodeId: int
    host: str
    port: int
    rack: Optional[str]


class FakePartitionMetadata(NamedTuple):
    topic: str
    partition: int
    leader: int
    replicas: List[int]
    isr: List[int]


def record_factory(
    topic: str = "topic",
    partition: int = 0,
    offset: int = 0,
    key: Optional[bytes] = b"key",
    value: Optional[bytes] = b"value",
    timestamp: int = 1_600_000_000_123,
    timestamp_type: int = 0,
    headers: Optional[List[Tuple[str, bytes]]] = None,
) -> FakeRecord:
    return FakeRecord(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=timestamp,
        timestamp_type=timestamp_type,
        key=key,
        value=value,
        headers=headers or [],
        checksum=None,
        serialized_key_size=-1 if key is None else len(key),
        serialized_value_size=-1 if value is None else len(value),
        serialized_header_size=-1,
    )


class FakeCluster:
    """
    Broker state shared by fake consumers and producers: one append only log
    per partition and the committed offsets of every group.
    """

    def __init__(self) -> None:
        self.logs: Dict[TopicPartition, List[FakeRecord]] = {}
        self.committed: Dict[str, Dict[TopicPartition, Any]] = {}
        self.brokers = {0: FakeBroker(0, "localhost", 9092, None)}
        self.lock = threading.Lock()

    def create_topic(self, topic: str, partitions: int = 1) -> None:
        with self.lock:
            for partition in range(partitions):
                self.logs.setdefault(TopicPartition(topic, partition), [])

    def topics(self) -> List[str]:
        return sorted({tp.topic for tp in self.logs})

    def partitions_for_topic(self, topic: str) -> Optional[set]:
        partitions = {tp.partition for tp in self.logs if tp.topic == topic}
        return partitions or None

    def append(
        self,
        tp: TopicPartition,
        key: Optional[bytes],
        value: Optional[bytes],
        headers: List[Tuple[str, bytes]],
        timestamp_ms: Optional[int],
    ) -> FakeRecord:
        with self.lock:
            log = self.logs.setdefault(tp, [])
            record = record_factory(
                topic=tp.topic,
                partition=tp.partition,
                offset=len(log),
                key=key,
                value=value,
                timestamp=int(time.time() * 1000) if timestamp_ms is None else timestamp_ms,
                headers=list(headers),
            )
            log.append(record)
            return record


class FakeClusterMetadata:
    def __init__(self, cluster: FakeCluster):
        self.cluster = cluster

    @property
    def _partitions(self) -> Dict[str, Dict[int, FakePartitionMetadata]]:
        result: Dict[str, Dict[int, FakePartitionMetadata]] = {}
        for tp in self.cluster.logs:
            result.setdefault(tp.topic, {})[tp.partition] = FakePartitionMetadata(
                tp.topic, tp.partition, 0, [0], [0]
            )
        return result

    def partitions_for_topic(self, topic: str) -> Optional[set]:
        return self.cluster.partitions_for_topic(topic)

    def leader_for_partition(self, tp: TopicPartition) -> Optional[int]:
        return 0 if tp in self.cluster.logs else None

    def broker_metadata(self, node_id: int) -> Optional[FakeBroker]:
        return self.cluster.brokers.get(node_id)


class FakeClient:
    def __init__(self, cluster: FakeCluster):
        self.cluster = FakeClusterMetadata(cluster)
        self.woken = threading.Event()
        self.wakeups = 0

    def wakeup(self) -> None:
        self.wakeups += 1
        self.woken.set()


class FakeFuture:
    """The callback surface of kafka-python's `FutureRecordMetadata`"""

    def __init__(self) -> None:
        self.value: Any = None
        self.exception: Optional[BaseException] = None
        self.is_done = False
        self._callbacks: List[Callable[[Any], None]] = []
        self._errbacks: List[Callable[[BaseException], None]] = []

    def success(self, value: Any) -> None:
        self.value = value
        self.is_done = True
        for callback in self._callbacks:
            callback(value)

    def failure(self, exception: BaseException) -> None:
        self.exception = exception
        self.is_done = True
        for errback in self._errbacks:
            errback(exception)

    def add_callback(self, callback: Callable[[Any], None]) -> "FakeFuture":
        if self.is_done and self.exception is None:
            callback(self.value)
        else:
            self._callbacks.append(callback)
        return self

    def add_errback(self, errback: Callable[[BaseException], None]) -> "FakeFuture":
        if self.is_done and self.exception is not None:
            errback(self.exception)
        else:
            self._errbacks.append(errback)
        return self


class FakeProducer:
    """
    Stands in for `kafka.KafkaProducer`. Sends are acknowledged right away
    unless `hold` is set, in which case `release()` acknowledges them.
    `first_send_delay` makes the first `send` call block for that long.
    """

    def __init__(
        self,
        cluster: FakeCluster,
        acks: Any = 1,
        fail_with: Optional[Exception] = None,
        first_send_delay: float = 0.0,
    ):
        self.cluster = cluster
        self.config = {"acks": acks}
        self.fail_with = fail_with
        self.first_send_delay = first_send_delay
        self.hold = False
        self.pending: List[Tuple[FakeFuture, Callable[[], Any]]] = []
        self.flushes: List[Optional[float]] = []
        self.closes: List[Optional[float]] = []
        self.closed = False

    def send(
        self,
        topic: str,
        value: Optional[bytes] = None,
        key: Optional[bytes] = None,
        headers: Optional[List[Tuple[str, bytes]]] = None,
        partition: Optional[int] = None,
        timestamp_ms: Optional[int] = None,
    ) -> FakeFuture:
        assert not (value is None and key is None), "Need at least one: key or value"
        if self.closed:
            raise IllegalStateError("Cannot send after the producer is closed")
        if self.first_send_delay:
            delay, self.first_send_delay = self.first_send_delay, 0.0
            time.sleep(delay)
        tp = TopicPartition(topic, partition or 0)
        future = FakeFuture()

        def complete() -> Any:
            if self.fail_with is not None:
                future.failure(self.fail_with)
                return
            record = self.cluster.append(tp, key, value, headers or [], timestamp_ms)
            offset = -1 if self.config["acks"] == 0 else record.offset
            future.success(
                FakeRecordMetadata(
                    topic,
                    tp.partition,
                    tp,
                    offset,
                    record.timestamp,
                    record.serialized_key_size,
                    record.serialized_value_size,
                )
            )

        if self.hold:
            self.pending.append((future, complete))
        else:
            complete()
        return future

    def release(self) -> None:
        pending, self.pending = self.pending, []
        for _, complete in pending:
            complete()

    def flush(self, timeout: Optional[float] = None) -> None:
        self.flushes.append(timeout)
        self.release()

    def close(self, timeout: Optional[float] = None) -> None:
        self.closes.append(timeout)
        self.closed = True


class FakeConsumer:
    """
    Stands in for `kafka.KafkaConsumer`, backed by a `FakeCluster`.

    Subscriptions are served without any group coordination: the first poll
    after `subscribe` assigns every partition of the matching topics.
    Asynchronous commits are applied and reported on the next poll.
    """

    def __init__(
        self,
        cluster: FakeCluster,
        group_id: Optional[str] = None,
        auto_offset_reset: str = "latest",
        enable_auto_commit: bool = False,
    ):
        self.cluster = cluster
        self.config = {
            "group_id": group_id,
            "auto_offset_reset": auto_offset_reset,
            "enable_auto_commit": enable_auto_commit,
        }
        self._client = FakeClient(cluster)
        self._assignment: List[TopicPartition] = []
        self._subscription: Optional[set] = None
        self._pattern: Optional[str] = None
        self._listener: Any = None
        self._rebalance_pending = False
        self._positions: Dict[TopicPartition, int] = {}
        self._paused: set = set()
        self._pending_commits: List[Tuple[Any, Callable]] = []
        self.commit_error: Optional[Exception] = None
        self.polls = 0
        self.closed = False
        self.close_timeout_ms: Optional[int] = None

    @property
    def group_id(self) -> Optional[str]:
        return self.config["group_id"]

    def _check_assigned(self, tp: TopicPartition) -> None:
        assert tp in self._assignment, "Partition is not assigned"

    def _reset_position(self, tp: TopicPartition) -> None:
        committed = self.cluster.committed.get(self.group_id or "", {}).get(tp)
        if committed is not None:
            self._positions[tp] = committed.offset
        elif self.config["auto_offset_reset"] == "earliest":
            self._positions[tp] = 0
        else:
            self._positions[tp] = len(self.cluster.logs.get(tp, []))

    def assign(self, partitions: List[TopicPartition]) -> None:
        if self._subscription is not None or self._pattern is not None:
            raise IllegalStateError("Subscription to topics, partitions and pattern are exclusive")
        self._assignment = list(partitions)
        for tp in self._assignment:
            self._reset_position(tp)

    def assignment(self) -> set:
        return set(self._assignment)

    def subscribe(
        self, topics: Any = (), pattern: Optional[str] = None, listener: Any = None
    ) -> None:
        if self._assignment and self._subscription is None and self._pattern is None:
            raise IllegalStateError("Subscription to topics, partitions and pattern are exclusive")
        if pattern is not None:
            self._pattern = pattern
            self._subscription = None
        else:
            self._subscription = set(topics)
            self._pattern = None
        self._listener = listener
        self._rebalance_pending = True

    def subscription(self) -> Optional[set]:
        if self._pattern is not None:
            return {t for t in self.cluster.topics() if re.match(self._pattern, t)}
        return None if self._subscription is None else set(self._subscription)

    def unsubscribe(self) -> None:
        if self._listener is not None and self._assignment:
            self._listener.on_partitions_revoked(set(self._assignment))
        self._assignment = []
        self._subscription = None
        self._pattern = None
        self._listener = None

    def _rebalance(self) -> None:
        self._rebalance_pending = False
        topics = self.subscription() or set()
        self._assignment = [tp for tp in sorted(self.cluster.logs) if tp.topic in topics]
        for tp in self._assignment:
            self._reset_position(tp)
        if self._listener is not None:
            self._listener.on_partitions_assigned(set(self._assignment))

    def _run_commit_callbacks(self) -> None:
        pending, self._pending_commits = self._pending_commits, []
        for offsets, callback in pending:
            if self.commit_error is not None:
                callback(offsets, self.commit_error)
            else:
                self._store(offsets)
                callback(offsets, None)

    def poll(self, timeout_ms: int = 0, max_records: Optional[int] = None) -> Dict:
        self.polls += 1
        if self._rebalance_pending:
            self._rebalance()
        self._run_commit_callbacks()
        fetched: Dict[TopicPartition, List[FakeRecord]] = {}
        for tp in self._assignment:
            if tp in self._paused:
                continue
            log = self.cluster.logs.get(tp, [])
            position = self._positions.get(tp, len(log))
            if position < len(log):
                fetched[tp] = log[position:]
                self._positions[tp] = len(log)
        if not fetched:
            self._client.woken.wait(timeout_ms / 1000)
            self._client.woken.clear()
        return fetched

    def seek(self, partition: TopicPartition, offset: int) -> None:
        self._check_assigned(partition)
        self._positions[partition] = offset

    def seek_to_beginning(self, *partitions: TopicPartition) -> None:
        for tp in partitions or self._assignment:
            self._check_assigned(tp)
            self._positions[tp] = 0

    def seek_to_end(self, *partitions: TopicPartition) -> None:
        for tp in partitions or self._assignment:
            self._check_assigned(tp)
            self._positions[tp] = len(self.cluster.logs.get(tp, []))

    def position(self, partition: TopicPartition) -> int:
        self._check_assigned(partition)
        return self._positions[partition]

    def _current_offsets(self) -> Dict[TopicPartition, OffsetAndMetadata]:
        result = {}
        for tp in self._assignment:
            if "leader_epoch" in OffsetAndMetadata._fields:
                result[tp] = OffsetAndMetadata(self._positions[tp], "", -1)
            else:
                result[tp] = OffsetAndMetadata(self._positions[tp], "")
        return result

    def _store(self, offsets: Dict[TopicPartition, Any]) -> None:
        group = self.cluster.committed.setdefault(self.group_id or "", {})
        group.update(offsets)

    def commit(self, offsets: Optional[Dict[TopicPartition, Any]] = None) -> None:
        assert self.group_id is not None, "Requires group_id"
        if self.commit_error is not None:
            raise self.commit_error
        self._store(self._current_offsets() if offsets is None else offsets)

    def commit_async(
        self, offsets: Optional[Dict[TopicPartition, Any]] = None, callback: Any = None
    ) -> None:
        assert self.group_id is not None, "Requires group_id"
        if offsets is None:
            offsets = self._current_offsets()
        self._pending_commits.append((offsets, callback or (lambda *args: None)))

    def committed(self, partition: TopicPartition, metadata: bool = False) -> Any:
        committed = self.cluster.committed.get(self.group_id or "", {}).get(partition)
        if committed is None or metadata:
            return committed
        return committed.offset

    def partitions_for_topic(self, topic: str) -> Optional[set]:
        return self.cluster.partitions_for_topic(topic)

    def topics(self) -> set:
        return set(self.cluster.topics())

    def pause(self, *partitions: TopicPartition) -> None:
        for tp in partitions:
            self._check_assigned(tp)
            self._paused.add(tp)

    def paused(self) -> set:
        return set(self._paused)

    def resume(self, *partitions: TopicPartition) -> None:
        for tp in partitions:
            self._paused.discard(tp)

    def offsets_for_times(self, timestamps: Dict[TopicPartition, int]) -> Dict:
        result: Dict[TopicPartition, Optional[FakeOffsetAndTimestamp]] = {}
        for tp, ts in timestamps.items():
            match = next((r for r in self.cluster.logs.get(tp, []) if r.timestamp >= ts), None)
            result[tp] = None if match is None else FakeOffsetAndTimestamp(
                match.offset, match.timestamp
            )
        return result

    def beginning_offsets(self, partitions: List[TopicPartition]) -> Dict[TopicPartition, int]:
        return {tp: 0 for tp in partitions}

    def end_offsets(self, partitions: List[TopicPartition]) -> Dict[TopicPartition, int]:
        return {tp: len(self.cluster.logs.get(tp, [])) for tp in partitions}

    def close(self, autocommit: bool = True, timeout_ms: Optional[int] = None) -> None:
        if autocommit and self.config["enable_auto_commit"] and self.group_id:
            self._store(self._current_offsets())
        self.closed = True
        self.close_timeout_ms = timeout_ms
