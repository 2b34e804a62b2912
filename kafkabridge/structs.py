from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from datetime import datetime
from typing import Any
from typing import Dict
from typing import Generic
from typing import Iterable
from typing import Iterator
from typing import List
from typing import Mapping
from typing import NamedTuple
from typing import Optional
from typing import Tuple
from typing import TypeVar

import enum

K = TypeVar("K")
V = TypeVar("V")

Topic = str
Offset = int
Partition = int


class TopicPartition(NamedTuple):
    """A topic and partition tuple"""

    topic: Topic
    partition: Partition


class OffsetAndMetadata(NamedTuple):
    """
    A committed read position. The metadata is an opaque string stored by the
    broker alongside the offset.
    """

    offset: Offset
    metadata: str = ""


class OffsetAndTimestamp(NamedTuple):
    offset: Offset
    timestamp: datetime


class Node(NamedTuple):
    id: int
    host: str
    port: int
    rack: Optional[str] = None


class PartitionInfo(NamedTuple):
    """Topology of a partition as known from the last metadata refresh"""

    topic: Topic
    partition: Partition
    leader: Optional[Node]
    replicas: Tuple[Node, ...] = ()
    in_sync_replicas: Tuple[Node, ...] = ()


class Header(NamedTuple):
    key: str
    value: bytes


class TimestampType(enum.Enum):
    CREATE = "create"
    APPEND = "append"


class TimestampAndType(NamedTuple):
    timestamp: datetime
    type: TimestampType


class WithSize(NamedTuple, Generic[V]):
    """A decoded value together with the size of its encoded form"""

    value: V
    serialized_size: int


class RecordMetadata(NamedTuple):
    """
    What the broker acknowledged for a sent record. `offset` is None when the
    producer does not wait for acknowledgments.
    """

    topic_partition: TopicPartition
    offset: Optional[Offset] = None
    timestamp: Optional[datetime] = None
    key_size: Optional[int] = None
    value_size: Optional[int] = None


@dataclass(frozen=True)
class ConsumerRecord(Generic[K, V]):
    topic_partition: TopicPartition
    offset: Offset
    timestamp_and_type: Optional[TimestampAndType] = None
    key: Optional[WithSize[K]] = None
    value: Optional[WithSize[V]] = None
    headers: Tuple[Header, ...] = ()

    @property
    def topic(self) -> Topic:
        return self.topic_partition.topic

    @property
    def partition(self) -> Partition:
        return self.topic_partition.partition

    @property
    def timestamp(self) -> Optional[datetime]:
        if self.timestamp_and_type is None:
            return None
        return self.timestamp_and_type.timestamp

    def copy(self, **changes: Any) -> "ConsumerRecord[K, V]":
        return replace(self, **changes)


@dataclass(frozen=True)
class ProducerRecord(Generic[K, V]):
    """
    A record to send. A record without key and value is still valid. It is
    written with a zero byte value, which consumers read back as no value.
    """

    topic: Topic
    value: Optional[V] = None
    key: Optional[K] = None
    partition: Optional[Partition] = None
    timestamp: Optional[datetime] = None
    headers: Tuple[Header, ...] = field(default=())

    def __post_init__(self) -> None:
        # accept any iterable of headers but keep the record immutable
        if not isinstance(self.headers, tuple):
            object.__setattr__(self, "headers", tuple(self.headers))


class ConsumerRecords(Mapping[TopicPartition, Tuple[ConsumerRecord[K, V], ...]]):
    """
    One poll batch. Partitions keep the order the client returned them in and
    records keep their offset order within a partition.
    """

    __slots__ = ("_records",)

    def __init__(
        self,
        records: Optional[
            Mapping[TopicPartition, Iterable[ConsumerRecord[K, V]]]
        ] = None,
    ):
        self._records: Dict[TopicPartition, Tuple[ConsumerRecord[K, V], ...]] = {
            tp: tuple(batch) for tp, batch in (records or {}).items()
        }

    @classmethod
    def empty(cls) -> "ConsumerRecords[K, V]":
        return cls()

    def __getitem__(self, tp: TopicPartition) -> Tuple[ConsumerRecord[K, V], ...]:
        return self._records[tp]

    def __iter__(self) -> Iterator[TopicPartition]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ConsumerRecords):
            return self._records == other._records
        if isinstance(other, Mapping):
            return self._records == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"<ConsumerRecords partitions: {len(self._records)}, records: {self.count} >"

    @property
    def partitions(self) -> List[TopicPartition]:
        return list(self._records)

    @property
    def count(self) -> int:
        return sum(len(batch) for batch in self._records.values())

    def records(self, tp: Optional[TopicPartition] = None) -> List[ConsumerRecord[K, V]]:
        """All records of the batch, or only those of one partition"""
        if tp is not None:
            return list(self._records.get(tp, ()))
        return [record for batch in self._records.values() for record in batch]

    def is_empty(self) -> bool:
        return self.count == 0
