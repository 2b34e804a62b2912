"""
Mapping between our structs and the ones kafka-python speaks.

Native "missing" markers (None, -1 sizes and timestamps) become absent values
here and nowhere else.
"""
from .serialization import deserialize
from .serialization import Deserializer
from .serialization import serialize
from .serialization import Serializer
from .structs import ConsumerRecord
from .structs import ConsumerRecords
from .structs import Header
from .structs import Node
from .structs import OffsetAndMetadata
from .structs import OffsetAndTimestamp
from .structs import PartitionInfo
from .structs import ProducerRecord
from .structs import RecordMetadata
from .structs import TimestampAndType
from .structs import TimestampType
from .structs import TopicPartition
from .structs import WithSize
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any
from typing import Callable
from typing import Dict
from typing import Iterable
from typing import List
from typing import Mapping
from typing import Optional
from typing import Set
from typing import Tuple
from typing import TypeVar

import kafka.structs

K = TypeVar("K")
V = TypeVar("V")
K2 = TypeVar("K2")
V2 = TypeVar("V2")

_NATIVE_TIMESTAMP_TYPES = {0: TimestampType.CREATE, 1: TimestampType.APPEND}
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def convert_map(
    mapping: Mapping[K, V], key: Callable[[K], K2], value: Callable[[V], V2]
) -> Dict[K2, V2]:
    return {key(k): value(v) for k, v in mapping.items()}


def convert_set(items: Optional[Iterable[K]], item: Callable[[K], K2]) -> Set[K2]:
    return {item(x) for x in items or ()}


def tp_to_native(tp: TopicPartition) -> kafka.structs.TopicPartition:
    return kafka.structs.TopicPartition(tp.topic, tp.partition)


def tp_from_native(tp: kafka.structs.TopicPartition) -> TopicPartition:
    return TopicPartition(tp.topic, tp.partition)


def tps_to_native(partitions: Iterable[TopicPartition]) -> List[kafka.structs.TopicPartition]:
    return [tp_to_native(tp) for tp in partitions]


def tps_from_native(
    partitions: Optional[Iterable[kafka.structs.TopicPartition]],
) -> Set[TopicPartition]:
    return convert_set(partitions, tp_from_native)


def offset_and_metadata_to_native(
    offset: OffsetAndMetadata,
) -> kafka.structs.OffsetAndMetadata:
    if offset.offset < 0:
        raise ValueError(f"Offset must be non negative, got {offset.offset}")
    # newer kafka-python releases track the leader epoch as a third field
    if "leader_epoch" in kafka.structs.OffsetAndMetadata._fields:
        return kafka.structs.OffsetAndMetadata(offset.offset, offset.metadata, -1)
    return kafka.structs.OffsetAndMetadata(offset.offset, offset.metadata)


def offset_and_metadata_from_native(offset: Any) -> OffsetAndMetadata:
    return OffsetAndMetadata(offset.offset, offset.metadata or "")


def offsets_to_native(
    offsets: Mapping[TopicPartition, OffsetAndMetadata]
) -> Dict[kafka.structs.TopicPartition, kafka.structs.OffsetAndMetadata]:
    return convert_map(offsets, tp_to_native, offset_and_metadata_to_native)


def offsets_from_native(
    offsets: Optional[Mapping[kafka.structs.TopicPartition, Any]]
) -> Dict[TopicPartition, OffsetAndMetadata]:
    return convert_map(offsets or {}, tp_from_native, offset_and_metadata_from_native)


def datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // timedelta(milliseconds=1)


def datetime_from_ms(value: Optional[int]) -> Optional[datetime]:
    if value is None or value < 0:
        return None
    return _EPOCH + timedelta(milliseconds=value)


def offset_and_timestamp_from_native(value: Any) -> Optional[OffsetAndTimestamp]:
    if value is None:
        return None
    return OffsetAndTimestamp(value.offset, datetime_from_ms(value.timestamp))  # type: ignore


def timestamp_and_type_from_native(
    timestamp: Optional[int], timestamp_type: Optional[int]
) -> Optional[TimestampAndType]:
    ts = datetime_from_ms(timestamp)
    kind = _NATIVE_TIMESTAMP_TYPES.get(timestamp_type)  # type: ignore
    if ts is None or kind is None:
        return None
    return TimestampAndType(ts, kind)


def header_to_native(header: Header) -> Tuple[str, bytes]:
    return (header.key, header.value)


def header_from_native(header: Tuple[str, Optional[bytes]]) -> Header:
    key, value = header
    return Header(key, value if value is not None else b"")


def _sized(
    deserializer: Deserializer[K], topic: str, data: Optional[bytes], size: Optional[int]
) -> Optional[WithSize[K]]:
    if data is None:
        return None
    if size is None or size < 0:
        size = len(data)
    return WithSize(deserialize(deserializer, topic, data), size)


def consumer_record_from_native(
    record: Any,
    key_deserializer: Deserializer[K],
    value_deserializer: Deserializer[V],
) -> ConsumerRecord[K, V]:
    topic = record.topic
    value = record.value
    if record.key is None and not value:
        # how a record without key and value is written, see producer_record_to_native
        value = None
    return ConsumerRecord(
        topic_partition=TopicPartition(topic, record.partition),
        offset=record.offset,
        timestamp_and_type=timestamp_and_type_from_native(
            record.timestamp, record.timestamp_type
        ),
        key=_sized(key_deserializer, topic, record.key, record.serialized_key_size),
        value=_sized(value_deserializer, topic, value, record.serialized_value_size),
        headers=tuple(header_from_native(h) for h in record.headers or ()),
    )


def consumer_records_from_native(
    records: Optional[Mapping[kafka.structs.TopicPartition, Iterable[Any]]],
    key_deserializer: Deserializer[K],
    value_deserializer: Deserializer[V],
) -> ConsumerRecords[K, V]:
    return ConsumerRecords(
        convert_map(
            records or {},
            tp_from_native,
            lambda batch: [
                consumer_record_from_native(r, key_deserializer, value_deserializer)
                for r in batch
            ],
        )
    )


def producer_record_to_native(
    record: ProducerRecord[K, V],
    key_serializer: Serializer[K],
    value_serializer: Serializer[V],
) -> Dict[str, Any]:
    """Keyword arguments for `KafkaProducer.send`"""
    topic = record.topic
    key = None if record.key is None else serialize(key_serializer, topic, record.key)
    value = None if record.value is None else serialize(value_serializer, topic, record.value)
    if key is None and value is None:
        # the native producer refuses records without key and value, consumers
        # read the empty value back as no value
        value = b""
    return {
        "topic": topic,
        "key": key,
        "value": value,
        "partition": record.partition,
        "timestamp_ms": None if record.timestamp is None else datetime_to_ms(record.timestamp),
        "headers": [header_to_native(h) for h in record.headers],
    }


def record_metadata_from_native(metadata: Any, acks_offset: bool = True) -> RecordMetadata:
    offset = metadata.offset
    if not acks_offset or offset is None or offset < 0:
        offset = None

    def size(value: Optional[int]) -> Optional[int]:
        if value is None or value < 0:
            return None
        return value

    return RecordMetadata(
        topic_partition=TopicPartition(metadata.topic, metadata.partition),
        offset=offset,
        timestamp=datetime_from_ms(metadata.timestamp),
        key_size=size(getattr(metadata, "serialized_key_size", None)),
        value_size=size(getattr(metadata, "serialized_value_size", None)),
    )


def node_from_native(node_id: Optional[int], cluster: Any) -> Optional[Node]:
    if node_id is None or node_id < 0:
        return None
    broker = cluster.broker_metadata(node_id)
    if broker is None:
        return Node(node_id, "", -1)
    return Node(broker.nodeId, broker.host, broker.port, broker.rack)


def partition_info_from_native(metadata: Any, cluster: Any) -> PartitionInfo:
    return PartitionInfo(
        topic=metadata.topic,
        partition=metadata.partition,
        leader=node_from_native(metadata.leader, cluster),
        replicas=tuple(
            n for n in (node_from_native(r, cluster) for r in metadata.replicas or ()) if n
        ),
        in_sync_replicas=tuple(
            n for n in (node_from_native(r, cluster) for r in metadata.isr or ()) if n
        ),
    )


def partition_infos_from_cluster(
    cluster: Any, topic: str, partitions: Optional[Iterable[int]]
) -> List[PartitionInfo]:
    """
    Build partition infos from the client's cached cluster metadata. Partitions
    the cache knows no details for only get their leader filled in.
    """
    known = getattr(cluster, "_partitions", {}).get(topic, {})
    infos = []
    for partition in sorted(partitions or ()):
        metadata = known.get(partition)
        if metadata is not None:
            infos.append(partition_info_from_native(metadata, cluster))
        else:
            leader = cluster.leader_for_partition(kafka.structs.TopicPartition(topic, partition))
            infos.append(PartitionInfo(topic, partition, node_from_native(leader, cluster)))
    return infos
