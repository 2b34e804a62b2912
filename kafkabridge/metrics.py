from types import TracebackType
from typing import Optional
from typing import Type

import prometheus_client as client
import time

NOERROR = "none"

KAFKA_ACTION = client.Counter(
    "kafkabridge_kafka_action",
    "Calls made to the kafka client",
    ["type", "error"],
)

KAFKA_ACTION_TIME = client.Histogram(
    "kafkabridge_kafka_action_time",
    "Time spent blocked in the kafka client (in seconds)",
    ["type"],
)

PUBLISHED_MESSAGES = client.Counter(
    "kafkabridge_published_messages",
    "Number of published messages",
    ["topic", "partition", "error"],
)

PRODUCER_TOPIC_OFFSET = client.Gauge(
    "kafkabridge_produced_topic_offset",
    "Last acknowledged offset of produced messages",
    ["topic", "partition"],
)

CONSUMED_MESSAGES = client.Counter(
    "kafkabridge_consumed_messages",
    "Number of consumed messages",
    ["topic", "partition"],
)

CONSUMER_REBALANCED = client.Counter(
    "kafkabridge_consumer_rebalanced",
    "Partitions assigned or revoked by a rebalance",
    ["event"],
)


def error_label(exc: Optional[BaseException]) -> str:
    if exc is None:
        return NOERROR
    return exc.__class__.__name__


class watch_kafka:
    """Time a native client call and count it by outcome"""

    started: float

    def __init__(self, type: str):
        self.type = type

    def __enter__(self) -> "watch_kafka":
        self.started = time.monotonic()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]] = None,
        exc_value: Optional[BaseException] = None,
        traceback: Optional[TracebackType] = None,
    ) -> None:
        KAFKA_ACTION_TIME.labels(type=self.type).observe(time.monotonic() - self.started)
        KAFKA_ACTION.labels(type=self.type, error=error_label(exc_value)).inc()
