from contextlib import contextmanager
from typing import Any
from typing import Iterator
from typing import Optional
from typing import TYPE_CHECKING

import kafka.errors

if TYPE_CHECKING:  # pragma: no cover
    from .structs import ProducerRecord
else:
    ProducerRecord = None


class KafkaBridgeError(Exception):
    ...


class SerializationError(KafkaBridgeError):
    def __init__(self, topic: str, reason: str):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Could not serialize value for topic '{topic}': {reason}")


class DeserializationError(KafkaBridgeError):
    def __init__(self, topic: str, reason: str):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Could not deserialize value from topic '{topic}': {reason}")


class SendError(KafkaBridgeError):
    def __init__(self, record: "ProducerRecord", reason: str):
        self.record = record
        self.reason = reason
        super().__init__(f"Failed to send record to '{record.topic}': {reason}")


class WakeupError(KafkaBridgeError):
    ...


class InvalidStateError(KafkaBridgeError):
    ...


class NativeClientError(KafkaBridgeError):
    def __init__(self, action: str, error: Optional[BaseException] = None):
        self.action = action
        self.error = error
        super().__init__(f"Kafka client failed on '{action}': {error!r}")


def translate_error(action: str, exc: BaseException) -> KafkaBridgeError:
    if isinstance(exc, KafkaBridgeError):
        return exc
    if isinstance(exc, (kafka.errors.IllegalStateError, AssertionError)):
        return InvalidStateError(f"{action}: {exc}")
    return NativeClientError(action, exc)


@contextmanager
def translate_errors(action: str) -> Iterator[None]:
    """
    Re-raise anything the native client throws as one of our error kinds,
    chained to the original exception.
    """
    try:
        yield
    except KafkaBridgeError:
        raise
    except Exception as exc:
        raise translate_error(action, exc) from exc


def describe(exc: Any) -> str:
    return f"{exc.__class__.__name__}: {exc}"
