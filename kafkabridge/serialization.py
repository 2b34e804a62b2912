"""
Key and value codecs.

A codec is any callable taking the topic name first, so plain functions can be
composed into a consumer or producer without subclassing anything:

    >>> consumer = Consumer(native, string_deserializer, json_deserializer)
"""
from .exceptions import DeserializationError
from .exceptions import SerializationError
from typing import Any
from typing import Generic
from typing import Protocol
from typing import Tuple
from typing import Type
from typing import TypeVar

import orjson
import pydantic

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)
T_contra = TypeVar("T_contra", contravariant=True)
M = TypeVar("M", bound=pydantic.BaseModel)


class Deserializer(Protocol[T_co]):
    def __call__(self, topic: str, data: bytes) -> T_co:
        ...


class Serializer(Protocol[T_contra]):
    def __call__(self, topic: str, value: T_contra) -> bytes:
        ...


def deserialize(deserializer: Deserializer[T], topic: str, data: bytes) -> T:
    try:
        return deserializer(topic, data)
    except DeserializationError:
        raise
    except Exception as exc:
        raise DeserializationError(topic, f"{exc.__class__.__name__}: {exc}") from exc


def serialize(serializer: Serializer[T], topic: str, value: T) -> bytes:
    try:
        data = serializer(topic, value)
    except SerializationError:
        raise
    except Exception as exc:
        raise SerializationError(topic, f"{exc.__class__.__name__}: {exc}") from exc
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise SerializationError(topic, f"serializer returned {type(data).__name__}, not bytes")
    return bytes(data)


def bytes_deserializer(topic: str, data: bytes) -> bytes:
    return data


def bytes_serializer(topic: str, value: bytes) -> bytes:
    return value


def string_deserializer(topic: str, data: bytes, encoding: str = "utf-8") -> str:
    return data.decode(encoding)


def string_serializer(topic: str, value: str, encoding: str = "utf-8") -> bytes:
    return value.encode(encoding)


def int_deserializer(topic: str, data: bytes) -> int:
    # same wire format as the java IntegerDeserializer
    if len(data) != 4:
        raise DeserializationError(topic, f"expected 4 bytes, got {len(data)}")
    return int.from_bytes(data, "big", signed=True)


def int_serializer(topic: str, value: int) -> bytes:
    return value.to_bytes(4, "big", signed=True)


def json_deserializer(topic: str, data: bytes) -> Any:
    try:
        return orjson.loads(data)
    except orjson.JSONDecodeError as exc:
        raise DeserializationError(topic, f"Payload is not valid json: {exc}") from exc


def json_serializer(topic: str, value: Any) -> bytes:
    try:
        return orjson.dumps(value)
    except orjson.JSONEncodeError as exc:
        raise SerializationError(topic, str(exc)) from exc


class PydanticSerde(Generic[M]):
    """
    Encodes pydantic models as json documents. Usable both as a serializer and
    as a deserializer since the direction is picked by the argument type.
    """

    def __init__(self, model: Type[M]):
        self.model = model

    def __repr__(self) -> str:
        return f"<PydanticSerde {self.model.__name__} >"

    def encode(self, topic: str, value: M) -> bytes:
        if not isinstance(value, self.model):
            raise SerializationError(
                topic, f"expected {self.model.__name__}, got {type(value).__name__}"
            )
        return orjson.dumps(value.model_dump(mode="json"))

    def decode(self, topic: str, data: bytes) -> M:
        try:
            return self.model.model_validate(orjson.loads(data))
        except orjson.JSONDecodeError as exc:
            raise DeserializationError(topic, f"Payload is not valid json: {exc}") from exc
        except pydantic.ValidationError as exc:
            raise DeserializationError(
                topic, f"Error parsing data: {self.model.__name__}: {exc}"
            ) from exc

    def __call__(self, topic: str, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return self.decode(topic, bytes(value))
        return self.encode(topic, value)


def string_codec(encoding: str = "utf-8") -> Tuple[Serializer[str], Deserializer[str]]:
    """A serializer/deserializer pair for a non default text encoding"""

    def _serializer(topic: str, value: str) -> bytes:
        return string_serializer(topic, value, encoding)

    def _deserializer(topic: str, data: bytes) -> str:
        return string_deserializer(topic, data, encoding)

    return _serializer, _deserializer