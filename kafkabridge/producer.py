from .config import Acks
from .config import ProducerConfig
from .converters import producer_record_to_native
from .converters import record_metadata_from_native
from .exceptions import describe
from .exceptions import InvalidStateError
from .exceptions import SendError
from .exceptions import SerializationError
from .exceptions import translate_errors
from .metrics import error_label
from .metrics import NOERROR
from .metrics import PRODUCER_TOPIC_OFFSET
from .metrics import PUBLISHED_MESSAGES
from .metrics import watch_kafka
from .serialization import bytes_serializer
from .serialization import Serializer
from .structs import ProducerRecord
from .structs import RecordMetadata
from .utils import failed_future
from .utils import Promise
from .utils import run_blocking
from concurrent.futures import Executor
from concurrent.futures.thread import ThreadPoolExecutor
from types import TracebackType
from typing import Any
from typing import Callable
from typing import Generic
from typing import Optional
from typing import Type
from typing import TypeVar

import asyncio
import kafka
import logging
import time

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T")


def _acks_offset(native: Any, acks: Optional[Acks]) -> bool:
    """Whether the broker acknowledgment carries the assigned offset"""
    if acks is not None:
        return acks is not Acks.NONE
    config = getattr(native, "config", None)
    if isinstance(config, dict) and "acks" in config:
        return config["acks"] not in (0, "0")
    return True


def published_callback(record: ProducerRecord, fut: asyncio.Future) -> None:
    if fut.cancelled():
        return
    exception = fut.exception()
    if exception is not None:
        PUBLISHED_MESSAGES.labels(
            topic=record.topic, partition=-1, error=error_label(exception)
        ).inc()
    else:
        metadata = fut.result()
        tp = metadata.topic_partition
        PUBLISHED_MESSAGES.labels(topic=tp.topic, partition=tp.partition, error=NOERROR).inc()
        if metadata.offset is not None:
            PRODUCER_TOPIC_OFFSET.labels(topic=tp.topic, partition=tp.partition).set(
                metadata.offset
            )


class Producer(Generic[K, V]):
    """
    Non-blocking facade over a kafka-python `KafkaProducer`.

    Keys and values are encoded here, with the topic at hand, and handed to
    the native producer as bytes.

    `send`, `flush` and `close` reach the native producer in call order: they
    share a single-thread executor, owned by the producer unless one is
    given. A given executor must run its tasks one at a time to keep that
    order.
    """

    def __init__(
        self,
        native: kafka.KafkaProducer,
        key_serializer: Serializer[K] = bytes_serializer,  # type: ignore
        value_serializer: Serializer[V] = bytes_serializer,  # type: ignore
        *,
        executor: Optional[Executor] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        acks: Optional[Acks] = None,
    ):
        self._native = native
        self._key_serializer = key_serializer
        self._value_serializer = value_serializer
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="kafkabridge-producer"
        )
        self._loop = loop
        self._acks_offset = _acks_offset(native, acks)
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: ProducerConfig,
        key_serializer: Serializer[K] = bytes_serializer,  # type: ignore
        value_serializer: Serializer[V] = bytes_serializer,  # type: ignore
        *,
        executor: Optional[Executor] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> "Producer[K, V]":
        settings = config.to_native()
        # `common.settings` may override the typed acks level
        acks = Acks.from_native(settings["acks"])
        with translate_errors("producer_start"), watch_kafka("producer_start"):
            native = kafka.KafkaProducer(**settings)
        logger.info(f"Created kafka producer with acks {acks.value}")
        return cls(
            native,
            key_serializer,
            value_serializer,
            executor=executor,
            loop=loop,
            acks=acks,
        )

    def __repr__(self) -> str:
        return f"<Producer: {self._native!r}, closed: {self._closed}>"

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "Producer[K, V]":
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

    def _blocking(self, action: str, func: Callable[[], T]) -> "asyncio.Future[T]":
        loop = self._get_loop()
        if self._closed:
            return failed_future(loop, InvalidStateError(f"{action}: producer is closed"))

        def watched() -> T:
            with watch_kafka(action):
                return func()

        return run_blocking(loop, self._executor, watched)

    def send(self, record: ProducerRecord[K, V]) -> "asyncio.Future[RecordMetadata]":
        """
        Queue `record` for sending. The future resolves once the broker has
        acknowledged the record at the configured acks level, or fails with
        `SendError`.

        Handing the record to the native producer may block (metadata fetch,
        full buffer), so it happens on the blocking executor.
        """
        loop = self._get_loop()
        if self._closed:
            return failed_future(loop, InvalidStateError("send: producer is closed"))

        promise: Promise[RecordMetadata] = Promise(loop)

        def on_success(metadata: Any) -> None:
            promise.success(record_metadata_from_native(metadata, self._acks_offset))

        def on_failure(exc: BaseException) -> None:
            error = SendError(record, describe(exc))
            error.__cause__ = exc
            promise.failure(error)

        def send() -> None:
            try:
                kwargs = producer_record_to_native(
                    record, self._key_serializer, self._value_serializer
                )
            except SerializationError as exc:
                raise SendError(record, str(exc)) from exc
            try:
                native_future = self._native.send(**kwargs)
            except Exception as exc:
                raise SendError(record, describe(exc)) from exc
            native_future.add_callback(on_success)
            native_future.add_errback(on_failure)

        def dispatched(fut: asyncio.Future) -> None:
            if fut.cancelled():
                promise.failure(asyncio.CancelledError())
            elif fut.exception() is not None:
                promise.failure(fut.exception())  # type: ignore

        self._blocking("send", send).add_done_callback(dispatched)
        promise.future.add_done_callback(lambda fut: published_callback(record, fut))
        return promise.future

    def flush(self, timeout: Optional[float] = None) -> "asyncio.Future[None]":
        """
        Resolves once every record sent before this call has completed. Send
        failures are reported on their own futures, not here.
        """

        def flush() -> None:
            with translate_errors("flush"):
                self._native.flush(timeout=timeout)

        return self._blocking("producer_flush", flush)

    def close(self, timeout: Optional[float] = None) -> "asyncio.Future[None]":
        """
        Drain buffered records, waiting at most `timeout` seconds, then release
        the native producer. Fails when the drain did not finish in time, in
        which case pending records are dropped.
        """

        def close() -> None:
            deadline = None if timeout is None else time.monotonic() + timeout
            with translate_errors("close"):
                try:
                    self._native.flush(timeout=timeout)
                except Exception:
                    self._native.close(timeout=0)
                    raise
                remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
                self._native.close(timeout=remaining)

        fut = self._blocking("producer_stop", close)
        if not self._closed:
            self._closed = True
            fut.add_done_callback(self._on_closed)
        return fut

    def _on_closed(self, fut: asyncio.Future) -> None:
        if not fut.cancelled() and fut.exception() is not None:
            logger.warning(f"Producer {self} did not close cleanly", exc_info=fut.exception())
        else:
            logger.info(f"Producer {self} closed")
        if self._owns_executor:
            self._executor.shutdown(wait=False)
