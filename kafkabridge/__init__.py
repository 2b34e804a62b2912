from .config import Acks  # noqa
from .config import AutoOffsetReset  # noqa
from .config import CommonConfig  # noqa
from .config import ConsumerConfig  # noqa
from .config import ProducerConfig  # noqa
from .consumer import Consumer  # noqa
from .consumer import RebalanceListener  # noqa
from .exceptions import DeserializationError  # noqa
from .exceptions import InvalidStateError  # noqa
from .exceptions import KafkaBridgeError  # noqa
from .exceptions import NativeClientError  # noqa
from .exceptions import SendError  # noqa
from .exceptions import SerializationError  # noqa
from .exceptions import WakeupError  # noqa
from .producer import Producer  # noqa
from .serialization import bytes_deserializer  # noqa
from .serialization import bytes_serializer  # noqa
from .serialization import Deserializer  # noqa
from .serialization import int_deserializer  # noqa
from .serialization import int_serializer  # noqa
from .serialization import json_deserializer  # noqa
from .serialization import json_serializer  # noqa
from .serialization import PydanticSerde  # noqa
from .serialization import Serializer  # noqa
from .serialization import string_codec  # noqa
from .serialization import string_deserializer  # noqa
from .serialization import string_serializer  # noqa
from .structs import ConsumerRecord  # noqa
from .structs import ConsumerRecords  # noqa
from .structs import Header  # noqa
from .structs import Node  # noqa
from .structs import OffsetAndMetadata  # noqa
from .structs import OffsetAndTimestamp  # noqa
from .structs import PartitionInfo  # noqa
from .structs import ProducerRecord  # noqa
from .structs import RecordMetadata  # noqa
from .structs import TimestampAndType  # noqa
from .structs import TimestampType  # noqa
from .structs import TopicPartition  # noqa
from .structs import WithSize  # noqa
