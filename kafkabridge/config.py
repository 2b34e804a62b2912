from typing import Any
from typing import Dict
from typing import List
from typing import Optional

import enum
import os
import pydantic


class Acks(str, enum.Enum):
    NONE = "none"
    ONE = "one"
    ALL = "all"

    def to_native(self) -> Any:
        return {Acks.NONE: 0, Acks.ONE: 1, Acks.ALL: "all"}[self]

    @classmethod
    def from_native(cls, value: Any) -> "Acks":
        """The level of a kafka-python `acks` setting"""
        if str(value) == "0":
            return cls.NONE
        if str(value) == "1":
            return cls.ONE
        if str(value) in ("all", "-1"):
            return cls.ALL
        raise ValueError(f"Unknown acks setting: {value!r}")


class AutoOffsetReset(str, enum.Enum):
    EARLIEST = "earliest"
    LATEST = "latest"


def _ms(seconds: Optional[float]) -> Optional[int]:
    if seconds is None:
        return None
    return int(seconds * 1000)


def _servers_from_env() -> Optional[List[str]]:
    servers = os.environ.get("KAFKA_BOOTSTRAP_SERVERS")
    if not servers:
        return None
    return [server.strip() for server in servers.split(",") if server.strip()]


class CommonConfig(pydantic.BaseModel):
    bootstrap_servers: List[str] = ["localhost:9092"]
    client_id: Optional[str] = None
    request_timeout: Optional[float] = None
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: Optional[str] = None
    sasl_plain_username: Optional[str] = None
    sasl_plain_password: Optional[str] = None
    # forwarded verbatim to the kafka client, overriding anything above
    settings: Dict[str, Any] = {}

    @classmethod
    def from_env(cls, **kwargs: Any) -> "CommonConfig":
        servers = _servers_from_env()
        if servers is not None:
            kwargs.setdefault("bootstrap_servers", servers)
        client_id = os.environ.get("KAFKA_CLIENT_ID")
        if client_id:
            kwargs.setdefault("client_id", client_id)
        return cls(**kwargs)

    def to_native(self) -> Dict[str, Any]:
        native: Dict[str, Any] = {
            "bootstrap_servers": self.bootstrap_servers,
            "security_protocol": self.security_protocol,
        }
        if self.client_id is not None:
            native["client_id"] = self.client_id
        if self.request_timeout is not None:
            native["request_timeout_ms"] = _ms(self.request_timeout)
        for name in ("sasl_mechanism", "sasl_plain_username", "sasl_plain_password"):
            value = getattr(self, name)
            if value is not None:
                native[name] = value
        return native


class ConsumerConfig(pydantic.BaseModel):
    common: CommonConfig = CommonConfig()
    group_id: Optional[str] = None
    auto_offset_reset: AutoOffsetReset = AutoOffsetReset.LATEST
    auto_commit: bool = True
    auto_commit_interval: float = 5.0
    max_poll_records: int = 500
    session_timeout: Optional[float] = None
    heartbeat_interval: Optional[float] = None
    max_poll_interval: Optional[float] = None

    @classmethod
    def from_env(cls, **kwargs: Any) -> "ConsumerConfig":
        kwargs.setdefault("common", CommonConfig.from_env())
        return cls(**kwargs)

    def to_native(self) -> Dict[str, Any]:
        native = self.common.to_native()
        native.update(
            {
                "group_id": self.group_id,
                "auto_offset_reset": self.auto_offset_reset.value,
                "enable_auto_commit": self.auto_commit,
                "auto_commit_interval_ms": _ms(self.auto_commit_interval),
                "max_poll_records": self.max_poll_records,
            }
        )
        optional = {
            "session_timeout_ms": _ms(self.session_timeout),
            "heartbeat_interval_ms": _ms(self.heartbeat_interval),
            "max_poll_interval_ms": _ms(self.max_poll_interval),
        }
        native.update({k: v for k, v in optional.items() if v is not None})
        native.update(self.common.settings)
        return native


class ProducerConfig(pydantic.BaseModel):
    common: CommonConfig = CommonConfig()
    acks: Acks = Acks.ONE
    retries: int = 0
    batch_size: int = 16384
    linger: float = 0.0
    compression_type: Optional[str] = None
    max_block: float = 60.0
    max_request_size: int = 1048576

    @classmethod
    def from_env(cls, **kwargs: Any) -> "ProducerConfig":
        kwargs.setdefault("common", CommonConfig.from_env())
        return cls(**kwargs)

    def to_native(self) -> Dict[str, Any]:
        native = self.common.to_native()
        native.update(
            {
                "acks": self.acks.to_native(),
                "retries": self.retries,
                "batch_size": self.batch_size,
                "linger_ms": _ms(self.linger),
                "max_block_ms": _ms(self.max_block),
                "max_request_size": self.max_request_size,
            }
        )
        if self.compression_type is not None:
            native["compression_type"] = self.compression_type
        native.update(self.common.settings)
        return native
