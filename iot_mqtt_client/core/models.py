from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_serializer, field_validator


class TopicPurpose(Enum):
    TELEMETRY_A = "telemetry-A"
    TELEMETRY_B = "telemetry-B"
    COMMAND = "command"
    STATUS = "status"


DEFAULT_TOPIC_SUFFIXES: dict[TopicPurpose, str] = {
    TopicPurpose.TELEMETRY_A: "suhu",
    TopicPurpose.TELEMETRY_B: "kelembaban",
    TopicPurpose.COMMAND: "led",
    TopicPurpose.STATUS: "status",
}


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str = ""
    password: SecretStr = SecretStr("")


class ResolvedConfig(BaseModel):
    """Fully resolved, immutable connection configuration."""

    model_config = ConfigDict(frozen=True)

    endpoint: str
    host: str
    port: int
    path: str
    use_secure_transport: bool
    client_identifier: str
    namespace_prefix: str
    topics: Mapping[TopicPurpose, str]
    qos: int = Field(ge=0, le=2)
    keep_alive_seconds: int
    connect_timeout_seconds: float
    clean_session: bool
    auto_reconnect: bool
    reconnect_delay_ms: int
    restore_subscriptions: bool = True
    retry_failed_reconnects: bool = False
    credentials: Optional[Credentials] = None

    @field_validator("topics", mode="after")
    @classmethod
    def freeze_topics(cls, v: Mapping[TopicPurpose, str]) -> Mapping[TopicPurpose, str]:
        return MappingProxyType(dict(v))

    @field_serializer("topics")
    def serialize_topics(self, v: Mapping[TopicPurpose, str]) -> dict[TopicPurpose, str]:
        return dict(v)

    def topic(self, purpose: TopicPurpose | str) -> str:
        return self.topics[TopicPurpose(purpose)]


class ConnectionStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    connected: bool
    client_identifier: str
    broker: str
    port: int
    secure: bool
    state: ConnectionState
    endpoint: str
    last_error: Optional[str] = None
    last_connect_at: Optional[datetime] = None
    last_disconnect_at: Optional[datetime] = None
    reconnect_attempts: int = 0

    def as_dict(self) -> dict[str, Any]:
        """Serialize the snapshot to a JSON-friendly dict."""
        return self.model_dump(mode="json")


class ConnectOptions(BaseModel):
    """What the manager hands to ``SessionTransport.connect``."""

    model_config = ConfigDict(frozen=True)

    use_secure_transport: bool
    timeout_seconds: float
    keep_alive_seconds: int
    clean_session: bool
    on_success: Callable[[], None]
    on_failure: Callable[[BaseException], None]
    username: Optional[str] = None
    password: Optional[str] = None


class OutboundMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    destination: str
    payload: str
    qos: int = Field(default=0, ge=0, le=2)
    retained: bool = False


class InboundMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    destination: str
    payload_text: str
    qos: int = 0
    retained: bool = False

    def payload_json(self) -> Any:
        """Decode the payload as JSON; raises ``orjson.JSONDecodeError`` otherwise."""
        return orjson.loads(self.payload_text)
