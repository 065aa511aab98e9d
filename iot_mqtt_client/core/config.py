"""
Broker settings and their resolution into an immutable ResolvedConfig.

``BrokerSettings`` is the raw, environment-style input surface. ``resolve_config``
turns it into a ``ResolvedConfig`` with the endpoint URL composed, the topic set
built from the namespace prefix and a client identifier generated when none was
supplied. Resolution has no side effects beyond that one-time identifier
generation, and resolving an already resolved config returns it unchanged.

Environment Variables (read by ``BrokerSettings.from_env``):
    MQTT_BROKER_HOSTNAME, MQTT_BROKER_PORT, MQTT_USE_TLS, MQTT_WEBSOCKET_PATH,
    MQTT_CLEAN_SESSION, MQTT_BROKER_USERNAME, MQTT_BROKER_PASSWORD,
    MQTT_CLIENT_ID, MQTT_TOPIC_PREFIX, MQTT_QOS, MQTT_KEEPALIVE,
    MQTT_CONNECT_TIMEOUT, MQTT_AUTO_RECONNECT, MQTT_RECONNECT_DELAY_MS,
    MQTT_RESTORE_SUBSCRIPTIONS, MQTT_RETRY_FAILED_RECONNECTS
"""
import logging
import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator

from .base import generate_client_identifier
from .models import DEFAULT_TOPIC_SUFFIXES, Credentials, ResolvedConfig, TopicPurpose
from .topic_manager import TopicManager

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got {raw!r}")


class BrokerSettings(BaseModel):
    """
    Raw connection settings, before resolution.

    Attributes:
        host: Broker hostname
        port: Broker WebSocket port (8084 is EMQX's wss listener, 8083 its ws one)
        use_secure_transport: True selects wss://, False selects ws://
        path: WebSocket path on the broker
        clean_session: Ask the broker to discard prior session state on connect
        username: Optional username, omitted from the connect when empty
        password: Optional password, omitted from the connect when empty
        client_identifier: Explicit client id; generated when empty
        namespace_prefix: Unique prefix deconflicting topics across deployments
        topic_suffixes: Per-purpose overrides of the default topic suffixes
        qos: Default quality of service for publish/subscribe
        keep_alive_seconds: MQTT keepalive interval
        connect_timeout_seconds: Connect attempt timeout
        auto_reconnect: Reconnect after an unsolicited connection loss
        reconnect_delay_ms: Fixed delay before each reconnect attempt
        restore_subscriptions: Re-apply subscriptions after a reconnect
        retry_failed_reconnects: Keep asking the reconnect policy after a failed
            reconnect attempt instead of stopping in DISCONNECTED
    """

    host: str = "broker.emqx.io"
    port: int = Field(default=8084, ge=1, le=65535)
    use_secure_transport: bool = True
    path: str = "/mqtt"
    clean_session: bool = True
    username: str = ""
    password: SecretStr = SecretStr("")
    client_identifier: str = ""
    namespace_prefix: str = ""
    topic_suffixes: dict[TopicPurpose, str] = Field(
        default_factory=lambda: dict(DEFAULT_TOPIC_SUFFIXES)
    )
    qos: int = Field(default=0, ge=0, le=2)
    keep_alive_seconds: int = Field(default=60, ge=1)
    connect_timeout_seconds: float = Field(default=10, gt=0)
    auto_reconnect: bool = True
    reconnect_delay_ms: int = Field(default=5000, ge=0)
    restore_subscriptions: bool = True
    retry_failed_reconnects: bool = False

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("host must not be empty")
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides: Any) -> "BrokerSettings":
        """
        Load settings from environment variables (and an optional ``.env`` file).

        Variables that are unset keep the model defaults. Keyword overrides win
        over the environment.

        Raises:
            ValueError: If a boolean variable cannot be parsed
            pydantic.ValidationError: If a value fails validation
        """
        load_dotenv(env_file)

        values: dict[str, Any] = {}
        string_fields = {
            "host": "MQTT_BROKER_HOSTNAME",
            "path": "MQTT_WEBSOCKET_PATH",
            "username": "MQTT_BROKER_USERNAME",
            "password": "MQTT_BROKER_PASSWORD",
            "client_identifier": "MQTT_CLIENT_ID",
            "namespace_prefix": "MQTT_TOPIC_PREFIX",
        }
        for field, name in string_fields.items():
            if os.getenv(name) is not None:
                values[field] = os.getenv(name)

        numeric_fields = {
            "port": ("MQTT_BROKER_PORT", int),
            "qos": ("MQTT_QOS", int),
            "keep_alive_seconds": ("MQTT_KEEPALIVE", int),
            "connect_timeout_seconds": ("MQTT_CONNECT_TIMEOUT", float),
            "reconnect_delay_ms": ("MQTT_RECONNECT_DELAY_MS", int),
        }
        for field, (name, convert) in numeric_fields.items():
            if os.getenv(name):
                values[field] = convert(os.getenv(name))

        defaults = cls.model_fields
        values["use_secure_transport"] = _env_bool(
            "MQTT_USE_TLS", defaults["use_secure_transport"].default
        )
        values["clean_session"] = _env_bool("MQTT_CLEAN_SESSION", defaults["clean_session"].default)
        values["auto_reconnect"] = _env_bool("MQTT_AUTO_RECONNECT", defaults["auto_reconnect"].default)
        values["restore_subscriptions"] = _env_bool(
            "MQTT_RESTORE_SUBSCRIPTIONS", defaults["restore_subscriptions"].default
        )
        values["retry_failed_reconnects"] = _env_bool(
            "MQTT_RETRY_FAILED_RECONNECTS", defaults["retry_failed_reconnects"].default
        )

        values.update(overrides)
        return cls(**values)


def build_endpoint(host: str, port: int, path: str, use_secure_transport: bool) -> str:
    scheme = "wss" if use_secure_transport else "ws"
    return f"{scheme}://{host}:{port}{path}"


def resolve_config(
    settings: BrokerSettings | ResolvedConfig | None = None, **overrides: Any
) -> ResolvedConfig:
    """
    Resolve raw settings into an immutable ``ResolvedConfig``.

    Args:
        settings: Raw settings; defaults to ``BrokerSettings()`` built from ``overrides``
        **overrides: Field overrides applied on top of ``settings``

    Returns:
        The resolved configuration. An already resolved config is returned as-is.

    Raises:
        ValueError: If overrides are passed together with a resolved config

    Example:
        >>> config = resolve_config(namespace_prefix="X1", qos=1)
        >>> config.topic(TopicPurpose.COMMAND)
        'X1/led'
    """
    if isinstance(settings, ResolvedConfig):
        if overrides:
            raise ValueError("A resolved configuration cannot be overridden; resolve new settings instead")
        return settings

    if settings is None:
        settings = BrokerSettings(**overrides)
    elif overrides:
        settings = BrokerSettings(**{**settings.model_dump(), **overrides})

    topics = TopicManager(settings.namespace_prefix).build_topics(settings.topic_suffixes)

    client_identifier = settings.client_identifier or generate_client_identifier(
        settings.namespace_prefix
    )

    password = settings.password.get_secret_value()
    credentials = None
    if settings.username or password:
        credentials = Credentials(username=settings.username, password=SecretStr(password))

    config = ResolvedConfig(
        endpoint=build_endpoint(
            settings.host, settings.port, settings.path, settings.use_secure_transport
        ),
        host=settings.host,
        port=settings.port,
        path=settings.path,
        use_secure_transport=settings.use_secure_transport,
        client_identifier=client_identifier,
        namespace_prefix=settings.namespace_prefix,
        topics=topics,
        qos=settings.qos,
        keep_alive_seconds=settings.keep_alive_seconds,
        connect_timeout_seconds=settings.connect_timeout_seconds,
        clean_session=settings.clean_session,
        auto_reconnect=settings.auto_reconnect,
        reconnect_delay_ms=settings.reconnect_delay_ms,
        restore_subscriptions=settings.restore_subscriptions,
        retry_failed_reconnects=settings.retry_failed_reconnects,
        credentials=credentials,
    )
    logger.debug(
        f"Resolved configuration for {config.endpoint}",
        extra={"client_id": config.client_identifier},
    )
    return config
