"""
Connection lifecycle manager for a single MQTT-over-WebSocket session.

State machine:

    DISCONNECTED --connect()--> CONNECTING --success--> CONNECTED
    CONNECTING --failure--> DISCONNECTED             (no automatic retry)
    CONNECTING --failure--> RECONNECTING             (reconnect attempt, retry_failed_reconnects on)
    CONNECTED --disconnect()--> DISCONNECTED         (no reconnect)
    CONNECTED --connection lost--> RECONNECTING      (policy gave a delay)
    CONNECTED --connection lost--> DISCONNECTED      (reconnect disabled)
    RECONNECTING --delay elapsed--> CONNECTING       (same path as connect())

All transitions happen on the event loop thread, one event at a time, so the
manager holds no locks. Every connect attempt gets a brand new transport from
the factory; events raised by a transport that has since been replaced or
disconnected are ignored.
"""
import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import orjson

from ..core.base import MessageLogger
from ..core.config import BrokerSettings, resolve_config
from ..core.exceptions import (
    ConnectFailure,
    ConnectionLost,
    NotConnected,
    OperationError,
    SessionError,
    as_session_error,
)
from ..core.models import (
    ConnectionState,
    ConnectionStatus,
    ConnectOptions,
    InboundMessage,
    OutboundMessage,
    ResolvedConfig,
)
from ..core.reconnect import FixedDelayPolicy, ReconnectPolicy
from ..core.transport import SessionTransport, TransportFactory
from .compatibility import ensure_compatible_event_loop_policy

logger = logging.getLogger(__name__)

ConnectObserver = Callable[[], Any]
DisconnectObserver = Callable[[Optional[ConnectionLost]], Any]
MessageObserver = Callable[[str, str, InboundMessage], Any]
ErrorObserver = Callable[[SessionError], Any]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _default_transport_factory(host: str, port: int, path: str, client_id: str) -> SessionTransport:
    # aiomqtt is only imported when no transport factory is injected.
    from .aiomqtt_transport import AiomqttTransport

    return AiomqttTransport(host, port, path, client_id)


def encode_payload(payload: Any) -> str:
    """
    String-encode a publish payload.

    ``str`` goes out as-is, ``bytes`` are decoded as UTF-8, containers, booleans
    and None are JSON-encoded, and anything else falls back to ``str()``.
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8")
    if payload is None or isinstance(payload, (bool, dict, list, tuple)):
        return orjson.dumps(payload).decode("utf-8")
    return str(payload)


class ConnectionManager:
    """
    Owns one logical broker session and keeps it alive.

    Args:
        config: Resolved configuration (raw ``BrokerSettings`` are resolved here)
        transport_factory: Builds a transport per connect attempt; defaults to
            ``AiomqttTransport``
        reconnect_policy: Delay policy after a connection loss; defaults to a
            fixed ``reconnect_delay_ms`` delay, disabled when ``auto_reconnect``
            is off
        logger: Custom logger adapter (creates a client-scoped one if None)

    Example:
        >>> manager = ConnectionManager(resolve_config(namespace_prefix="X1"))
        >>> manager.on_message(lambda topic, payload, message: print(topic, payload))
        >>> await manager.connect()
        >>> manager.subscribe(manager.config.topic(TopicPurpose.TELEMETRY_A))
        >>> manager.publish(manager.config.topic(TopicPurpose.COMMAND), "ON")
    """

    def __init__(
        self,
        config: ResolvedConfig | BrokerSettings,
        transport_factory: Optional[TransportFactory] = None,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ):
        self.config = resolve_config(config)
        self._transport_factory: TransportFactory = transport_factory or _default_transport_factory
        self._reconnect_policy: ReconnectPolicy = reconnect_policy or FixedDelayPolicy(
            self.config.reconnect_delay_ms, enabled=self.config.auto_reconnect
        )

        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[SessionTransport] = None
        self._connect_future: Optional[asyncio.Future] = None
        self._attempt_is_reconnect = False
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._reconnect_attempts = 0
        self._subscriptions: dict[str, int] = {}

        self._observers: dict[str, Optional[Callable[..., Any]]] = {
            "connect": None,
            "disconnect": None,
            "message": None,
            "error": None,
        }
        self._observer_tasks: set[asyncio.Task] = set()

        self._last_error: Optional[str] = None
        self._last_connect_at: Optional[datetime] = None
        self._last_disconnect_at: Optional[datetime] = None

        self.logger = logger or MessageLogger(
            logging.getLogger(__name__),
            extra={"client_id": self.config.client_identifier},
            merge_extra=True,
        )
        self.logger.debug(
            f"Initialized connection manager for {self.config.endpoint} "
            f"with identifier '{self.config.client_identifier}'"
        )
        ensure_compatible_event_loop_policy()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def client_identifier(self) -> str:
        return self.config.client_identifier

    @property
    def subscriptions(self) -> dict[str, int]:
        """Topics subscribed through this manager, with their QoS."""
        return dict(self._subscriptions)

    @property
    def _broker(self) -> str:
        return f"{self.config.host}:{self.config.port}"

    # ------------------------------------------------------------------
    # Observer registration (single slot, last registration wins)
    # ------------------------------------------------------------------

    def on_connect(self, callback: Optional[ConnectObserver]) -> None:
        self._observers["connect"] = callback

    def on_disconnect(self, callback: Optional[DisconnectObserver]) -> None:
        self._observers["disconnect"] = callback

    def on_message(self, callback: Optional[MessageObserver]) -> None:
        self._observers["message"] = callback

    def on_error(self, callback: Optional[ErrorObserver]) -> None:
        self._observers["error"] = callback

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> asyncio.Future:
        """
        Start connecting and return a future for the outcome.

        The future resolves with None once the session is connected, or fails
        with ``ConnectFailure``. Calling while a connect is in flight or the
        session is up returns that same future instead of opening a second
        transport. Must be called with a running event loop.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            if self._connect_future is not None:
                self.logger.debug(
                    f"connect() called while {self._state.value}; returning the existing attempt"
                )
                return self._connect_future

        if self._state is ConnectionState.RECONNECTING:
            self._cancel_reconnect()

        return self._start_attempt(reconnect=False)

    def disconnect(self) -> None:
        """
        End the session for good: no reconnect is attempted afterwards.

        Fires the disconnect observer (with None) only when a connected session
        is closed. A pending reconnect is cancelled; an in-flight connect attempt
        is abandoned and its future fails with ``ConnectFailure``.
        """
        state = self._state
        if state is ConnectionState.DISCONNECTED:
            self.logger.debug("disconnect() called while already disconnected")
            return

        if state is ConnectionState.RECONNECTING:
            self._cancel_reconnect()
            self._set_state(ConnectionState.DISCONNECTED)
            self.logger.info("Pending reconnect cancelled by disconnect()")
            return

        transport = self._transport
        future = self._connect_future
        self._transport = None
        self._connect_future = None
        self._set_state(ConnectionState.DISCONNECTED)

        if transport is not None:
            try:
                transport.disconnect()
            except Exception as e:
                self.logger.warning(f"Transport disconnect failed: {e}", exc_info=True)

        if state is ConnectionState.CONNECTING:
            self.logger.info(f"Connect attempt to {self.config.endpoint} abandoned by disconnect()")
            if future is not None and not future.done():
                future.set_exception(
                    ConnectFailure(
                        "Disconnected before the connection was established",
                        client_id=self.client_identifier,
                        broker=self._broker,
                    )
                )
            return

        self._last_disconnect_at = _now()
        self.logger.info(f"Disconnected from MQTT broker {self._broker}")
        self._notify("disconnect", None)

    async def __aenter__(self) -> "ConnectionManager":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    # ------------------------------------------------------------------
    # Operations (valid only while connected)
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, qos: Optional[int] = None) -> bool:
        qos = self.config.qos if qos is None else qos
        transport = self._require_connected("subscribe", topic)
        if transport is None:
            return False
        try:
            transport.subscribe(topic, qos)
        except Exception as e:
            self._operation_failed("subscribe", topic, e)
            return False
        self._subscriptions[topic] = qos
        self.logger.info(f"Subscribed to: {topic} (QoS {qos})", extra={"topic": topic})
        return True

    def unsubscribe(self, topic: str) -> bool:
        transport = self._require_connected("unsubscribe", topic)
        if transport is None:
            return False
        try:
            transport.unsubscribe(topic)
        except Exception as e:
            self._operation_failed("unsubscribe", topic, e)
            return False
        self._subscriptions.pop(topic, None)
        self.logger.info(f"Unsubscribed from: {topic}", extra={"topic": topic})
        return True

    def publish(
        self, topic: str, payload: Any, qos: Optional[int] = None, retain: bool = False
    ) -> bool:
        qos = self.config.qos if qos is None else qos
        transport = self._require_connected("publish", topic)
        if transport is None:
            return False
        try:
            message = OutboundMessage(
                destination=topic, payload=encode_payload(payload), qos=qos, retained=retain
            )
            transport.send(message)
        except Exception as e:
            self._operation_failed("publish", topic, e)
            return False
        self.logger.debug(
            f"Published to {topic}: {self._truncate_str(message.payload)}", extra={"topic": topic}
        )
        return True

    def get_status(self) -> ConnectionStatus:
        return ConnectionStatus(
            connected=self.is_connected,
            client_identifier=self.client_identifier,
            broker=self.config.host,
            port=self.config.port,
            secure=self.config.use_secure_transport,
            state=self._state,
            endpoint=self.config.endpoint,
            last_error=self._last_error,
            last_connect_at=self._last_connect_at,
            last_disconnect_at=self._last_disconnect_at,
            reconnect_attempts=self._reconnect_attempts,
        )

    # ------------------------------------------------------------------
    # Connect attempts
    # ------------------------------------------------------------------

    def _start_attempt(self, reconnect: bool) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._connect_future = future
        self._attempt_is_reconnect = reconnect
        self._transport = None
        self._set_state(ConnectionState.CONNECTING)
        self.logger.info(f"Connecting to {self.config.endpoint}...")

        try:
            transport = self._transport_factory(
                self.config.host, self.config.port, self.config.path, self.client_identifier
            )
        except Exception as e:
            self._fail_attempt(e)
            return future

        self._transport = transport
        transport.on_connection_lost = lambda error: self._handle_connection_lost(transport, error)
        transport.on_message_arrived = lambda message: self._handle_message(transport, message)

        credentials = self.config.credentials
        password = credentials.password.get_secret_value() if credentials else ""
        options = ConnectOptions(
            use_secure_transport=self.config.use_secure_transport,
            timeout_seconds=self.config.connect_timeout_seconds,
            keep_alive_seconds=self.config.keep_alive_seconds,
            clean_session=self.config.clean_session,
            on_success=lambda: self._handle_connect_success(transport),
            on_failure=lambda error: self._handle_connect_failure(transport, error),
            username=(credentials.username or None) if credentials else None,
            password=password or None,
        )

        try:
            transport.connect(options)
        except Exception as e:
            self._handle_connect_failure(transport, e)
        return future

    def _handle_connect_success(self, transport: SessionTransport) -> None:
        if transport is not self._transport:
            self.logger.warning("Discarded transport reported a successful connect; closing it")
            self._close_stale(transport)
            return
        if self._state is not ConnectionState.CONNECTING:
            self.logger.debug(f"Ignoring connect success while {self._state.value}")
            return

        self._set_state(ConnectionState.CONNECTED)
        self._reconnect_attempts = 0
        self._last_connect_at = _now()
        self._last_error = None
        self.logger.info(f"Connected to MQTT broker {self._broker} as '{self.client_identifier}'")

        if self.config.restore_subscriptions:
            self._restore_subscriptions(transport)

        future = self._connect_future
        self._notify("connect")
        if future is not None and not future.done():
            future.set_result(None)

    def _handle_connect_failure(self, transport: SessionTransport, error: BaseException) -> None:
        if transport is not self._transport:
            self.logger.debug(f"Ignoring connect failure from a discarded transport: {error}")
            return
        if self._state is not ConnectionState.CONNECTING:
            self.logger.debug(f"Ignoring connect failure while {self._state.value}: {error}")
            return
        self._fail_attempt(error)

    def _fail_attempt(self, error: BaseException) -> None:
        failure = as_session_error(
            error, ConnectFailure, client_id=self.client_identifier, broker=self._broker
        )
        future = self._connect_future
        reconnect = self._attempt_is_reconnect
        self._transport = None
        self._connect_future = None
        self._last_error = failure.detail
        self.logger.error(f"Connection failed: {failure.detail}")

        delay = None
        if reconnect and self.config.retry_failed_reconnects:
            delay = self._reconnect_policy.next_delay(self._reconnect_attempts + 1)
            if delay is None:
                self.logger.error(
                    f"Giving up reconnecting after {self._reconnect_attempts} attempt(s)"
                )
        elif reconnect:
            self.logger.warning("Reconnect attempt failed; staying disconnected until connect() is called")
        self._set_state(
            ConnectionState.RECONNECTING if delay is not None else ConnectionState.DISCONNECTED
        )

        self._notify("error", failure)
        if future is not None and not future.done():
            future.set_exception(failure)

        if delay is not None and self._state is ConnectionState.RECONNECTING:
            self._arm_reconnect(self._reconnect_attempts + 1, delay)

    # ------------------------------------------------------------------
    # Connection loss and reconnect
    # ------------------------------------------------------------------

    def _handle_connection_lost(self, transport: SessionTransport, error: BaseException) -> None:
        if transport is not self._transport:
            self.logger.debug(f"Ignoring connection loss from a discarded transport: {error}")
            return
        if self._state is ConnectionState.CONNECTING:
            self._handle_connect_failure(transport, error)
            return
        if self._state is not ConnectionState.CONNECTED:
            self.logger.debug(f"Ignoring connection loss while {self._state.value}")
            return

        lost = as_session_error(
            error, ConnectionLost, client_id=self.client_identifier, broker=self._broker
        )
        self._transport = None
        self._connect_future = None
        self._last_disconnect_at = _now()
        if lost.is_normal_close:
            self.logger.info("Connection closed normally")
        else:
            self._last_error = lost.detail
            self.logger.warning(f"Connection lost: {lost.detail}")

        delay = self._reconnect_policy.next_delay(1)
        self._set_state(
            ConnectionState.RECONNECTING if delay is not None else ConnectionState.DISCONNECTED
        )
        self._notify("disconnect", lost)

        if delay is not None and self._state is ConnectionState.RECONNECTING:
            self._arm_reconnect(1, delay)

    def _arm_reconnect(self, attempt: int, delay: float) -> None:
        self._reconnect_attempts = attempt
        self.logger.info(f"Reconnecting in {delay:g} seconds (attempt {attempt})...")
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._state is not ConnectionState.RECONNECTING:
            return
        future = self._start_attempt(reconnect=True)
        future.add_done_callback(self._reconnect_done)

    def _reconnect_done(self, future: asyncio.Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self.logger.debug(f"Reconnection attempt {self._reconnect_attempts} failed: {error}")

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _restore_subscriptions(self, transport: SessionTransport) -> None:
        for topic, qos in list(self._subscriptions.items()):
            try:
                transport.subscribe(topic, qos)
                self.logger.debug(f"Restored subscription to {topic} (QoS {qos})")
            except Exception as e:
                self.logger.warning(f"Failed to restore subscription to {topic}: {e}")

    def _close_stale(self, transport: SessionTransport) -> None:
        try:
            transport.disconnect()
        except Exception as e:
            self.logger.debug(f"Closing discarded transport failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Inbound messages and observers
    # ------------------------------------------------------------------

    def _handle_message(self, transport: SessionTransport, message: InboundMessage) -> None:
        if transport is not self._transport:
            self.logger.debug(f"Dropping message from a discarded transport on {message.destination}")
            return
        self.logger.debug(
            f"Message received [{message.destination}]: {self._truncate_str(message.payload_text)}",
            extra={"topic": message.destination},
        )
        self._notify("message", message.destination, message.payload_text, message)

    def _notify(self, kind: str, *args: Any) -> None:
        callback = self._observers[kind]
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception as e:
            self.logger.error(f"'{kind}' observer raised: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._observer_tasks.add(task)
            task.add_done_callback(lambda t: self._observer_task_done(kind, t))

    def _observer_task_done(self, kind: str, task: asyncio.Task) -> None:
        self._observer_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"'{kind}' observer raised: {error}", exc_info=error)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            self.logger.debug(f"State {self._state.value} -> {state.value}")
        self._state = state

    def _require_connected(self, operation: str, topic: str) -> Optional[SessionTransport]:
        if self._state is ConnectionState.CONNECTED and self._transport is not None:
            return self._transport
        error = NotConnected(
            f"Cannot {operation}: not connected to broker",
            client_id=self.client_identifier,
            broker=self._broker,
            topic=topic,
        )
        self.logger.error(str(error.detail), extra={"topic": topic})
        return None

    def _operation_failed(self, operation: str, topic: str, error: BaseException) -> None:
        failure = as_session_error(
            error,
            OperationError,
            client_id=self.client_identifier,
            broker=self._broker,
            topic=topic,
        )
        self._last_error = f"{operation} {topic}: {failure.detail}"
        self.logger.error(f"{operation.capitalize()} error for {topic}: {failure.detail}", extra={"topic": topic})

    def _truncate_str(self, input_string: str, output_length: int = 100) -> str:
        if len(input_string) > output_length:
            return input_string[:output_length] + "..."
        return input_string
