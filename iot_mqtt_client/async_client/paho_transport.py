"""
Session transport backed by paho-mqtt over WebSockets.

paho runs its network loop on a background thread (``loop_start``) and calls
back from there. Every callback is handed to the asyncio loop with
``call_soon_threadsafe`` so the connection manager only ever sees events on
the loop thread.

paho reconnects on its own when driven by ``loop_start``; reconnecting is the
manager's job, so the client is torn down as soon as a connect fails or an
established connection drops.
"""
import asyncio
import logging
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from ..core.exceptions import ConnectFailure, ConnectionLost, OperationError
from ..core.models import ConnectOptions, InboundMessage, OutboundMessage

logger = logging.getLogger(__name__)


def _reason_value(reason_code: Any) -> int:
    try:
        return int(getattr(reason_code, "value", reason_code))
    except (TypeError, ValueError):
        return 1


class PahoWebSocketTransport:
    """
    Threaded paho-mqtt client wrapped in the session transport interface.

    Must be created on the event loop thread (or given ``loop`` explicitly).
    """

    def __init__(
        self,
        host: str,
        port: int,
        path: str,
        client_id: str,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.host = host
        self.port = port
        self.path = path
        self.client_id = client_id
        self.on_connection_lost: Optional[Callable[[BaseException], None]] = None
        self.on_message_arrived: Optional[Callable[[InboundMessage], None]] = None

        self._loop = loop or asyncio.get_running_loop()
        self._client: Optional[mqtt.Client] = None
        self._options: Optional[ConnectOptions] = None
        self._settled = False
        self._connected = False
        self._closing = False

    @property
    def broker(self) -> str:
        return f"{self.host}:{self.port}"

    def connect(self, options: ConnectOptions) -> None:
        if self._client is not None:
            raise RuntimeError("PahoWebSocketTransport.connect() may only be called once")

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=options.clean_session,
            protocol=mqtt.MQTTv311,
            transport="websockets",
        )
        client.ws_set_options(path=self.path)
        if options.use_secure_transport:
            client.tls_set()
        if options.username or options.password:
            client.username_pw_set(options.username or "", options.password)
        client.connect_timeout = options.timeout_seconds

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client
        self._options = options
        client.connect_async(self.host, self.port, keepalive=options.keep_alive_seconds)
        client.loop_start()

    # paho network thread ------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self._loop.call_soon_threadsafe(
            self._connect_result, _reason_value(reason_code), str(reason_code)
        )

    def _on_connect_fail(self, client, userdata):
        self._loop.call_soon_threadsafe(
            self._connect_result, -1, f"Could not reach broker {self.broker}"
        )

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        self._loop.call_soon_threadsafe(
            self._disconnected, _reason_value(reason_code), str(reason_code)
        )

    def _on_message(self, client, userdata, msg):
        inbound = InboundMessage(
            destination=msg.topic,
            payload_text=msg.payload.decode("utf-8", errors="replace"),
            qos=msg.qos,
            retained=msg.retain,
        )
        self._loop.call_soon_threadsafe(self._deliver, inbound)

    # event loop thread --------------------------------------------------

    def _connect_result(self, rc: int, reason: str) -> None:
        if self._closing or self._settled:
            return
        self._settled = True
        if rc == 0:
            self._connected = True
            self._options.on_success()
            return
        self._teardown()
        self._options.on_failure(
            ConnectFailure(
                f"MQTT connect failed: {reason} (rc={rc})",
                client_id=self.client_id,
                broker=self.broker,
                error_code=rc,
            )
        )

    def _disconnected(self, rc: int, reason: str) -> None:
        if self._closing:
            return
        if not self._settled:
            self._connect_result(rc or -1, reason or "Connection closed during connect")
            return
        if not self._connected:
            return
        self._connected = False
        self._teardown()
        if self.on_connection_lost is not None:
            self.on_connection_lost(
                ConnectionLost(
                    f"MQTT disconnected: {reason}",
                    client_id=self.client_id,
                    broker=self.broker,
                    error_code=rc,
                )
            )

    def _deliver(self, message: InboundMessage) -> None:
        if self._closing or not self._connected:
            return
        if self.on_message_arrived is not None:
            self.on_message_arrived(message)

    def _teardown(self) -> None:
        """Stop paho's network thread without blocking the event loop."""
        self._closing = True
        client = self._client
        if client is None:
            return
        try:
            client.disconnect()
        except Exception:
            logger.debug("paho disconnect failed during teardown", exc_info=True)
        self._loop.run_in_executor(None, client.loop_stop)

    # transport API ------------------------------------------------------

    def disconnect(self) -> None:
        if self._closing:
            return
        self._connected = False
        self._teardown()

    def subscribe(self, topic: str, qos: int) -> None:
        rc, _mid = self._require_client(topic).subscribe(topic, qos=qos)
        self._check(rc, "subscribe", topic)

    def unsubscribe(self, topic: str) -> None:
        rc, _mid = self._require_client(topic).unsubscribe(topic)
        self._check(rc, "unsubscribe", topic)

    def send(self, message: OutboundMessage) -> None:
        info = self._require_client(message.destination).publish(
            message.destination, message.payload, qos=message.qos, retain=message.retained
        )
        self._check(info.rc, "publish", message.destination)

    def _require_client(self, topic: str) -> mqtt.Client:
        if self._client is None or not self._connected or self._closing:
            raise OperationError(
                "paho session is not connected",
                client_id=self.client_id,
                broker=self.broker,
                topic=topic,
            )
        return self._client

    def _check(self, rc: int, operation: str, topic: str) -> None:
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise OperationError(
                f"{operation} failed: {mqtt.error_string(rc)}",
                client_id=self.client_id,
                broker=self.broker,
                error_code=rc,
                topic=topic,
            )
