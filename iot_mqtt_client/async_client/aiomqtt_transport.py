"""
Session transport backed by aiomqtt over WebSockets.

One instance wraps one aiomqtt ``Client`` for one connect attempt. The session
runs in its own asyncio task: it enters the client (connect), reports the
outcome, then iterates ``client.messages`` until the connection drops. aiomqtt
raises ``MqttError`` out of the message iterator when the connection is lost,
which is reported through ``on_connection_lost``.

Publish, subscribe and unsubscribe are coroutines in aiomqtt; they are
scheduled as tasks so the transport API stays non-blocking, and failures of
those tasks are logged.
"""
import asyncio
import contextlib
import logging
import ssl
from typing import Any, Callable, Coroutine, Optional

from aiomqtt import Client, MqttError

from ..core.exceptions import ConnectFailure, ConnectionLost, OperationError
from ..core.models import ConnectOptions, InboundMessage, OutboundMessage

logger = logging.getLogger(__name__)


def _error_code(error: BaseException) -> Optional[int]:
    rc = getattr(error, "rc", None)
    if rc is None:
        return None
    try:
        return int(getattr(rc, "value", rc))
    except (TypeError, ValueError):
        return None


def _payload_text(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8", errors="replace")
    return str(payload)


class AiomqttTransport:
    def __init__(self, host: str, port: int, path: str, client_id: str):
        self.host = host
        self.port = port
        self.path = path
        self.client_id = client_id
        self.on_connection_lost: Optional[Callable[[BaseException], None]] = None
        self.on_message_arrived: Optional[Callable[[InboundMessage], None]] = None

        self._client: Optional[Client] = None
        self._session_task: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()
        self._connected = False
        self._closing = False

    @property
    def broker(self) -> str:
        return f"{self.host}:{self.port}"

    def connect(self, options: ConnectOptions) -> None:
        if self._session_task is not None:
            raise RuntimeError("AiomqttTransport.connect() may only be called once")

        self._client = Client(
            hostname=self.host,
            port=self.port,
            identifier=self.client_id,
            username=options.username,
            password=options.password,
            transport="websockets",
            websocket_path=self.path,
            tls_context=ssl.create_default_context() if options.use_secure_transport else None,
            keepalive=options.keep_alive_seconds,
            timeout=options.timeout_seconds,
            clean_session=options.clean_session,
        )
        self._session_task = asyncio.get_running_loop().create_task(self._run_session(options))

    async def _run_session(self, options: ConnectOptions) -> None:
        try:
            await self._client.__aenter__()
        except Exception as e:
            logger.debug(f"aiomqtt connect to {self.broker} failed: {e}")
            if not self._closing:
                options.on_failure(
                    ConnectFailure(
                        str(e), client_id=self.client_id, broker=self.broker, error_code=_error_code(e)
                    )
                )
            return

        self._connected = True
        options.on_success()

        try:
            async for message in self._client.messages:
                inbound = InboundMessage(
                    destination=message.topic.value,
                    payload_text=_payload_text(message.payload),
                    qos=message.qos,
                    retained=message.retain,
                )
                if self.on_message_arrived is not None:
                    self.on_message_arrived(inbound)
        except Exception as e:
            self._connected = False
            if self._closing:
                return
            if not isinstance(e, MqttError):
                logger.error(f"aiomqtt session to {self.broker} stopped: {e}", exc_info=True)
            with contextlib.suppress(Exception):
                await self._client.__aexit__(None, None, None)
            if self.on_connection_lost is not None:
                self.on_connection_lost(
                    ConnectionLost(
                        str(e), client_id=self.client_id, broker=self.broker, error_code=_error_code(e)
                    )
                )

    def disconnect(self) -> None:
        if self._closing:
            return
        self._closing = True
        task = self._session_task
        if task is not None and not task.done():
            task.cancel()
        if self._client is not None:
            self._spawn(self._close(task, was_connected=self._connected), "disconnect")
        self._connected = False

    async def _close(self, task: Optional[asyncio.Task], was_connected: bool) -> None:
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if was_connected:
            with contextlib.suppress(Exception):
                await self._client.__aexit__(None, None, None)
        logger.debug(f"aiomqtt session to {self.broker} closed")

    def subscribe(self, topic: str, qos: int) -> None:
        client = self._require_client(topic)
        self._spawn(client.subscribe(topic, qos=qos), f"subscribe to {topic}")

    def unsubscribe(self, topic: str) -> None:
        client = self._require_client(topic)
        self._spawn(client.unsubscribe(topic), f"unsubscribe from {topic}")

    def send(self, message: OutboundMessage) -> None:
        client = self._require_client(message.destination)
        self._spawn(
            client.publish(
                message.destination, message.payload, qos=message.qos, retain=message.retained
            ),
            f"publish to {message.destination}",
        )

    def _require_client(self, topic: str) -> Client:
        if self._client is None or not self._connected or self._closing:
            raise OperationError(
                "aiomqtt session is not connected",
                client_id=self.client_id,
                broker=self.broker,
                topic=topic,
            )
        return self._client

    def _spawn(self, coro: Coroutine, description: str) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._task_done(t, description))

    def _task_done(self, task: asyncio.Task, description: str) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"aiomqtt {description} failed: {error}")
