"""
The transport capability the connection manager is written against.

The manager never imports an MQTT library directly: it receives a
``TransportFactory`` and asks it for a fresh ``SessionTransport`` on every
connect attempt. Concrete implementations live in ``iot_mqtt_client.async_client``
(aiomqtt and paho-mqtt); tests substitute a fake.

Contract:
    - ``connect(options)`` starts an attempt and returns immediately. Exactly one
      of ``options.on_success()`` / ``options.on_failure(error)`` is called later,
      on the event loop thread.
    - ``on_connection_lost(error)`` is called, on the event loop thread, when an
      established session drops without ``disconnect()`` being called.
    - ``on_message_arrived(message)`` is called for every inbound message.
    - ``subscribe``, ``unsubscribe`` and ``send`` return immediately and raise if
      the request cannot be issued.
"""
from typing import Callable, Optional, Protocol, runtime_checkable

from .models import ConnectOptions, InboundMessage, OutboundMessage


@runtime_checkable
class SessionTransport(Protocol):
    on_connection_lost: Optional[Callable[[BaseException], None]]
    on_message_arrived: Optional[Callable[[InboundMessage], None]]

    def connect(self, options: ConnectOptions) -> None:
        ...

    def disconnect(self) -> None:
        ...

    def subscribe(self, topic: str, qos: int) -> None:
        ...

    def unsubscribe(self, topic: str) -> None:
        ...

    def send(self, message: OutboundMessage) -> None:
        ...


# (host, port, path, client_id) -> transport
TransportFactory = Callable[[str, int, str, str], SessionTransport]
