"""
Asyncio connection manager and its MQTT-over-WebSocket transports.
"""
from .manager import ConnectionManager, encode_payload
from .aiomqtt_transport import AiomqttTransport
from .paho_transport import PahoWebSocketTransport
from .compatibility import (
    ensure_compatible_event_loop_policy,
    configure_asyncio_compatibility,
    reset_event_loop_policy,
)

__all__ = [
    # Manager
    "ConnectionManager",
    "encode_payload",
    # Transports
    "AiomqttTransport",
    "PahoWebSocketTransport",
    # Compatibility
    "ensure_compatible_event_loop_policy",
    "configure_asyncio_compatibility",
    "reset_event_loop_policy",
]
