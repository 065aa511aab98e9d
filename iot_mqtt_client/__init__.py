# Core components
from .core import (
    BrokerSettings,
    resolve_config,
    ResolvedConfig,
    TopicManager,
    TopicPurpose,
    ConnectionState,
    ConnectionStatus,
    Credentials,
    ConnectOptions,
    InboundMessage,
    OutboundMessage,
    MessageLogger,
    ClientFormatter,
    SessionError,
    ConnectFailure,
    ConnectionLost,
    NotConnected,
    OperationError,
    ReconnectPolicy,
    FixedDelayPolicy,
    ExponentialBackoffPolicy,
    SessionTransport,
    TransportFactory,
)

# Async connection manager and transports
from .async_client import (
    ConnectionManager,
    AiomqttTransport,
    PahoWebSocketTransport,
    ensure_compatible_event_loop_policy,
    configure_asyncio_compatibility,
    reset_event_loop_policy,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "BrokerSettings",
    "resolve_config",
    "ResolvedConfig",
    "TopicManager",
    "TopicPurpose",
    # Models
    "ConnectionState",
    "ConnectionStatus",
    "Credentials",
    "ConnectOptions",
    "InboundMessage",
    "OutboundMessage",
    # Logging
    "MessageLogger",
    "ClientFormatter",
    # Exceptions
    "SessionError",
    "ConnectFailure",
    "ConnectionLost",
    "NotConnected",
    "OperationError",
    # Reconnect policies
    "ReconnectPolicy",
    "FixedDelayPolicy",
    "ExponentialBackoffPolicy",
    # Transports
    "SessionTransport",
    "TransportFactory",
    "AiomqttTransport",
    "PahoWebSocketTransport",
    # Manager
    "ConnectionManager",
    # Compatibility
    "ensure_compatible_event_loop_policy",
    "configure_asyncio_compatibility",
    "reset_event_loop_policy",
]
