"""
Transport-agnostic building blocks: settings resolution, topics, models,
errors, reconnect policies and the transport interface.
"""
from .base import MessageLogger, ClientFormatter, generate_client_identifier
from .config import BrokerSettings, resolve_config, build_endpoint
from .models import (
    TopicPurpose,
    DEFAULT_TOPIC_SUFFIXES,
    ConnectionState,
    Credentials,
    ResolvedConfig,
    ConnectionStatus,
    ConnectOptions,
    InboundMessage,
    OutboundMessage,
)
from .exceptions import (
    SessionError,
    ConnectFailure,
    ConnectionLost,
    NotConnected,
    OperationError,
)
from .reconnect import ReconnectPolicy, FixedDelayPolicy, ExponentialBackoffPolicy
from .topic_manager import TopicManager
from .transport import SessionTransport, TransportFactory

__all__ = [
    # Logging
    "MessageLogger",
    "ClientFormatter",
    "generate_client_identifier",
    # Configuration
    "BrokerSettings",
    "resolve_config",
    "build_endpoint",
    "TopicManager",
    # Models
    "TopicPurpose",
    "DEFAULT_TOPIC_SUFFIXES",
    "ConnectionState",
    "Credentials",
    "ResolvedConfig",
    "ConnectionStatus",
    "ConnectOptions",
    "InboundMessage",
    "OutboundMessage",
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
    # Transport interface
    "SessionTransport",
    "TransportFactory",
]
