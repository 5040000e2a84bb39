"""Auto-reconnecting client for the Teams third-party device API."""

__version__ = "0.1.0"

from .channels import DuplexChannels, OutboundQueue
from .client import DisconnectResult, TeamsClient
from .config import ClientConfig, OverflowPolicy, RetryPolicy, load_config
from .connection import TerminationReason, run_connection
from .errors import (
    ConfigLoadError,
    TeamsClientError,
    TeamsCommandRejected,
    TeamsConnectionError,
    TeamsHandshakeError,
    TeamsMessageError,
    TeamsQueueFullError,
    TeamsTimeout,
)
from .protocol import (
    PROTOCOL_VERSION,
    InboundKind,
    InboundMessage,
    MeetingPermissions,
    MeetingState,
    MeetingUpdate,
    OutboundCommand,
    TeamsAction,
    TeamsActionModifier,
    build_command,
    build_endpoint_uri,
    parse_inbound,
)
from .router import RouteOutcome, route
from .state import MeetingSnapshot
from .supervisor import supervise

__all__ = [
    "PROTOCOL_VERSION",
    "ClientConfig",
    "ConfigLoadError",
    "DisconnectResult",
    "DuplexChannels",
    "InboundKind",
    "InboundMessage",
    "MeetingPermissions",
    "MeetingSnapshot",
    "MeetingState",
    "MeetingUpdate",
    "OutboundCommand",
    "OutboundQueue",
    "OverflowPolicy",
    "RetryPolicy",
    "RouteOutcome",
    "TeamsAction",
    "TeamsActionModifier",
    "TeamsClient",
    "TeamsClientError",
    "TeamsCommandRejected",
    "TeamsConnectionError",
    "TeamsHandshakeError",
    "TeamsMessageError",
    "TeamsQueueFullError",
    "TeamsTimeout",
    "TerminationReason",
    "__version__",
    "build_command",
    "build_endpoint_uri",
    "load_config",
    "parse_inbound",
    "route",
    "run_connection",
    "supervise",
]
