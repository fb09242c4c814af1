"""framerpc - duplex RPC and events between isolated peers.

Public API:
- Router: one per execution context, owns the transport subscription
- RPCInstance: link to one peer (commands, events, pending calls)
- RPCOptions: shared tag, trusted origin, accepted relations
- RemoteError: failure raised by the peer, rebuilt locally
- Transport, InboundMessage, Relation: transport contract
"""

from .config import PeerLink, RPCOptions
from .discovery import GET_COMMANDS, GET_LISTENERS, list_remote_commands, list_remote_listeners
from .errors import (
    CommandNotFoundError,
    DuplicateHandlerError,
    EnvelopeRejected,
    InstanceClosedError,
    ProtocolViolation,
    RemoteError,
    RPCError,
    UnknownCorrelationIdError,
    deserialize_error,
    serialize_error,
)
from .instance import RPCInstance
from .protocol import DEFAULT_TAG, PROTOCOL_VERSION, EnvelopeCodec
from .router import Router, current_message
from .transport import InboundMessage, Relation, Transport

__all__ = [
    # Core
    "Router",
    "RPCInstance",
    "RPCOptions",
    "PeerLink",
    "current_message",
    # Protocol
    "DEFAULT_TAG",
    "PROTOCOL_VERSION",
    "EnvelopeCodec",
    # Discovery
    "GET_COMMANDS",
    "GET_LISTENERS",
    "list_remote_commands",
    "list_remote_listeners",
    # Errors
    "RPCError",
    "RemoteError",
    "CommandNotFoundError",
    "DuplicateHandlerError",
    "EnvelopeRejected",
    "InstanceClosedError",
    "ProtocolViolation",
    "UnknownCorrelationIdError",
    "serialize_error",
    "deserialize_error",
    # Transport contract
    "InboundMessage",
    "Relation",
    "Transport",
]

__version__ = "0.1.0"
