"""Wire protocol layer.

Defines the envelopes exchanged between peers and the codec that
stamps and checks the protocol header.

Key concepts:
- Command request: caller -> peer, carries a correlation id
- Command response: peer -> caller, same correlation id, success flag
- Event: either direction, no id, no response
"""

from .envelope import (
    DEFAULT_TAG,
    PROTOCOL_VERSION,
    CommandRequest,
    CommandResponse,
    Direction,
    Envelope,
    EnvelopeCodec,
    EventMessage,
    Operation,
)

__all__ = [
    "DEFAULT_TAG",
    "PROTOCOL_VERSION",
    "CommandRequest",
    "CommandResponse",
    "Direction",
    "Envelope",
    "EnvelopeCodec",
    "EventMessage",
    "Operation",
]
