"""Transport abstraction layer.

framerpc does not own a channel. A transport adapts one:

- memory - in-process endpoints with structured-clone semantics (tests, embedding)
- stdio - JSON lines over a pair of byte streams (subprocess links)

Any object implementing ``Transport`` can be used with a Router.
"""

from .base import InboundCallback, InboundMessage, Relation, Transport
from .memory import MemoryEndpoint, MemoryNetwork, MemoryTransport
from .stdio import StdioTransport, StreamPeer

__all__ = [
    # Base abstractions
    "InboundCallback",
    "InboundMessage",
    "Relation",
    "Transport",
    # In-memory implementation
    "MemoryEndpoint",
    "MemoryNetwork",
    "MemoryTransport",
    # stdio implementation
    "StdioTransport",
    "StreamPeer",
]
