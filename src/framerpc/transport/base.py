"""Transport contract.

A transport moves opaque envelopes between execution contexts. framerpc
needs only two things from it:

- ``post(envelope, destination, target_origin)`` to send a frame
- a broadcast subscription yielding ``InboundMessage`` for every frame
  that arrives in this context

Peer handles are opaque objects owned by the transport. A handle may
expose secondary relations as attributes (``handle.opener``,
``handle.parent``) that an instance can opt in to trusting.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Relation(str, Enum):
    """Secondary sender identities relative to a peer handle."""

    OPENER = "opener"  # the context that opened the peer (popup topologies)
    PARENT = "parent"  # the context embedding the peer (child frames)


@dataclass(frozen=True)
class InboundMessage:
    """One frame as delivered by the transport."""

    envelope: Any
    sender: Any
    origin: str


InboundCallback = Callable[[InboundMessage], Awaitable[None]]


class Transport(ABC):
    """Abstract shared channel for one execution context."""

    @abstractmethod
    async def post(self, envelope: dict[str, Any], destination: Any, target_origin: str) -> None:
        """Send one envelope to destination.

        Args:
            envelope: Structured frame (mapping of plain values)
            destination: Peer handle to deliver to
            target_origin: Origin the destination must have ("*" for any)
        """
        ...

    @abstractmethod
    def subscribe(self, callback: InboundCallback) -> Callable[[], None]:
        """Receive every inbound frame.

        Returns:
            Unsubscribe function
        """
        ...
