"""In-process transport.

Simulates isolated execution contexts sharing one message channel, the
way browser windows and frames exchange structured messages:

- every endpoint is both a peer handle and the owner of a transport
- envelopes are deep-copied on post (no shared state between contexts)
- a post whose target origin does not match the destination is dropped
- each delivery runs as its own asyncio task, so a slow handler never
  blocks delivery of later frames

Usage:
    network = MemoryNetwork()
    host = network.endpoint("host", origin="https://host.example")
    child = network.endpoint("child", origin="https://child.example", parent=host)

    async with Router(host.transport) as router:
        rpc = RPCInstance(router, child)
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable
from typing import Any

from .base import InboundCallback, InboundMessage, Transport

logger = logging.getLogger(__name__)


class MemoryEndpoint:
    """One execution context on a MemoryNetwork."""

    def __init__(
        self,
        network: MemoryNetwork,
        name: str,
        origin: str,
        opener: MemoryEndpoint | None = None,
        parent: MemoryEndpoint | None = None,
    ) -> None:
        self.network = network
        self.name = name
        self.origin = origin
        self.opener = opener
        self.parent = parent
        self.transport = MemoryTransport(self)

    def __repr__(self) -> str:
        return f"MemoryEndpoint({self.name!r}, origin={self.origin!r})"


class MemoryTransport(Transport):
    """Transport bound to a single MemoryEndpoint."""

    def __init__(self, endpoint: MemoryEndpoint) -> None:
        self.endpoint = endpoint
        self._subscribers: list[InboundCallback] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def post(self, envelope: dict[str, Any], destination: Any, target_origin: str) -> None:
        if not isinstance(destination, MemoryEndpoint) or destination.network is not self.endpoint.network:
            raise ValueError(f"Destination is not on this network: {destination!r}")

        if target_origin != "*" and target_origin != destination.origin:
            logger.warning(
                f"Dropping frame from {self.endpoint.name}: target origin {target_origin} "
                f"does not match {destination.name} ({destination.origin})"
            )
            return

        message = InboundMessage(
            envelope=copy.deepcopy(envelope),
            sender=self.endpoint,
            origin=self.endpoint.origin,
        )
        self.endpoint.network.deliver(destination, message)

    def subscribe(self, callback: InboundCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe


class MemoryNetwork:
    """A shared channel connecting MemoryEndpoints."""

    def __init__(self) -> None:
        self._endpoints: dict[str, MemoryEndpoint] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def endpoint(
        self,
        name: str,
        origin: str | None = None,
        *,
        opener: MemoryEndpoint | None = None,
        parent: MemoryEndpoint | None = None,
    ) -> MemoryEndpoint:
        """Create a new endpoint (names are unique per network)."""
        if name in self._endpoints:
            raise ValueError(f"Endpoint already exists: {name}")
        endpoint = MemoryEndpoint(
            self,
            name,
            origin or f"memory://{name}",
            opener=opener,
            parent=parent,
        )
        self._endpoints[name] = endpoint
        return endpoint

    def get(self, name: str) -> MemoryEndpoint | None:
        return self._endpoints.get(name)

    def deliver(self, destination: MemoryEndpoint, message: InboundMessage) -> None:
        """Schedule delivery of message to every subscriber of destination."""
        loop = asyncio.get_running_loop()
        for callback in list(destination.transport._subscribers):
            task = loop.create_task(callback(message))
            self._tasks.add(task)
            task.add_done_callback(self._on_delivery_done)

    def _on_delivery_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Delivery callback failed: {exc!r}")

    async def drain(self) -> None:
        """Wait until no deliveries are in flight (including chained ones)."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
