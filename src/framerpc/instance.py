"""RPC instance - the object a peer holds to talk to one other peer.

Each instance owns its own handler registry and pending-call table, and
is bound to one peer handle and one trust configuration. Any number of
instances can share a router (and therefore one transport).

Usage:
    router = Router(transport)
    rpc = RPCInstance(router, peer_handle, trusted_origin="https://app.example")

    rpc.add_command_handler("add", lambda a, b: a + b)
    rpc.add_event_listener("tick", on_tick)

    total = await rpc.invoke_command("add", 1, 2)
    await rpc.trigger_event("ready")

Calls have no built-in timeout: ``invoke_command`` waits until the peer
answers. Pass ``timeout=`` to bound the wait.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import PeerLink, RPCOptions
from .discovery import register_discovery_commands
from .errors import InstanceClosedError
from .pending import PendingCallTable
from .protocol.envelope import CommandRequest, Envelope, EnvelopeCodec, EventMessage
from .registry import CommandHandlerFn, EventListenerFn, HandlerRegistry
from .router import Router

logger = logging.getLogger(__name__)


class RPCInstance:
    """Facade exposing registration, invocation and events for one peer link.

    Args:
        router: Router owning the transport subscription for this context
        peer: Opaque peer handle to send to and accept frames from
        options: Base options (default: RPCOptions())
        **overrides: Individual option overrides (shared_tag, trusted_origin, ...)
    """

    def __init__(
        self,
        router: Router,
        peer: Any,
        options: RPCOptions | None = None,
        **overrides: Any,
    ) -> None:
        if peer is None:
            raise ValueError("A peer handle is required")

        self._options = (options or RPCOptions()).merged(**overrides)
        self._link = PeerLink.from_options(peer, self._options)
        self._codec = EnvelopeCodec(self._options.shared_tag)
        self._registry = HandlerRegistry()
        self._pending = PendingCallTable()
        self._router = router
        self._closed = False

        router.attach(self)

        if self._options.discovery:
            register_discovery_commands(self)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"RPCInstance(peer={self.peer!r}, origin={self._link.trusted_origin!r}, {state})"

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def peer(self) -> Any:
        return self._link.peer

    @property
    def options(self) -> RPCOptions:
        return self._options

    @property
    def link(self) -> PeerLink:
        return self._link

    @property
    def codec(self) -> EnvelopeCodec:
        return self._codec

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def pending(self) -> PendingCallTable:
        return self._pending

    @property
    def router(self) -> Router:
        return self._router

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Registration
    # =========================================================================

    def add_command_handler(self, name: str, handler: CommandHandlerFn) -> None:
        """Register a command handler.

        Raises:
            DuplicateHandlerError: If name is already registered
        """
        self._registry.add_command_handler(name, handler)

    def remove_command_handler(self, name: str) -> None:
        self._registry.remove_command_handler(name)

    def add_event_listener(self, name: str, callback: EventListenerFn) -> None:
        self._registry.add_event_listener(name, callback)

    def remove_event_listener(self, name: str, callback: EventListenerFn) -> None:
        self._registry.remove_event_listener(name, callback)

    # =========================================================================
    # Outbound
    # =========================================================================

    async def post(self, envelope: Envelope, destination: Any) -> None:
        """Stamp the protocol header on envelope and hand it to the transport."""
        frame = self._codec.encode(envelope)
        logger.debug(f"Send {type(envelope).__name__} {envelope.name!r} to {destination!r}")
        await self._router.transport.post(frame, destination, self._link.trusted_origin)

    async def invoke_command(self, name: str, *args: Any, timeout: float | None = None) -> Any:
        """Run a command on the peer and return its result.

        Raises:
            RemoteError: The peer's handler failed or the command is unknown
            TimeoutError: Only when timeout is given and expires
            InstanceClosedError: The instance is, or gets, closed
        """
        return await self.invoke_command_to(self._link.peer, name, *args, timeout=timeout)

    async def invoke_command_to(
        self,
        destination: Any,
        name: str,
        *args: Any,
        timeout: float | None = None,
    ) -> Any:
        """Like invoke_command, but sent to an explicit destination handle."""
        self._ensure_open()

        correlation_id, future = self._pending.create(name, destination)
        request = CommandRequest(name=name, id=correlation_id, args=list(args))
        try:
            await self.post(request, destination)
        except BaseException:
            self._pending.discard(correlation_id)
            raise

        if timeout is None:
            return await future

        try:
            return await asyncio.wait_for(future, timeout)
        except TimeoutError:
            self._pending.discard(correlation_id)
            raise TimeoutError(f"Command {name} timed out after {timeout}s") from None

    async def trigger_event(self, name: str, *args: Any) -> None:
        """Notify the peer's listeners; no acknowledgment."""
        await self.trigger_event_to(self._link.peer, name, *args)

    async def trigger_event_to(self, destination: Any, name: str, *args: Any) -> None:
        """Like trigger_event, but sent to an explicit destination handle."""
        self._ensure_open()
        await self.post(EventMessage(name=name, args=list(args)), destination)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _ensure_open(self) -> None:
        if self._closed:
            raise InstanceClosedError("RPC instance is closed")

    def close(self) -> None:
        """Detach from the router and fail every pending call."""
        if self._closed:
            return
        self._closed = True
        self._router.detach(self)
        count = self._pending.cancel_all(InstanceClosedError("RPC instance closed"))
        if count:
            logger.info(f"Closed RPC instance with {count} pending call(s)")

    async def __aenter__(self) -> RPCInstance:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
