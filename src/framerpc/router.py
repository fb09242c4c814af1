"""Router - demultiplexes inbound frames to RPC instances.

One router per execution context owns the transport subscription. Every
inbound frame is offered to every attached instance, and each instance
accepts it only if, in order:

1. the sender is the instance's peer, or an accepted relation of it (a
   response is also accepted from the handle its call was sent to)
2. the sender's origin is trusted (or the instance trusts any origin)
3. the envelope carries the instance's tag and protocol version

A frame failing a check is skipped for that instance only, so instances
linked to different peers, or with different tags, share one channel
without seeing each other's traffic.

Accepted frames are routed by kind:

- command request: run the handler, always answer with one response
  (a request that names a call id but is otherwise malformed gets a
  failure response)
- command response: settle the matching pending call
- event: run listeners one after another, in registration order

Nothing raised while handling a frame escapes ``dispatch``.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, assert_never

from .errors import (
    CommandNotFoundError,
    EnvelopeRejected,
    ProtocolViolation,
    RemoteError,
    UnknownCorrelationIdError,
    serialize_error,
)
from .protocol.envelope import CommandRequest, CommandResponse, Direction, EventMessage, Operation
from .transport.base import InboundMessage, Transport

if TYPE_CHECKING:
    from .instance import RPCInstance

logger = logging.getLogger(__name__)

# Inbound frame being handled by the current handler/listener (async-safe)
_current_message: ContextVar[InboundMessage | None] = ContextVar(
    "framerpc_current_message", default=None
)


def current_message() -> InboundMessage | None:
    """The inbound frame that triggered the running handler or listener.

    Returns None outside of a handler or listener.
    """
    return _current_message.get()


async def _call(fn: Any, args: list[Any]) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _answers_call_to(instance: RPCInstance, message: InboundMessage) -> bool:
    """True if message is the response to a call instance sent to message.sender."""
    raw = message.envelope
    if not isinstance(raw, Mapping):
        return False
    if raw.get("op") != Operation.COMMAND.value or raw.get("dir") != Direction.RESPONSE.value:
        return False
    correlation_id = raw.get("id")
    if not isinstance(correlation_id, str):
        return False
    call = instance.pending.get(correlation_id)
    return call is not None and call.destination is message.sender


class Router:
    """Single subscription point for all inbound frames of one context.

    Usage:
        router = Router(transport)
        rpc = RPCInstance(router, peer)   # attaches and starts the router

        async with Router(transport) as router:
            ...
    """

    def __init__(self, transport: Transport) -> None:
        self.transport = transport
        self._instances: list[RPCInstance] = []
        self._unsubscribe: Any = None

    @property
    def started(self) -> bool:
        return self._unsubscribe is not None

    @property
    def instances(self) -> tuple[RPCInstance, ...]:
        return tuple(self._instances)

    def start(self) -> None:
        """Subscribe to the transport (idempotent)."""
        if self._unsubscribe is None:
            self._unsubscribe = self.transport.subscribe(self.dispatch)
            logger.info(f"Router subscribed to {type(self.transport).__name__}")

    def stop(self) -> None:
        """Unsubscribe from the transport (idempotent)."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info(f"Router unsubscribed from {type(self.transport).__name__}")

    async def __aenter__(self) -> Router:
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        for instance in self.instances:
            instance.close()
        self.stop()

    def attach(self, instance: RPCInstance) -> None:
        """Register an instance to receive frames."""
        if instance in self._instances:
            return
        self._instances.append(instance)
        self.start()
        logger.info(f"Attached RPC instance for peer {instance.peer!r}")

    def detach(self, instance: RPCInstance) -> None:
        """Remove an instance (teardown only)."""
        if instance in self._instances:
            self._instances.remove(instance)
            logger.info(f"Detached RPC instance for peer {instance.peer!r}")

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, message: InboundMessage) -> None:
        """Offer one inbound frame to every attached instance."""
        accepted = 0
        # Snapshot: instances attached while this frame is handled see later frames only
        for instance in tuple(self._instances):
            try:
                if await self._deliver(instance, message):
                    accepted += 1
            except Exception:
                logger.exception(f"Unhandled error delivering frame from {message.sender!r}")

        if not accepted:
            logger.debug(f"Frame from {message.sender!r} ({message.origin}) matched no instance")

    async def _deliver(self, instance: RPCInstance, message: InboundMessage) -> bool:
        if instance.closed:
            return False

        link = instance.link
        # Responses are also accepted from the handle an explicit-destination call went to
        if not link.matches_sender(message.sender) and not _answers_call_to(instance, message):
            return False

        if not link.matches_origin(message.origin):
            logger.warning(f"Message from untrusted origin: {message.origin}")
            return False

        try:
            envelope = instance.codec.decode(message.envelope)
        except EnvelopeRejected as e:
            logger.warning(f"Discarding frame from {message.sender!r}: {e}")
            return False
        except ProtocolViolation as e:
            logger.error(f"Protocol violation from {message.sender!r}: {e}")
            await self._reject_malformed_request(instance, message, e)
            return True

        logger.debug(f"Received {type(envelope).__name__} {envelope.name!r} from {message.sender!r}")

        token = _current_message.set(message)
        try:
            match envelope:
                case CommandRequest():
                    await self._handle_command_request(instance, message, envelope)
                case CommandResponse():
                    self._handle_command_response(instance, envelope)
                case EventMessage():
                    await self._handle_event(instance, envelope)
                case _:
                    assert_never(envelope)
        finally:
            _current_message.reset(token)
        return True

    async def _handle_command_request(
        self, instance: RPCInstance, message: InboundMessage, request: CommandRequest
    ) -> None:
        handler = instance.registry.get_command_handler(request.name)
        if handler is None:
            error = CommandNotFoundError(f"Invalid command: {request.name}")
            logger.warning(
                f"{error} (valid commands: {', '.join(instance.registry.command_names())})"
            )
            await self._respond(instance, message, request, False, serialize_error(error))
            return

        try:
            result = await _call(handler, request.args)
        except Exception as e:
            logger.exception(f"Command handler failed: {request.name}")
            await self._respond(instance, message, request, False, serialize_error(e))
            return

        try:
            await self._respond(instance, message, request, True, result)
        except Exception as e:
            # Result could not be sent; the caller still gets exactly one answer
            logger.exception(f"Could not send result for {request.name}")
            await self._respond(instance, message, request, False, serialize_error(e))

    async def _respond(
        self,
        instance: RPCInstance,
        message: InboundMessage,
        request: CommandRequest,
        success: bool,
        response: Any,
    ) -> None:
        reply = CommandResponse(name=request.name, id=request.id, success=success, response=response)
        await instance.post(reply, message.sender)

    async def _reject_malformed_request(
        self, instance: RPCInstance, message: InboundMessage, violation: ProtocolViolation
    ) -> None:
        """Answer a request that names a call id but could not be parsed."""
        raw = message.envelope
        if raw.get("op") != Operation.COMMAND.value or raw.get("dir") != Direction.REQUEST.value:
            return
        correlation_id = raw.get("id")
        if not isinstance(correlation_id, str):
            return
        name = raw.get("name")
        reply = CommandResponse(
            name=name if isinstance(name, str) else "",
            id=correlation_id,
            success=False,
            response=serialize_error(violation),
        )
        await instance.post(reply, message.sender)

    def _handle_command_response(self, instance: RPCInstance, response: CommandResponse) -> None:
        try:
            if response.success:
                instance.pending.resolve(response.id, response.response)
            else:
                instance.pending.reject(response.id, RemoteError.from_record(response.response))
        except UnknownCorrelationIdError as e:
            logger.warning(f"{e} (response to {response.name})")

    async def _handle_event(self, instance: RPCInstance, event: EventMessage) -> None:
        listeners = instance.registry.get_event_listeners(event.name)
        if not listeners:
            logger.debug(f"Event triggered without listeners: {event.name}")
            return

        for listener in listeners:
            try:
                await _call(listener, event.args)
            except Exception:
                logger.exception(f"Event listener error for {event.name}: {listener!r}")
