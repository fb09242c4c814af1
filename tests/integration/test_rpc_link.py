"""Integration tests: peers talking over the in-memory transport.

Every context gets its own endpoint, transport and router, just like
separate windows or processes would.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from framerpc import (
    InstanceClosedError,
    RemoteError,
    Router,
    RPCInstance,
    current_message,
    list_remote_commands,
    list_remote_listeners,
)
from framerpc.transport import InboundMessage, MemoryNetwork

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def network() -> MemoryNetwork:
    return MemoryNetwork()


@pytest.fixture
def host(network: MemoryNetwork):
    return network.endpoint("host", origin="https://host.example")


@pytest.fixture
def child(network: MemoryNetwork, host):
    return network.endpoint("child", origin="https://child.example", parent=host)


@pytest.fixture
def host_rpc(host, child) -> RPCInstance:
    """Host's link to the child frame."""
    return RPCInstance(Router(host.transport), child, trusted_origin=child.origin)


@pytest.fixture
def child_rpc(host, child) -> RPCInstance:
    """Child's link back to the host."""
    return RPCInstance(Router(child.transport), host, trusted_origin=host.origin)


class Tap:
    """Extra subscriber recording every frame arriving in a context."""

    def __init__(self, endpoint) -> None:
        self.frames: list[dict] = []
        endpoint.transport.subscribe(self)

    async def __call__(self, message: InboundMessage) -> None:
        self.frames.append(message.envelope)


# =============================================================================
# Commands
# =============================================================================


class TestCommands:
    """Request/response across the link."""

    @pytest.mark.anyio
    async def test_result(self, host_rpc, child_rpc):
        child_rpc.add_command_handler("add", lambda a, b: a + b)

        assert await host_rpc.invoke_command("add", 2, 40) == 42

    @pytest.mark.anyio
    async def test_both_directions(self, host_rpc, child_rpc):
        host_rpc.add_command_handler("whoami", lambda: "host")
        child_rpc.add_command_handler("whoami", lambda: "child")

        assert await host_rpc.invoke_command("whoami") == "child"
        assert await child_rpc.invoke_command("whoami") == "host"

    @pytest.mark.anyio
    async def test_structured_arguments(self, host_rpc, child_rpc):
        child_rpc.add_command_handler("merge", lambda a, b: {**a, **b})

        result = await host_rpc.invoke_command("merge", {"x": [1, 2]}, {"y": None})

        assert result == {"x": [1, 2], "y": None}

    @pytest.mark.anyio
    async def test_handler_error(self, host_rpc, child_rpc):
        class QuotaExceeded(Exception):
            def __init__(self, limit):
                super().__init__(f"limit is {limit}")
                self.limit = limit

        def spend():
            raise QuotaExceeded(10)

        child_rpc.add_command_handler("spend", spend)

        with pytest.raises(RemoteError) as exc_info:
            await host_rpc.invoke_command("spend")

        error = exc_info.value
        assert error.remote_name == "QuotaExceeded"
        assert error.remote_message == "limit is 10"
        assert "QuotaExceeded: limit is 10" in str(error)
        assert error.record["limit"] == 10
        assert "Traceback" in error.remote_stack

    @pytest.mark.anyio
    async def test_unknown_command(self, host_rpc, child_rpc):
        with pytest.raises(RemoteError) as exc_info:
            await host_rpc.invoke_command("nope")

        assert "nope" in str(exc_info.value)
        assert exc_info.value.remote_name == "CommandNotFoundError"

    @pytest.mark.anyio
    async def test_interleaved_calls(self, host_rpc, child_rpc):
        """Responses may come back out of order; ids keep them apart."""
        release = asyncio.Event()

        async def slow(value):
            await release.wait()
            return f"slow:{value}"

        async def fast(value):
            return f"fast:{value}"

        child_rpc.add_command_handler("slow", slow)
        child_rpc.add_command_handler("fast", fast)

        slow_call = asyncio.create_task(host_rpc.invoke_command("slow", 1))
        fast_result = await host_rpc.invoke_command("fast", 2)

        assert fast_result == "fast:2"
        assert not slow_call.done()

        release.set()
        assert await slow_call == "slow:1"
        assert len(host_rpc.pending) == 0

    @pytest.mark.anyio
    async def test_many_concurrent_calls(self, host_rpc, child_rpc):
        async def double(n):
            await asyncio.sleep(0.001 * (n % 3))
            return n * 2

        child_rpc.add_command_handler("double", double)

        results = await asyncio.gather(*(host_rpc.invoke_command("double", n) for n in range(20)))

        assert results == [n * 2 for n in range(20)]

    @pytest.mark.anyio
    async def test_handler_sees_inbound_message(self, host, host_rpc, child_rpc):
        def caller():
            message = current_message()
            return [message.sender.name, message.origin]

        child_rpc.add_command_handler("caller", caller)

        assert await host_rpc.invoke_command("caller") == ["host", host.origin]

    @pytest.mark.anyio
    async def test_timeout_then_late_response(self, network, host_rpc, child_rpc, caplog):
        release = asyncio.Event()

        async def stuck():
            await release.wait()
            return "late"

        child_rpc.add_command_handler("stuck", stuck)

        with pytest.raises(TimeoutError):
            await host_rpc.invoke_command("stuck", timeout=0.02)
        assert len(host_rpc.pending) == 0

        with caplog.at_level(logging.WARNING, logger="framerpc"):
            release.set()
            await network.drain()

        assert "Invalid request ID" in caplog.text

    @pytest.mark.anyio
    async def test_close_fails_waiting_callers(self, network, host_rpc, child_rpc):
        release = asyncio.Event()

        async def stuck():
            await release.wait()

        child_rpc.add_command_handler("stuck", stuck)
        call = asyncio.create_task(host_rpc.invoke_command("stuck"))
        await asyncio.sleep(0.01)

        host_rpc.close()

        with pytest.raises(InstanceClosedError):
            await call
        release.set()
        await network.drain()


# =============================================================================
# Events
# =============================================================================


class TestEvents:
    """Fire-and-forget notifications."""

    @pytest.mark.anyio
    async def test_listeners_in_order(self, network, host_rpc, child_rpc):
        calls = []
        child_rpc.add_event_listener("saved", lambda doc: calls.append(("first", doc)))
        child_rpc.add_event_listener("saved", lambda doc: calls.append(("second", doc)))

        await host_rpc.trigger_event("saved", "doc-1")
        await network.drain()

        assert calls == [("first", "doc-1"), ("second", "doc-1")]

    @pytest.mark.anyio
    async def test_no_listeners(self, network, host, host_rpc, child_rpc):
        tap = Tap(host)

        await host_rpc.trigger_event("unheard", 1)
        await network.drain()

        assert tap.frames == []

    @pytest.mark.anyio
    async def test_removed_listener(self, network, host_rpc, child_rpc):
        calls = []

        def listener():
            calls.append("called")

        child_rpc.add_event_listener("ping", listener)
        child_rpc.remove_event_listener("ping", listener)
        child_rpc.remove_event_listener("ping", listener)

        await host_rpc.trigger_event("ping")
        await network.drain()

        assert calls == []

    @pytest.mark.anyio
    async def test_handler_can_emit_back(self, network, host_rpc, child_rpc):
        received = []
        host_rpc.add_event_listener("progress", received.append)

        async def work():
            for pct in (50, 100):
                await child_rpc.trigger_event("progress", pct)
            return "done"

        child_rpc.add_command_handler("work", work)

        assert await host_rpc.invoke_command("work") == "done"
        await network.drain()
        assert received == [50, 100]


# =============================================================================
# Trust boundaries
# =============================================================================


class TestTrust:
    """Frames from the wrong sender, origin or tag have no effect."""

    @pytest.mark.anyio
    async def test_mismatched_tag(self, network, host, child, child_rpc):
        calls = []
        child_rpc.add_command_handler("cmd", lambda: calls.append("cmd"))
        child_rpc.add_event_listener("evt", lambda: calls.append("evt"))
        tap = Tap(host)
        impostor = RPCInstance(Router(host.transport), child, shared_tag="other-tag")

        await impostor.trigger_event("evt")
        call = asyncio.create_task(impostor.invoke_command("cmd"))
        await network.drain()

        assert calls == []
        assert tap.frames == []
        assert not call.done()
        impostor.close()
        with pytest.raises(InstanceClosedError):
            await call

    @pytest.mark.anyio
    async def test_mismatched_version(self, network, host, child, child_rpc):
        calls = []
        child_rpc.add_event_listener("evt", lambda: calls.append("evt"))
        frame = {"tag": child_rpc.codec.tag, "protocolVersion": 99, "op": "event", "name": "evt", "args": []}

        await host.transport.post(frame, child, "*")
        await network.drain()

        assert calls == []

    @pytest.mark.anyio
    async def test_stranger_ignored_while_other_link_accepts(self, network, child):
        stranger = network.endpoint("stranger", origin="https://stranger.example")
        router = Router(child.transport)
        calls = []
        to_host = RPCInstance(router, network.get("host"))
        to_stranger = RPCInstance(router, stranger)
        to_host.add_event_listener("evt", lambda: calls.append("host-link"))
        to_stranger.add_event_listener("evt", lambda: calls.append("stranger-link"))
        stranger_rpc = RPCInstance(Router(stranger.transport), child)

        await stranger_rpc.trigger_event("evt")
        await network.drain()

        assert calls == ["stranger-link"]

    @pytest.mark.anyio
    async def test_untrusted_origin(self, network, host, child):
        calls = []
        guarded = RPCInstance(Router(child.transport), host, trusted_origin="https://elsewhere.example")
        guarded.add_event_listener("evt", lambda: calls.append("evt"))
        sender = RPCInstance(Router(host.transport), child)

        await sender.trigger_event("evt")
        await network.drain()

        assert calls == []

    @pytest.mark.anyio
    async def test_parent_relation(self, network, host):
        """A popup linked to a frame may accept the frame's parent."""
        frame = network.endpoint("frame", parent=host)
        popup = network.endpoint("popup")
        calls = []
        popup_router = Router(popup.transport)
        strict = RPCInstance(popup_router, frame)
        relaxed = RPCInstance(popup_router, frame, shared_tag="relaxed", accept_parent=True)
        strict.add_event_listener("evt", lambda: calls.append("strict"))
        relaxed.add_event_listener("evt", lambda: calls.append("relaxed"))

        await RPCInstance(Router(host.transport), popup, shared_tag="relaxed").trigger_event("evt")
        await RPCInstance(Router(host.transport), popup).trigger_event("evt")
        await network.drain()

        assert calls == ["relaxed"]

    @pytest.mark.anyio
    async def test_command_to_accepted_relation(self, network, host):
        """invoke_command_to reaches a peer trusted through a relation."""
        frame = network.endpoint("frame", parent=host)
        popup = network.endpoint("popup")
        popup_rpc = RPCInstance(Router(popup.transport), frame, accept_parent=True)
        host_side = RPCInstance(Router(host.transport), popup)
        host_side.add_command_handler("title", lambda: "Host page")

        assert await popup_rpc.invoke_command_to(host, "title") == "Host page"

    @pytest.mark.anyio
    async def test_command_to_sibling_on_trusted_origin(self, network):
        """A sibling frame sharing the trusted origin answers an explicit call."""
        top = network.endpoint("top", origin="https://top.example")
        first = network.endpoint("first", origin="https://frames.example", parent=top)
        second = network.endpoint("second", origin="https://frames.example", parent=top)
        rpc = RPCInstance(Router(top.transport), first, trusted_origin="https://frames.example")
        served = []

        for endpoint in (first, second):
            frame_rpc = RPCInstance(Router(endpoint.transport), top)
            frame_rpc.add_command_handler("who", lambda name=endpoint.name: served.append(name) or name)

        assert await rpc.invoke_command_to(second, "who", timeout=5) == "second"
        assert await rpc.invoke_command("who", timeout=5) == "first"
        assert served == ["second", "first"]
        assert len(rpc.pending) == 0


# =============================================================================
# Discovery
# =============================================================================


class TestDiscovery:
    """Built-in introspection commands."""

    @pytest.mark.anyio
    async def test_list_commands_and_listeners(self, host_rpc, child_rpc):
        child_rpc.add_command_handler("add", lambda a, b: a + b)
        child_rpc.add_event_listener("saved", lambda: None)

        commands = await list_remote_commands(host_rpc)
        listeners = await list_remote_listeners(host_rpc)

        assert "add" in commands
        assert "framerpc-get-commands" in commands
        assert listeners == ["saved"]

    @pytest.mark.anyio
    async def test_disabled_discovery(self, host, child):
        RPCInstance(Router(child.transport), host, discovery=False)
        caller = RPCInstance(Router(host.transport), child)

        with pytest.raises(RemoteError, match="framerpc-get-commands"):
            await list_remote_commands(caller)
