"""stdio transport.

Links two processes over a pair of byte streams, typically a parent and
a child spawned with pipes. Each frame is one UTF-8 JSON line:

    {"origin": "stdio://worker", "targetOrigin": "*", "envelope": {...}}

Cross-platform considerations:
- Output is always UTF-8 with LF newlines
- Input accepts LF and CRLF, and skips a leading BOM
- Malformed lines are logged to stderr and skipped

The remote process is represented by a single ``StreamPeer`` handle. The
origin on inbound frames is the one the remote side claims for itself,
so only a private pipe gives it any meaning.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable
from typing import Any, BinaryIO

from .base import InboundCallback, InboundMessage, Transport

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
NEWLINE = "\n"


class StreamPeer:
    """Handle for the process at the other end of the streams."""

    opener = None
    parent = None

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"StreamPeer({self.name!r})"


class StdioTransport(Transport):
    """Transport over a reader/writer stream pair.

    Args:
        reader: Inbound byte stream (default: stdin, attached on first run)
        writer: Outbound binary stream (default: sys.stdout.buffer)
        origin: Origin stamped on outbound frames
        peer_name: Name of the remote peer handle
    """

    def __init__(
        self,
        reader: asyncio.StreamReader | None = None,
        writer: BinaryIO | None = None,
        *,
        origin: str = "stdio://local",
        peer_name: str = "stdio-peer",
    ) -> None:
        self._reader = reader
        self._writer = writer if writer is not None else sys.stdout.buffer
        self.origin = origin
        self.peer = StreamPeer(peer_name)
        self._subscribers: list[InboundCallback] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._run_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # =========================================================================
    # Transport contract
    # =========================================================================

    async def post(self, envelope: dict[str, Any], destination: Any, target_origin: str) -> None:
        if destination is not self.peer:
            logger.warning(f"stdio transport can only post to {self.peer!r}, not {destination!r}")
            return

        frame = {"origin": self.origin, "targetOrigin": target_origin, "envelope": envelope}
        line = json.dumps(frame, ensure_ascii=False, default=repr) + NEWLINE
        self._writer.write(line.encode(ENCODING))
        self._writer.flush()

    def subscribe(self, callback: InboundCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # =========================================================================
    # Reading
    # =========================================================================

    async def _connect_stdin(self) -> asyncio.StreamReader:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
        return reader

    async def run(self) -> None:
        """Read frames until EOF, dispatching each as its own task."""
        if self._reader is None:
            self._reader = await self._connect_stdin()

        self._running = True
        logger.info(f"stdio transport started (origin={self.origin})")
        try:
            while self._running:
                line = await self._reader.readline()
                if not line:
                    logger.info("stdio input closed")
                    break
                self.feed_line(line)
        except asyncio.CancelledError:
            logger.info("stdio transport cancelled")
        finally:
            self._running = False

    def feed_line(self, line: bytes | str) -> None:
        """Parse one input line and schedule delivery to subscribers."""
        if isinstance(line, bytes):
            line = line.decode(ENCODING, errors="replace")
        text = line.strip()
        if text.startswith("\ufeff"):
            text = text[1:]
        if not text:
            return

        try:
            frame = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping invalid JSON line: {e}")
            return

        if not isinstance(frame, dict) or "envelope" not in frame:
            logger.warning("Skipping line without an envelope")
            return

        target_origin = frame.get("targetOrigin", "*")
        if target_origin != "*" and target_origin != self.origin:
            logger.warning(f"Dropping frame addressed to {target_origin} (we are {self.origin})")
            return

        message = InboundMessage(
            envelope=frame["envelope"],
            sender=self.peer,
            origin=str(frame.get("origin", "")),
        )
        loop = asyncio.get_running_loop()
        for callback in list(self._subscribers):
            task = loop.create_task(callback(message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def start(self) -> None:
        """Run the reader loop in the background."""
        if self._run_task is None or self._run_task.done():
            self._run_task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        """Stop reading and wait for in-flight deliveries."""
        self._running = False
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()
            await asyncio.gather(self._run_task, return_exceptions=True)
        self._run_task = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("stdio transport stopped")

    async def drain(self) -> None:
        """Wait for in-flight deliveries without stopping."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
