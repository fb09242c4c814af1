"""Outstanding command calls keyed by correlation id."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from .errors import UnknownCorrelationIdError

logger = logging.getLogger(__name__)


@dataclass
class PendingCall:
    """A command request waiting for its response."""

    correlation_id: str
    name: str
    future: asyncio.Future[Any]
    destination: Any = None
    created_at: float = field(default_factory=time.monotonic)


class PendingCallTable:
    """Maps correlation ids to the futures of in-flight calls.

    Each entry is settled at most once: settlement pops the entry before
    completing its future, so a second response for the same id finds
    nothing and raises ``UnknownCorrelationIdError``.

    Entries are never expired by the table itself. A call whose response
    never arrives stays pending until ``discard`` or ``cancel_all``.
    """

    def __init__(self) -> None:
        self._calls: dict[str, PendingCall] = {}
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._calls

    def ids(self) -> list[str]:
        return list(self._calls)

    def get(self, correlation_id: str) -> PendingCall | None:
        return self._calls.get(correlation_id)

    def create(self, name: str = "", destination: Any = None) -> tuple[str, asyncio.Future[Any]]:
        """Allocate a correlation id and a future for a new call.

        destination is the handle the request is sent to; its response is
        accepted from that handle. Must be called with a running event loop.
        """
        correlation_id = f"{int(time.time() * 1000)}-{next(self._counter)}"
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._calls[correlation_id] = PendingCall(
            correlation_id=correlation_id,
            name=name,
            future=future,
            destination=destination,
        )
        logger.debug(f"Pending call {correlation_id} created for {name or '<unnamed>'}")
        return correlation_id, future

    def _pop(self, correlation_id: str) -> PendingCall:
        call = self._calls.pop(correlation_id, None)
        if call is None:
            raise UnknownCorrelationIdError(f"Invalid request ID: {correlation_id}")
        return call

    def resolve(self, correlation_id: str, result: Any) -> None:
        """Complete a call successfully.

        Raises:
            UnknownCorrelationIdError: If the id is not pending
        """
        call = self._pop(correlation_id)
        if call.future.done():
            logger.debug(f"Call {correlation_id} was abandoned by its caller; dropping result")
            return
        call.future.set_result(result)

    def reject(self, correlation_id: str, error: BaseException) -> None:
        """Complete a call with a failure.

        Raises:
            UnknownCorrelationIdError: If the id is not pending
        """
        call = self._pop(correlation_id)
        if call.future.done():
            logger.debug(f"Call {correlation_id} was abandoned by its caller; dropping error")
            return
        call.future.set_exception(error)

    def discard(self, correlation_id: str) -> bool:
        """Forget a call without settling it.

        Returns:
            True if the call was pending
        """
        return self._calls.pop(correlation_id, None) is not None

    def cancel_all(self, error: BaseException) -> int:
        """Reject every pending call with error and empty the table.

        Returns:
            Number of calls rejected
        """
        count = 0
        calls = list(self._calls.values())
        self._calls.clear()
        for call in calls:
            if not call.future.done():
                call.future.set_exception(error)
                count += 1
        return count
