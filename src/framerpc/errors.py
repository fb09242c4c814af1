"""Error types and cross-boundary error marshalling.

Two families live here and never mix:

- Discard signals (``EnvelopeRejected``, ``ProtocolViolation``) are raised
  and caught inside the router. They never reach application code.
- Call failures travel to the remote caller as data: a failure is
  serialized into an error record, sent in a failed command response, and
  rebuilt on the caller's side as a ``RemoteError``.

Error record shape:
    {
        "name": "ValueError",
        "message": "bad input",
        "stack": "Traceback (most recent call last): ...",
        ...public attributes of the original exception...
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)


class RPCError(Exception):
    """Base class for all framerpc errors."""

    pass


class DuplicateHandlerError(RPCError, ValueError):
    """Raised when a command name is registered twice on one instance."""

    pass


class UnknownCorrelationIdError(RPCError, LookupError):
    """Raised when settling a call id that is not pending."""

    pass


class CommandNotFoundError(RPCError, LookupError):
    """Raised on the receiving side for a command with no handler."""

    pass


class EnvelopeRejected(RPCError):
    """Message failed the tag/version gate and must be discarded."""

    pass


class ProtocolViolation(RPCError):
    """Message passed the gate but is not a valid protocol operation."""

    pass


class InstanceClosedError(RPCError):
    """Raised when using, or waiting on, an instance that was closed."""

    pass


class RemoteError(RPCError):
    """Local stand-in for a failure raised by the remote peer.

    The full error record is kept on ``record`` so callers can inspect
    any extra fields the remote side attached.
    """

    def __init__(self, message: str, record: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.record: dict[str, Any] = dict(record or {})
        self.remote_name: str = str(self.record.get("name", "Error"))
        self.remote_message: str = str(self.record.get("message", ""))
        self.remote_stack: str | None = self.record.get("stack")

    @classmethod
    def from_record(cls, record: Any) -> RemoteError:
        """Rebuild a failure from a remote error record.

        Never raises: malformed records produce a best-effort error.
        """
        if isinstance(record, Mapping):
            data = dict(record)
        else:
            data = {"message": "" if record is None else str(record)}

        name = data.get("name") or data.get("type") or "Error"
        message = data.get("message", "")
        data["name"] = str(name)
        data["message"] = "" if message is None else str(message)

        return cls(f"Remote Error: <{data['name']}: {data['message']}>", data)


def _snapshot(value: Any) -> Any:
    """Detach a value from the live exception (lossy for exotic types)."""
    try:
        return json.loads(json.dumps(value, default=repr))
    except (TypeError, ValueError, RecursionError):
        return repr(value)


def serialize_error(exc: BaseException) -> dict[str, Any]:
    """Serialize a local failure into a transportable error record."""
    if isinstance(exc, RemoteError):
        name = exc.remote_name
        message = exc.remote_message
    else:
        name = type(exc).__name__
        message = str(exc)

    try:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    except Exception:
        logger.debug(f"Could not format traceback for {name}", exc_info=True)
        stack = f"{name}: {message}"

    record: dict[str, Any] = {"name": name, "message": message, "stack": stack}

    try:
        attributes = vars(exc)
    except TypeError:
        attributes = {}

    for key, value in attributes.items():
        if key.startswith("_") or key in record:
            continue
        if isinstance(exc, RemoteError) and key in ("record", "remote_name", "remote_message", "remote_stack"):
            continue
        record[key] = _snapshot(value)

    return record


def deserialize_error(record: Any) -> RemoteError:
    """Rebuild a local ``RemoteError`` from an error record."""
    return RemoteError.from_record(record)
