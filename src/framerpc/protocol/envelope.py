"""Wire envelope types and codec.

Every frame on the channel is a flat mapping: a fixed header identifying
the protocol, merged with the fields of one operation.

Example (command request):
    {
        "tag": "framerpc-magic-494581011",
        "protocolVersion": 1,
        "op": "command",
        "dir": "request",
        "name": "user.lookup",
        "id": "1718000000000-0",
        "args": ["alice"]
    }

Example (command response):
    {
        "tag": "framerpc-magic-494581011",
        "protocolVersion": 1,
        "op": "command",
        "dir": "response",
        "name": "user.lookup",
        "id": "1718000000000-0",
        "success": true,
        "response": {"id": 42}
    }

Example (event):
    {
        "tag": "framerpc-magic-494581011",
        "protocolVersion": 1,
        "op": "event",
        "name": "user.changed",
        "args": [42]
    }
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import EnvelopeRejected, ProtocolViolation

PROTOCOL_VERSION = 1
DEFAULT_TAG = "framerpc-magic-494581011"


class Operation(str, Enum):
    """Top-level operation kinds."""

    COMMAND = "command"
    EVENT = "event"


class Direction(str, Enum):
    """Direction of a command envelope."""

    REQUEST = "request"
    RESPONSE = "response"


class _EnvelopeBody(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str


class CommandRequest(_EnvelopeBody):
    """Ask the peer to run a named command."""

    op: Literal["command"] = "command"
    dir: Literal["request"] = "request"
    id: str
    args: list[Any] = Field(default_factory=list)

    @field_validator("args", mode="before")
    @classmethod
    def _null_args(cls, value: Any) -> Any:
        # null means "no arguments"
        return [] if value is None else value


class CommandResponse(_EnvelopeBody):
    """Outcome of a command: a result, or an error record on failure."""

    op: Literal["command"] = "command"
    dir: Literal["response"] = "response"
    id: str
    success: bool
    response: Any = None


class EventMessage(_EnvelopeBody):
    """Fire-and-forget notification for the peer's listeners."""

    op: Literal["event"] = "event"
    args: list[Any] = Field(default_factory=list)

    @field_validator("args", mode="before")
    @classmethod
    def _null_args(cls, value: Any) -> Any:
        return [] if value is None else value


Envelope = CommandRequest | CommandResponse | EventMessage


class EnvelopeCodec:
    """Builds outbound frames and gates/parses inbound ones.

    The gate is an exact match on ``tag`` and ``protocolVersion``. There is
    no version negotiation: a mismatch discards that single message.
    """

    def __init__(self, tag: str = DEFAULT_TAG, version: int = PROTOCOL_VERSION) -> None:
        self.tag = tag
        self.version = version

    def header(self) -> dict[str, Any]:
        return {"tag": self.tag, "protocolVersion": self.version}

    def encode(self, envelope: Envelope) -> dict[str, Any]:
        """Merge the protocol header with the operation fields."""
        frame = self.header()
        frame.update(envelope.model_dump(mode="python"))
        return frame

    def check(self, raw: Any) -> Mapping[str, Any]:
        """Apply the tag/version gate.

        Raises:
            EnvelopeRejected: If the frame is not ours or not this version
        """
        if not isinstance(raw, Mapping):
            raise EnvelopeRejected(f"Frame is not a mapping: {type(raw).__name__}")

        if raw.get("tag") != self.tag:
            raise EnvelopeRejected("Invalid envelope tag")

        version = raw.get("protocolVersion")
        # bool is an int subclass; True must not pass for version 1
        if type(version) is not int or version != self.version:
            raise EnvelopeRejected(f"Version mismatch: expected {self.version} but got {version!r}")

        return raw

    def decode(self, raw: Any) -> Envelope:
        """Gate and parse an inbound frame into a typed envelope.

        Raises:
            EnvelopeRejected: Tag/version gate failed
            ProtocolViolation: Unknown operation, missing direction, bad fields
        """
        data = self.check(raw)
        op = data.get("op")

        model: type[CommandRequest] | type[CommandResponse] | type[EventMessage]
        if op == Operation.COMMAND.value:
            direction = data.get("dir")
            if direction == Direction.REQUEST.value:
                model = CommandRequest
            elif direction == Direction.RESPONSE.value:
                model = CommandResponse
            else:
                raise ProtocolViolation(f"Command direction missing or invalid: {direction!r}")
        elif op == Operation.EVENT.value:
            model = EventMessage
        else:
            raise ProtocolViolation(f"Invalid operation: {op!r}")

        try:
            return model.model_validate(dict(data))
        except ValidationError as e:
            raise ProtocolViolation(f"Malformed {model.__name__}: {e}") from e
