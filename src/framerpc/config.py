"""Peer link configuration.

Options can be given explicitly, or read from the environment:

    FRAMERPC_SHARED_TAG       shared secret tag stamped on every envelope
    FRAMERPC_TRUSTED_ORIGIN   exact origin to accept ("*" accepts any)
    FRAMERPC_ACCEPT_OPENER    also accept the peer's opener as sender
    FRAMERPC_ACCEPT_PARENT    also accept the peer's parent as sender
    FRAMERPC_DISCOVERY        register the built-in discovery commands
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .protocol.envelope import DEFAULT_TAG
from .transport.base import Relation

WILDCARD_ORIGIN = "*"
ENV_PREFIX = "FRAMERPC_"

_TRUE_STRINGS = {"1", "true", "yes", "on"}


def _env_flag(value: str) -> bool:
    return value.strip().lower() in _TRUE_STRINGS


class RPCOptions(BaseModel):
    """Options recognized when creating an instance."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    shared_tag: str = Field(default=DEFAULT_TAG, min_length=1)
    trusted_origin: str = Field(default=WILDCARD_ORIGIN, min_length=1)
    accept_opener: bool = False
    accept_parent: bool = False
    discovery: bool = True

    @classmethod
    def from_env(
        cls,
        prefix: str = ENV_PREFIX,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> RPCOptions:
        """Build options from environment variables, then apply overrides."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        if tag := env.get(f"{prefix}SHARED_TAG"):
            values["shared_tag"] = tag
        if origin := env.get(f"{prefix}TRUSTED_ORIGIN"):
            values["trusted_origin"] = origin
        for key in ("accept_opener", "accept_parent", "discovery"):
            raw = env.get(f"{prefix}{key.upper()}")
            if raw is not None:
                values[key] = _env_flag(raw)

        values.update(overrides)
        return cls(**values)

    def merged(self, **overrides: Any) -> RPCOptions:
        """Copy with overrides applied (validated)."""
        if not overrides:
            return self
        return type(self)(**{**self.model_dump(), **overrides})

    @property
    def accepted_relations(self) -> frozenset[Relation]:
        relations = set()
        if self.accept_opener:
            relations.add(Relation.OPENER)
        if self.accept_parent:
            relations.add(Relation.PARENT)
        return frozenset(relations)


@dataclass(frozen=True)
class PeerLink:
    """Who an instance talks to and which senders it trusts.

    Immutable for the lifetime of the instance.
    """

    peer: Any
    trusted_origin: str = WILDCARD_ORIGIN
    accept_relations: frozenset[Relation] = frozenset()

    @classmethod
    def from_options(cls, peer: Any, options: RPCOptions) -> PeerLink:
        return cls(
            peer=peer,
            trusted_origin=options.trusted_origin,
            accept_relations=options.accepted_relations,
        )

    def matches_sender(self, sender: Any) -> bool:
        """True if sender is the peer or an accepted relation of it."""
        if sender is None:
            return False
        if sender is self.peer:
            return True
        for relation in self.accept_relations:
            related = getattr(self.peer, relation.value, None)
            if related is not None and sender is related:
                return True
        return False

    def matches_origin(self, origin: str | None) -> bool:
        return self.trusted_origin == WILDCARD_ORIGIN or origin == self.trusted_origin
