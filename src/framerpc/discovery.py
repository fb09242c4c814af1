"""Built-in introspection commands.

Every instance (unless created with ``discovery=False``) answers two
commands listing what it has registered. They are a debugging aid, not a
protocol guarantee: a peer may have them disabled.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .instance import RPCInstance

logger = logging.getLogger(__name__)

GET_COMMANDS = "framerpc-get-commands"
GET_LISTENERS = "framerpc-get-listeners"


def register_discovery_commands(instance: RPCInstance) -> None:
    """Register the discovery commands on instance."""
    registry = instance.registry

    def get_commands(*_: Any) -> list[str]:
        return registry.command_names()

    def get_listeners(*_: Any) -> list[str]:
        return registry.event_names()

    registry.add_command_handler(GET_COMMANDS, get_commands)
    registry.add_command_handler(GET_LISTENERS, get_listeners)
    logger.debug(f"Registered discovery commands for {instance.peer!r}")


async def list_remote_commands(instance: RPCInstance, timeout: float | None = None) -> list[str]:
    """Ask the peer which commands it handles."""
    return await instance.invoke_command(GET_COMMANDS, timeout=timeout)


async def list_remote_listeners(instance: RPCInstance, timeout: float | None = None) -> list[str]:
    """Ask the peer which events it listens for."""
    return await instance.invoke_command(GET_LISTENERS, timeout=timeout)
