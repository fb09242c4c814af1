"""Per-instance tables of command handlers and event listeners."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .errors import DuplicateHandlerError

logger = logging.getLogger(__name__)

# Handlers and listeners may be plain functions or coroutine functions
CommandHandlerFn = Callable[..., Any]
EventListenerFn = Callable[..., Any]


class HandlerRegistry:
    """Named command handlers (unique) and named listener lists (ordered).

    Command names are unique per registry. Listener lists keep insertion
    order for fan-out and allow the same callback more than once.
    """

    def __init__(self) -> None:
        self._commands: dict[str, CommandHandlerFn] = {}
        self._listeners: dict[str, list[EventListenerFn]] = {}

    # =========================================================================
    # Commands
    # =========================================================================

    def add_command_handler(self, name: str, handler: CommandHandlerFn) -> None:
        """Register a command handler.

        Raises:
            DuplicateHandlerError: If a handler is already registered for name
            TypeError: If handler is not callable
        """
        if not callable(handler):
            raise TypeError(f"Command handler for {name!r} must be callable")
        if name in self._commands:
            raise DuplicateHandlerError(f"Command handler already added: {name}")
        self._commands[name] = handler
        logger.debug(f"Registered command handler: {name}")

    def remove_command_handler(self, name: str) -> None:
        """Unregister a command handler; no-op if absent."""
        if self._commands.pop(name, None) is not None:
            logger.debug(f"Removed command handler: {name}")

    def get_command_handler(self, name: str) -> CommandHandlerFn | None:
        return self._commands.get(name)

    def command_names(self) -> list[str]:
        return list(self._commands)

    # =========================================================================
    # Events
    # =========================================================================

    def add_event_listener(self, name: str, callback: EventListenerFn) -> None:
        """Append a listener for an event name."""
        if not callable(callback):
            raise TypeError(f"Event listener for {name!r} must be callable")
        self._listeners.setdefault(name, []).append(callback)

    def remove_event_listener(self, name: str, callback: EventListenerFn) -> None:
        """Remove every registration of callback for name.

        Safe when the name or callback was never registered.
        """
        current = self._listeners.get(name)
        if not current:
            return
        scrubbed = [cb for cb in current if cb is not callback]
        if scrubbed:
            self._listeners[name] = scrubbed
        else:
            del self._listeners[name]

    def get_event_listeners(self, name: str) -> list[EventListenerFn]:
        """Snapshot of listeners for name, in registration order."""
        return list(self._listeners.get(name, ()))

    def event_names(self) -> list[str]:
        return [name for name, callbacks in self._listeners.items() if callbacks]
