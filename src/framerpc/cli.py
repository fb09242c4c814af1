"""framerpc CLI.

Usage:
    framerpc config                       # Show resolved link options
    framerpc config --format json         # ... as JSON
    framerpc serve                        # Run a stdio peer (echo/ping/emit)
    framerpc serve --origin stdio://svc   # ... with a custom origin

Options are read from FRAMERPC_* environment variables and can be
overridden with flags. Logs go to stderr; stdout carries protocol frames.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click

from .config import RPCOptions
from .instance import RPCInstance
from .router import Router
from .transport.stdio import StdioTransport

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

logger = logging.getLogger(__name__)


def _resolve_options(
    tag: str | None,
    origin: str | None,
    accept_opener: bool | None,
    accept_parent: bool | None,
) -> RPCOptions:
    overrides: dict[str, Any] = {}
    if tag:
        overrides["shared_tag"] = tag
    if origin:
        overrides["trusted_origin"] = origin
    if accept_opener is not None:
        overrides["accept_opener"] = accept_opener
    if accept_parent is not None:
        overrides["accept_parent"] = accept_parent
    return RPCOptions.from_env(**overrides)


def register_serve_commands(rpc: RPCInstance) -> None:
    """Commands exposed by ``framerpc serve``."""

    def echo(*args: Any) -> list[Any]:
        return list(args)

    def ping() -> str:
        return "pong"

    async def emit(name: str, *args: Any) -> bool:
        await rpc.trigger_event(name, *args)
        return True

    rpc.add_command_handler("echo", echo)
    rpc.add_command_handler("ping", ping)
    rpc.add_command_handler("emit", emit)


async def run_stdio_peer(options: RPCOptions, origin: str) -> None:
    """Serve the demo commands over stdin/stdout until stdin closes."""
    transport = StdioTransport(origin=origin)
    async with Router(transport) as router:
        rpc = RPCInstance(router, transport.peer, options)
        register_serve_commands(rpc)
        await transport.run()
        await transport.drain()


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Log level (logs go to stderr)",
)
def main(log_level: str) -> None:
    """framerpc - duplex RPC and events between isolated peers."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@main.command("config")
@click.option("--tag", default=None, help="Shared secret tag")
@click.option("--origin", default=None, help="Trusted origin ('*' for any)")
@click.option("--accept-opener/--no-accept-opener", default=None, help="Trust the peer's opener")
@click.option("--accept-parent/--no-accept-parent", default=None, help="Trust the peer's parent")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
def config_cmd(
    tag: str | None,
    origin: str | None,
    accept_opener: bool | None,
    accept_parent: bool | None,
    output_format: str,
) -> None:
    """Show the resolved link options."""
    try:
        options = _resolve_options(tag, origin, accept_opener, accept_parent)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(options.model_dump(), indent=2))
        return

    for key, value in options.model_dump().items():
        click.echo(f"{key:<16} {value}")


@main.command("serve")
@click.option("--origin", "local_origin", default="stdio://framerpc", help="Origin stamped on our frames")
@click.option("--tag", default=None, help="Shared secret tag")
@click.option("--trusted-origin", default=None, help="Origin required of the peer ('*' for any)")
def serve_cmd(local_origin: str, tag: str | None, trusted_origin: str | None) -> None:
    """Serve echo/ping/emit commands over stdin/stdout."""
    options = _resolve_options(tag, trusted_origin, None, None)
    click.echo(f"framerpc peer ready on stdio (origin={local_origin})", err=True)
    try:
        asyncio.run(run_stdio_peer(options, local_origin))
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


if __name__ == "__main__":
    main()
