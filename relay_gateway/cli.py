"""
Signal Relay CLI.

Command-line interface for running and probing the relay.
"""

from __future__ import annotations

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from shared.config.logging import setup_logging, relay_logger as logger
from shared.config.settings import get_settings
from relay_gateway import __version__
from relay_gateway.components.core.errors import BindError
from relay_gateway.server import RelayServer

app = typer.Typer(
    name="signal-relay",
    help="WebSocket rendezvous and signaling relay",
    add_completion=False,
)
console = Console()


# =============================================================================
# Server Commands
# =============================================================================


async def _serve(host: str | None, port: int | None) -> None:
    config = get_settings()
    if host is not None:
        config = config.model_copy(update={"host": host})

    server = RelayServer(config)
    await server.start(port)
    try:
        # uvicorn turns SIGINT / SIGTERM into a graceful exit
        await server.wait_closed()
    finally:
        await server.stop()


@app.command()
def serve(
    host: str = typer.Option(None, help="Interface to bind (default: HOST setting)"),
    port: int = typer.Option(None, help="Port to listen on (default: PORT setting)"),
):
    """Run the relay until interrupted."""
    setup_logging(get_settings())
    try:
        asyncio.run(_serve(host, port))
    except BindError as e:
        logger.critical("Relay failed to start", error=str(e))
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass


@app.callback(invoke_without_command=True)
def default(ctx: typer.Context):
    """Serve on the configured port when no command is given."""
    if ctx.invoked_subcommand is None:
        serve(host=None, port=None)


# =============================================================================
# Diagnostic Commands
# =============================================================================


@app.command()
def ws_test(
    url: str = typer.Option(None, help="Relay URL (default: ws://localhost:PORT/)"),
    timeout: float = typer.Option(5.0, help="Seconds to wait for each frame"),
):
    """Connect as a peer, print the welcome and check the ping / pong round trip."""
    import websockets

    url = url or f"ws://localhost:{get_settings().port}/"

    async def _test() -> bool:
        console.print(f"[blue]Testing relay: {url}[/blue]")
        try:
            async with websockets.connect(url, close_timeout=5) as ws:
                welcome = json.loads(await asyncio.wait_for(ws.recv(), timeout=timeout))
                console.print(
                    f"[green]✓ Connected as {welcome.get('id')} "
                    f"({len(welcome.get('peers', []))} other peers)[/green]"
                )
                await ws.send('{"type": "ping"}')
                # Skip announcements until the pong arrives
                while True:
                    frame = json.loads(await asyncio.wait_for(ws.recv(), timeout=timeout))
                    if frame.get("type") == "pong":
                        break
                console.print("[green]✓ Heartbeat answered[/green]")
                return True
        except asyncio.TimeoutError:
            console.print("[red]✗ Timed out waiting for the relay[/red]")
        except Exception as e:
            console.print(f"[red]✗ Connection failed: {e}[/red]")
        return False

    if not asyncio.run(_test()):
        raise typer.Exit(1)


@app.command()
def health(
    url: str = typer.Option(None, help="Health URL (default: http://localhost:PORT/ws/health)"),
):
    """Show relay health and connection stats."""
    import httpx

    url = url or f"http://localhost:{get_settings().port}/ws/health"

    try:
        response = httpx.get(url, timeout=5.0)
        data = response.json()
    except Exception as e:
        console.print(f"[red]✗ {url} unreachable: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Signal Relay Health")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key in ("status", "version", "environment", "total_connections", "max_connections", "shutting_down"):
        table.add_row(key, str(data.get(key, "-")))
    metrics = data.get("metrics", {})
    for key in ("connections_admitted", "connections_evicted", "messages_relayed", "messages_invalid"):
        table.add_row(key, str(metrics.get(key, "-")))
    console.print(table)

    if response.status_code != 200:
        raise typer.Exit(1)


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold]Signal Relay[/bold] v{__version__}")


def main() -> None:
    app()
