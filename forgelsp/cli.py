"""forge-lsp CLI - code intelligence for local tools."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from forgelsp.config import BridgeConfig
from forgelsp.core.errors import BridgeError
from forgelsp.intelligence.resolver import FallbackScope
from forgelsp.logging import setup_logging

console = Console()
err_console = Console(stderr=True)


def _fail(message: str) -> None:
    err_console.print(f"[red]✗ {message}[/red]")
    raise SystemExit(1)


def _client_for(workspace: Optional[str], address: Optional[str], timeout: Optional[float]):
    """Client for the configured workspace; explicit options win."""
    from forgelsp.bridge.client import BridgeClient

    config = BridgeConfig.load()
    return BridgeClient(
        address=address,
        workspace_root=workspace or config.workspace_root,
        timeout=timeout or config.client_timeout,
        socket_dir=config.socket_dir,
    )


def _run_client_call(call):
    """Run a client coroutine, turning failures into a clean exit."""
    from forgelsp.bridge.client import BridgeRequestError

    try:
        return asyncio.run(call)
    except BridgeRequestError as e:
        _fail(e.message)
    except BridgeError as e:
        _fail(e.message)


@click.group()
@click.version_option(version="0.1.0")
def cli():
    """forge-lsp - Language server references over a local pipe"""
    # Quiet by default; serve reconfigures from its config
    setup_logging("WARNING")


@cli.command()
@click.option(
    "--transport",
    "-t",
    type=click.Choice(["pipe", "http"]),
    default=None,
    help="Transport to serve (default: pipe)",
)
@click.option("--host", default=None, help="Host for HTTP mode (default: 127.0.0.1)")
@click.option("--port", "-p", type=int, default=None, help="Port for HTTP mode (default: 3000)")
@click.option(
    "--workspace",
    "-w",
    type=click.Path(exists=True, file_okay=False),
    help="Workspace root (default: current directory)",
)
@click.option(
    "--server-command",
    "-s",
    help='Language server command line, e.g. "pylsp"',
)
@click.option(
    "--open",
    "open_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="File to open in the engine at startup (can specify multiple)",
)
@click.option(
    "--fallback-scope",
    type=click.Choice([s.value for s in FallbackScope]),
    default=None,
    help="Which open documents the name search may scan",
)
@click.option("--config", "config_path", type=click.Path(), help="Config file path")
@click.option("--log-level", default=None, help="Logging level")
@click.option("--log-json", is_flag=True, help="Emit JSON log lines")
def serve(
    transport: Optional[str],
    host: Optional[str],
    port: Optional[int],
    workspace: Optional[str],
    server_command: Optional[str],
    open_files: tuple,
    fallback_scope: Optional[str],
    config_path: Optional[str] = None,
    log_level: Optional[str] = None,
    log_json: bool = False,
):
    """Start the bridge server.

    Serves health, findReferences and textDocument/references on a
    workspace-specific local pipe, or over HTTP.

    Examples:
        forge-lsp serve                          # Pipe for the current directory

        forge-lsp serve -w ~/projects/app --open src/main.ts

        forge-lsp serve --transport http --port 3000
    """
    from forgelsp.service import BridgeService

    config = BridgeConfig.load(config_path)
    overrides = {
        "transport": transport,
        "host": host,
        "port": port,
        "fallback_scope": fallback_scope,
        "log_level": log_level.upper() if log_level else None,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    if workspace or config.workspace_root is None:
        config.workspace_root = Path(workspace) if workspace else Path.cwd()
    if server_command:
        config.server_command = server_command.split()
    if open_files:
        config.open_files = [Path(f).resolve() for f in open_files]
    if log_json:
        config.log_json = True

    setup_logging(config.log_level, config.log_file, config.log_json)

    service = BridgeService(config)
    # Banner on stderr; stdout stays free for supervising tools
    err_console.print(
        Panel(
            f"[bold blue]forge-lsp[/bold blue]\n\n"
            f"Workspace: {config.workspace_label}\n"
            f"Transport: {config.transport}\n"
            f"Address: {service.address}\n"
            f"Engine: {' '.join(config.server_command)}",
            title="Starting Server",
        )
    )

    async def run():
        await service.start()
        err_console.print("[dim]Press Ctrl+C to stop[/dim]")
        await service.serve()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        err_console.print("[dim]Server stopped[/dim]")
    except BridgeError as e:
        _fail(e.message)


@cli.command()
@click.option(
    "--workspace",
    "-w",
    type=click.Path(file_okay=False),
    help="Workspace root (default: current directory)",
)
@click.option("--socket-dir", type=click.Path(file_okay=False), help="Socket directory")
def address(workspace: Optional[str], socket_dir: Optional[str] = None):
    """Print the pipe address for a workspace."""
    from forgelsp.bridge.endpoint import derive_address

    root = Path(workspace or Path.cwd()).expanduser().resolve()
    click.echo(derive_address(root, socket_dir=socket_dir))


@cli.command()
@click.option("--workspace", "-w", type=click.Path(file_okay=False), help="Workspace root")
@click.option("--address", "-a", "pipe_address", help="Explicit pipe address")
@click.option("--timeout", type=float, help="Request timeout in seconds (default: client_timeout)")
def health(workspace: Optional[str], pipe_address: Optional[str], timeout: Optional[float]):
    """Check that a bridge is serving this workspace."""

    async def check():
        async with _client_for(workspace, pipe_address, timeout) as client:
            return await client.health()

    result = _run_client_call(check())
    console.print(f"[green]✓[/green] Status: {result.get('status')}")
    console.print(f"  Workspace: {result.get('workspace')}")
    console.print(f"  Pipe: {result.get('pipeName', '-')}")
    console.print(f"  Time: {result.get('timestamp')}")


def _print_references(result) -> None:
    location = result.location
    console.print(
        f"[bold]{result.name}[/bold] declared at {location.uri}:"
        f"{location.position.line + 1}:{location.position.character + 1}"
    )

    if not result.references:
        console.print("[yellow]No references found[/yellow]")
        return

    table = Table(title=f"References ({result.total_references})")
    table.add_column("File")
    table.add_column("Line", justify="right")
    table.add_column("Column", justify="right")
    for ref in result.references:
        start = ref.range.start
        table.add_row(ref.uri, str(start.line + 1), str(start.character + 1))
    console.print(table)


@cli.command("find-references")
@click.argument("symbol")
@click.option("--workspace", "-w", type=click.Path(file_okay=False), help="Workspace root")
@click.option("--address", "-a", "pipe_address", help="Explicit pipe address")
@click.option("--timeout", type=float, help="Request timeout in seconds (default: client_timeout)")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write JSON result to file")
@click.option("--save", is_flag=True, help="Write JSON result to references-<symbol>.json")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def find_references(
    symbol: str,
    workspace: Optional[str],
    pipe_address: Optional[str],
    timeout: Optional[float],
    output: Optional[str] = None,
    save: bool = False,
    as_json: bool = False,
):
    """Find all references to SYMBOL by name.

    Examples:

        forge-lsp find-references greetUser

        forge-lsp find-references greetUser --save
    """

    async def lookup():
        async with _client_for(workspace, pipe_address, timeout) as client:
            return await client.find_references(symbol)

    result = _run_client_call(lookup())
    payload = result.to_dict()

    if as_json:
        click.echo(json.dumps(payload, indent=2))
    else:
        _print_references(result)

    target = output or (f"references-{symbol}.json" if save else None)
    if target:
        Path(target).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        console.print(f"[dim]Saved to {target}[/dim]")


@cli.command()
@click.argument("uri")
@click.argument("line", type=int)
@click.argument("character", type=int)
@click.option("--workspace", "-w", type=click.Path(file_okay=False), help="Workspace root")
@click.option("--address", "-a", "pipe_address", help="Explicit pipe address")
@click.option("--timeout", type=float, help="Request timeout in seconds (default: client_timeout)")
def references(
    uri: str,
    line: int,
    character: int,
    workspace: Optional[str],
    pipe_address: Optional[str],
    timeout: Optional[float],
):
    """List references at URI, LINE, CHARACTER (zero-indexed)."""

    async def lookup():
        async with _client_for(workspace, pipe_address, timeout) as client:
            return await client.references(uri, line, character)

    refs = _run_client_call(lookup())
    click.echo(json.dumps({"references": refs}, indent=2))


if __name__ == "__main__":
    cli()
