#!/usr/bin/env python3
"""
LanXfer CLI

Command-line interface for the LAN file transfer server and client.

Usage:
    lanxfer serve                    # Run a file server (with discovery)
    lanxfer upload FILE              # Upload a file to the server
    lanxfer download NAME            # Download a file from the server
    lanxfer discover                 # Find a server on the LAN
    lanxfer checksum FILE            # Print a file's SHA-256 checksum
"""

import asyncio
import logging
import socket
import sys
from datetime import timedelta
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)

from .config import load_config
from .discovery import find_server_address
from .errors import IntegrityError, LanXferError
from .file import checksum_to_hex, compute_checksum
from .node import FileServerNode
from .security import create_transport_context
from .transfer import TransferClient, TransferProgress, resolve_address

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def get_local_ip() -> str:
    """Best-guess LAN address of this host, for display only."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect() just picks the outbound interface
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def _run(coro):
    """Run a command coroutine, turning lanxfer errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except (LanXferError, OSError) as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='JSON config file')
@click.option('--storage-dir', default=None, help='Server storage directory')
@click.option('--port', type=int, default=None, help='File transfer TCP port')
@click.pass_context
def cli(ctx, verbose, config_path, storage_dir, port):
    """LanXfer - encrypted file transfer on the local network."""
    config = load_config(Path(config_path) if config_path else None)
    if storage_dir:
        config.storage_dir = Path(storage_dir)
    if port is not None:
        config.transfer_port = port

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.pass_context
def serve(ctx):
    """Run a file server."""
    config = ctx.obj['config']

    async def run():
        node = FileServerNode(config)
        await node.start()

        discovery = node.discovery.available if node.discovery else False
        console.print(Panel.fit(
            f"[bold green]LanXfer Server Started[/bold green]\n\n"
            f"Address: [cyan]{get_local_ip()}:{node.transfer_port}[/cyan]\n"
            f"Discovery: [{'green' if discovery else 'red'}]"
            f"{'UDP ' + str(config.discovery_port) if discovery else 'disabled'}[/]\n"
            f"Storage: [blue]{config.storage_dir}[/blue]\n"
            f"Certificate: [dim]{node.transport.fingerprint[:32]}...[/dim]",
            title="Server Info"
        ))
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

        try:
            await node.serve_forever()
        finally:
            await node.stop()
            console.print("[green]Server stopped[/green]")

    try:
        _run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


def _make_client(config, progress: Progress, description: str) -> TransferClient:
    task = progress.add_task(description, total=None)

    def update_progress(p: TransferProgress):
        progress.update(task, total=p.total, completed=p.transferred)

    transport = create_transport_context(
        organization=config.organization,
        validity=timedelta(hours=config.cert_validity_hours),
    )
    return TransferClient(transport, chunk_size=config.chunk_size,
                          progress_callback=update_progress)


def _transfer_progress() -> Progress:
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    )


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--server', default=None, help='Server address (host:port), skips discovery')
@click.pass_context
def upload(ctx, file_path, server):
    """Upload a file to the server."""
    config = ctx.obj['config']
    file_path = Path(file_path)

    async def run():
        address = await resolve_address(config, server)
        with _transfer_progress() as progress:
            client = _make_client(config, progress, f"⬆ {file_path.name}")
            result = await client.upload(address, file_path)

        console.print(Panel.fit(
            f"[bold green]Upload Complete[/bold green]\n\n"
            f"Name: [cyan]{result.file_name}[/cyan]\n"
            f"Size: [yellow]{result.size:,} bytes[/yellow]\n"
            f"Speed: [yellow]{format_size(result.speed_bytes_per_sec)}/s[/yellow]\n"
            f"Checksum: [green]{checksum_to_hex(result.checksum)}[/green]",
            title=f"Sent to {address}"
        ))

    _run(run())


@cli.command()
@click.argument('file_name')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Output path')
@click.option('--server', default=None, help='Server address (host:port), skips discovery')
@click.pass_context
def download(ctx, file_name, output, server):
    """Download a file from the server."""
    config = ctx.obj['config']
    output_path = Path(output) if output else None

    async def run():
        address = await resolve_address(config, server)
        with _transfer_progress() as progress:
            client = _make_client(config, progress, f"⬇ {file_name}")
            result = await client.download(address, file_name, output_path)

        if not result.verified:
            console.print(f"[dim]Server: {checksum_to_hex(result.remote_checksum)}[/dim]")
            console.print(f"[dim]Client: {checksum_to_hex(result.checksum)}[/dim]")
            raise IntegrityError("Integrity failure: checksum mismatch, file removed")

        console.print(f"[green]✓ Integrity verified, saved to: {result.path}[/green]")
        console.print(f"[dim]Checksum: {checksum_to_hex(result.checksum)}[/dim]")

    _run(run())


@cli.command()
@click.option('--timeout', type=float, default=None, help='Seconds to wait for a response')
@click.pass_context
def discover(ctx, timeout):
    """Find a file server on the local network."""
    config = ctx.obj['config']

    address = _run(find_server_address(config, timeout=timeout))
    if address is None:
        console.print("[yellow]No servers found[/yellow]")
        sys.exit(1)
    console.print(f"[green]Found server at {address}[/green]")


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
def checksum(file_path):
    """Print the SHA-256 checksum of a file."""
    value = compute_checksum(Path(file_path))
    console.print(f"{checksum_to_hex(value)}  {file_path}")


if __name__ == '__main__':
    cli()
