"""
SoulCanvas CLI Tool

Command-line interface for inspecting the image nodes and turning a sketch
into an image.

Usage:
    soulcanvas nodes                              - List configured nodes
    soulcanvas probe                              - Health check every enabled node
    soulcanvas select --strategy latency          - Advisory node selection
    soulcanvas generate sketch.png --style "..."  - Generate an image
"""
from __future__ import annotations

import asyncio
import base64
import logging
import math
import mimetypes
import signal
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from soulcanvas import __version__
from soulcanvas.config import SELECTION_STRATEGIES, get_settings
from soulcanvas.core.cancellation import CancellationToken
from soulcanvas.core.errors import CancellationError, ImageGenerationError
from soulcanvas.core.nodes import NodeRegistry
from soulcanvas.service import ImageGenerationService

# Load environment variables
load_dotenv()

console = Console()

SUPPORTED_SKETCH_TYPES = ("image/png", "image/jpeg", "image/webp")


def configure_logging(level: str) -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def read_sketch(path: Path) -> str:
    """Read an image file into a base64 data URL."""
    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type not in SUPPORTED_SKETCH_TYPES:
        raise click.BadParameter(
            f"Unsupported sketch type {mime_type or 'unknown'} (use PNG, JPEG or WebP)",
            param_hint="SKETCH",
        )
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def format_latency(latency_ms: float) -> str:
    return "-" if math.isinf(latency_ms) else f"{latency_ms:.0f}ms"


@click.group()
@click.version_option(version=__version__, prog_name="SoulCanvas")
def main():
    """
    🎨 SOULCANVAS - Sketch to image with automatic failover

    Configure node API keys in .env (KIE_API_KEY, OPENROUTER_API_KEY).
    """
    configure_logging(get_settings().LOG_LEVEL)


@main.command()
def nodes():
    """
    List the configured image nodes.

    Example:
        soulcanvas nodes
    """
    registry = NodeRegistry.from_settings(get_settings())

    table = Table(title="🛰  Image Nodes", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Mode")
    table.add_column("Priority", justify="right")
    table.add_column("Enabled")
    table.add_column("Model", style="dim")

    for node in registry.all():
        table.add_row(
            node.id,
            node.name,
            node.mode.value,
            str(node.priority),
            "[green]yes[/green]" if node.enabled else "[red]no[/red]",
            node.model,
        )

    console.print(table)
    if not registry.enabled():
        console.print("\n[yellow]⚠ No enabled nodes. Add an API key to .env[/yellow]")


@main.command()
def probe():
    """
    Health check every enabled node.

    Example:
        soulcanvas probe
    """

    async def run():
        async with ImageGenerationService.from_settings(get_settings()) as service:
            await service.initialize()
            return service.registry, service.health()

    registry, records = asyncio.run(run())
    if not records:
        console.print("[yellow]No enabled nodes to probe[/yellow]")
        return

    table = Table(title="🩺 Node Health", show_header=True, header_style="bold cyan")
    table.add_column("Node", style="cyan")
    table.add_column("Available")
    table.add_column("Latency", justify="right")
    table.add_column("Failures", justify="right")

    for node in registry.enabled():
        record = records.get(node.id)
        if record is None:
            continue
        table.add_row(
            node.name,
            "[green]✓[/green]" if record.is_available else "[red]✗[/red]",
            format_latency(record.latency_ms),
            str(record.consecutive_failures),
        )

    console.print(table)


@main.command()
@click.option(
    "--strategy",
    type=click.Choice(SELECTION_STRATEGIES),
    default=None,
    help="Selection strategy (defaults to NODE_SELECTION_STRATEGY)",
)
def select(strategy: str | None):
    """
    Show which node advisory selection would pick.

    Example:
        soulcanvas select --strategy latency
    """

    async def run():
        async with ImageGenerationService.from_settings(get_settings()) as service:
            return await service.select_node(strategy)

    try:
        node = asyncio.run(run())
    except ImageGenerationError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓[/green] Selected node: [cyan]{node.name}[/cyan] ({node.id})")


@main.command()
@click.argument("sketch", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--style", "style_prompt", required=True, help="Style description")
@click.option("--prompt", "user_prompt", default=None, help="Optional description of the drawing")
@click.option("--timeout", type=float, default=None, help="Cancel after this many seconds")
def generate(sketch: Path, style_prompt: str, user_prompt: str | None, timeout: float | None):
    """
    Generate an image from a sketch file.

    Example:
        soulcanvas generate cat.png --style "watercolor, soft pastel palette"
    """
    sketch_url = read_sketch(sketch)

    console.print(Panel(
        f"[bold cyan]{style_prompt}[/bold cyan]"
        + (f"\n[dim]{user_prompt}[/dim]" if user_prompt else ""),
        title="🎨 Generating Image",
        border_style="cyan"
    ))

    async def run():
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, token.cancel, "Cancelled by user")
        except (NotImplementedError, RuntimeError):
            pass
        if timeout is not None:
            loop.call_later(timeout, token.cancel, f"Timed out after {timeout:g}s")

        try:
            async with ImageGenerationService.from_settings(get_settings()) as service:
                return await service.generate(sketch_url, style_prompt, user_prompt, token=token)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

    try:
        result = asyncio.run(run())
    except CancellationError as e:
        console.print(f"\n[yellow]{e.message}[/yellow]")
        sys.exit(130)
    except ImageGenerationError as e:
        console.print(f"\n[red]✗ Generation failed: {e}[/red]")
        sys.exit(1)

    console.print(f"\n[green]✓ Image generated by {result.node_name}[/green]")
    console.print(f"Image: [cyan]{result.image_url[:200]}[/cyan]")
    console.print(f"[dim]ID: {result.id}[/dim]")


if __name__ == "__main__":
    main()
