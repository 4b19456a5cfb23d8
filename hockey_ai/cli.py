"""
Hockey AI CLI Tool

Command-line interface for shot/stick analysis, card image generation
and rate-limit administration.

Usage:
    hockey-ai analyze clip.mp4 --prompt "..."   - Analyze media
    hockey-ai image "prompt" --out card.png       - Generate an image
    hockey-ai rate-limit status                   - Show recorded limits
    hockey-ai rate-limit reset gemini             - Clear a recorded limit
    hockey-ai serve                               - Start the API server
"""
import asyncio
import logging
import mimetypes
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from hockey_ai import __version__
from hockey_ai.config import ProviderType, Settings, get_settings
from hockey_ai.core.events import EventKind, PipelineEvent
from hockey_ai.core.providers.base import (
    AspectRatio,
    ImageSize,
    MediaItem,
    MediaRole,
    ProviderError,
)
from hockey_ai.services.analysis import AnalysisService
from hockey_ai.services.factory import (
    ANALYSIS_SCOPE,
    IMAGE_SCOPE,
    build_rate_limit_store,
    build_tracker,
)
from hockey_ai.services.image_generation import ImageGenerationService

# Load environment variables
load_dotenv()

console = Console()

EVENT_LABELS = {
    EventKind.UPLOADS_COMPLETE: "Uploads complete",
    EventKind.REQUEST_SENT: "Request sent",
    EventKind.RETRY_SCHEDULED: "Retrying",
    EventKind.RESPONSE_RECEIVED: "Response received",
    EventKind.FALLBACK_TRIGGERED: "Falling back",
}


def load_settings() -> Settings:
    """Load settings or exit with a readable error."""
    try:
        return get_settings()
    except ValidationError as e:
        console.print("[red]✗ Invalid configuration[/red]")
        for error in e.errors():
            console.print(f"  {error['msg']}")
        console.print("\nSet GEMINI_API_KEY (and optionally FAL_API_KEY) in .env")
        sys.exit(1)


def media_item_from_path(path: Path, frame_rate: int | None = None) -> MediaItem:
    """Read a file into a MediaItem, inferring role from its MIME type."""
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    if mime_type.startswith("video/"):
        role = MediaRole.VIDEO
    elif mime_type.startswith("audio/"):
        role = MediaRole.AUDIO
    elif mime_type.startswith("image/"):
        role = MediaRole.IMAGE
    else:
        raise click.BadParameter(f"Unsupported media type for {path.name}: {mime_type}")
    return MediaItem(
        data=path.read_bytes(),
        mime_type=mime_type,
        role=role,
        frame_rate=frame_rate if role == MediaRole.VIDEO else None,
    )


def fail(error: ProviderError) -> None:
    console.print(f"\n[red]✗ {error.user_message}[/red]")
    console.print(f"[dim]{error}[/dim]")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="Hockey AI")
@click.option("--verbose", "-v", is_flag=True, help="Show pipeline logs")
def main(verbose: bool):
    """
    🏒 HOCKEY AI - Shot analysis and card generation

    Resilient multi-provider AI requests from the command line.
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@main.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--prompt", "-p", required=True, help="Analysis prompt")
@click.option("--fps", type=int, default=None, help="Video frame rate hint (capped at 24)")
def analyze(files: tuple[Path, ...], prompt: str, fps: int | None):
    """
    Analyze images or videos with a prompt.

    Example:
        hockey-ai analyze side.mp4 front.mp4 -p "Rate this wrist shot"
    """
    settings = load_settings()
    media = [media_item_from_path(path, fps) for path in files]

    console.print(Panel(
        f"[bold cyan]{prompt}[/bold cyan]\n[dim]{len(media)} file(s), "
        f"{sum(item.size for item in media) / 1_000_000:.1f} MB[/dim]",
        title="🏒 Analyzing",
        border_style="cyan",
    ))

    async def run() -> None:
        service = AnalysisService.from_settings(settings)
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                task = progress.add_task("Preparing...", total=None)

                def on_event(event: PipelineEvent) -> None:
                    label = EVENT_LABELS.get(event.kind)
                    if label and event.provider:
                        progress.update(task, description=f"{label} ({event.provider.value})")

                unsubscribe = service.events.subscribe(on_event)
                try:
                    response = await service.analyze(media, prompt)
                finally:
                    unsubscribe()
        finally:
            await service.close()

        console.print(f"\n[green]✓[/green] {response.provider.value} ({response.model}), "
                      f"{response.latency_ms}ms" + (" [yellow](fallback)[/yellow]" if response.fallback_used else ""))
        console.print(response.text)

    try:
        asyncio.run(run())
    except ProviderError as e:
        fail(e)


@main.command()
@click.argument("prompt")
@click.option("--out", "-o", default="card.png", type=click.Path(dir_okay=False, path_type=Path), help="Output file")
@click.option("--aspect-ratio", type=click.Choice([a.value for a in AspectRatio]), default=AspectRatio.THREE_BY_FOUR.value)
@click.option("--size", type=click.Choice([s.value for s in ImageSize]), default=ImageSize.TWO_K.value)
@click.option("--reference", "-r", multiple=True, type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Reference image (repeatable)")
def image(prompt: str, out: Path, aspect_ratio: str, size: str, reference: tuple[Path, ...]):
    """
    Generate an image.

    Example:
        hockey-ai image "Hockey card, home jersey" -r player.jpg -o card.png
    """
    settings = load_settings()
    references = [media_item_from_path(path) for path in reference]

    async def run() -> None:
        service = ImageGenerationService.from_settings(settings)
        try:
            with console.status("[cyan]Generating image...[/cyan]"):
                response = await service.generate_image(
                    prompt,
                    aspect_ratio=AspectRatio(aspect_ratio),
                    image_size=ImageSize(size),
                    reference_images=references,
                )
        finally:
            await service.close()
        out.write_bytes(response.image_data or b"")
        console.print(f"[green]✓[/green] Saved {out} via {response.provider.value}"
                      + (" [yellow](fallback)[/yellow]" if response.fallback_used else ""))

    try:
        asyncio.run(run())
    except ProviderError as e:
        fail(e)


@main.group("rate-limit")
def rate_limit():
    """Inspect or clear recorded daily rate limits."""


@rate_limit.command("status")
def rate_limit_status():
    """Show providers currently at their daily limit."""
    settings = load_settings()

    async def run() -> list[tuple[str, str, str]]:
        store = build_rate_limit_store(settings)
        rows = []
        try:
            for scope in (ANALYSIS_SCOPE, IMAGE_SCOPE):
                tracker = build_tracker(settings, store, scope)
                for provider in ProviderType:
                    hit_date = await tracker.status(provider)
                    rows.append((scope, provider.value, hit_date.isoformat() if hit_date else "-"))
        finally:
            await store.close()
        return rows

    table = Table(title=f"Rate limits ({settings.QUOTA_RESET_TIMEZONE})", show_header=True, header_style="bold cyan")
    table.add_column("Scope")
    table.add_column("Provider", style="cyan")
    table.add_column("Limited on")
    for scope, provider, limited_on in asyncio.run(run()):
        style = "red" if limited_on != "-" else "green"
        table.add_row(scope, provider, f"[{style}]{limited_on}[/{style}]")
    console.print(table)


@rate_limit.command("reset")
@click.argument("provider", type=click.Choice([p.value for p in ProviderType]))
@click.option("--scope", type=click.Choice([ANALYSIS_SCOPE, IMAGE_SCOPE, "all"]), default="all")
def rate_limit_reset(provider: str, scope: str):
    """
    Clear the recorded limit for a provider.

    Example:
        hockey-ai rate-limit reset gemini --scope image
    """
    settings = load_settings()
    scopes = [ANALYSIS_SCOPE, IMAGE_SCOPE] if scope == "all" else [scope]

    async def run() -> None:
        store = build_rate_limit_store(settings)
        try:
            for name in scopes:
                await build_tracker(settings, store, name).reset(ProviderType(provider))
        finally:
            await store.close()

    asyncio.run(run())
    console.print(f"[green]✓[/green] Cleared {provider} ({', '.join(scopes)})")


@main.command()
@click.option("--port", default=8000, help="Port to run server on")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(port: int, reload: bool):
    """Start the API server."""
    import uvicorn

    uvicorn.run("hockey_ai.main:app", host="0.0.0.0", port=port, reload=reload)


if __name__ == "__main__":
    main()
