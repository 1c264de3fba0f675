"""Storyloom CLI - typer application for inspecting settings and trying out image runs."""

from __future__ import annotations

import asyncio
import atexit
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from storyloom.observability import close_file_logging, configure_logging, get_logger

if TYPE_CHECKING:
    from storyloom.images import EmbeddedImage
    from storyloom.settings import AppSettings

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="storyloom",
    help="Storyloom: generation presets and narrative illustration.",
    no_args_is_help=True,
)
console = Console()

DEFAULT_SETTINGS_FILE = Path("storyloom.yaml")
DEFAULT_LOG_DIR = Path("logs")

SettingsOption = Annotated[
    Path,
    typer.Option(
        "--settings",
        "-s",
        help="Settings YAML file.",
        envvar="STORYLOOM_SETTINGS",
    ),
]

log = get_logger(__name__)


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_enabled: Annotated[
        bool,
        typer.Option("--log", help="Also write JSONL logs to --log-dir."),
    ] = False,
    log_dir: Annotated[
        Path,
        typer.Option("--log-dir", help="Directory for JSONL logs (default: ./logs)."),
    ] = DEFAULT_LOG_DIR,
) -> None:
    """Storyloom: generation presets and narrative illustration."""
    configure_logging(verbosity=verbose, log_to_file=log_enabled, log_dir=log_dir)
    if log_enabled:
        atexit.register(close_file_logging)


@app.command()
def version() -> None:
    """Show version information."""
    from storyloom import __version__

    console.print(f"Storyloom v{__version__}")


def _load(settings_file: Path) -> AppSettings:
    from storyloom.settings import SettingsError, load_settings

    try:
        return load_settings(settings_file)
    except SettingsError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command()
def presets(settings_file: SettingsOption = DEFAULT_SETTINGS_FILE) -> None:
    """List generation presets and the profiles they resolve to."""
    from storyloom.providers import build_provider_options

    settings = _load(settings_file)
    if not settings.presets:
        console.print("[yellow]No presets configured.[/yellow]")
        return

    table = Table(title="Generation presets")
    table.add_column("Preset", style="cyan")
    table.add_column("Model")
    table.add_column("Profile")
    table.add_column("Reasoning")
    table.add_column("Options")

    for preset_id in sorted(settings.presets):
        preset = settings.presets[preset_id]
        profile = settings.get_profile(preset.profile_id)
        if profile is None:
            profile_cell = f"[red]{preset.profile_id or '(none)'} missing[/red]"
            options_cell = "-"
        else:
            profile_cell = f"{profile.id} ({profile.provider_kind.value})"
            options = build_provider_options(preset, profile.provider_kind)
            options_cell = ", ".join(sorted(options)) if options else "-"
        table.add_row(
            preset_id,
            preset.model,
            profile_cell,
            preset.reasoning_effort.value,
            options_cell,
        )

    console.print(table)


@app.command()
def languages() -> None:
    """List supported translation languages."""
    from storyloom.translation import supported_languages

    table = Table(title="Translation languages")
    table.add_column("Code", style="cyan")
    table.add_column("Language")
    for code, name in supported_languages():
        table.add_row(code, name)
    console.print(table)


async def _illustrate(
    settings_file: Path,
    narrative: str,
    user_action: str,
    story_id: str,
    entry_id: str,
) -> list[EmbeddedImage]:
    from storyloom.images import (
        ImageGenerationContext,
        ImageGenerationService,
        InMemoryImageStore,
        PromptStyleSource,
    )
    from storyloom.prompts import PromptLoader
    from storyloom.providers import ConfigResolver, Generator
    from storyloom.settings import FileSettingsSource

    source = FileSettingsSource(settings_file)
    store = InMemoryImageStore()
    service = ImageGenerationService(
        settings_source=source,
        generator=Generator(ConfigResolver(source)),
        store=store,
        styles=PromptStyleSource(PromptLoader()),
    )
    service.events.subscribe(
        lambda event: log.info("image_event", kind=type(event).__name__, image_id=event.image_id)
    )

    if not service.is_enabled():
        console.print("[yellow]Image generation is disabled or has no API key.[/yellow]")
        return []

    image_ids = await service.generate_for_narrative(
        ImageGenerationContext(
            story_id=story_id,
            entry_id=entry_id,
            narrative_response=narrative,
            user_action=user_action,
        )
    )
    await service.wait_idle()
    return [image for image_id in image_ids if (image := await store.get(image_id)) is not None]


@app.command()
def illustrate(
    passage: Annotated[Path, typer.Argument(help="Text file with the narrative passage.")],
    settings_file: SettingsOption = DEFAULT_SETTINGS_FILE,
    action: Annotated[
        str,
        typer.Option("--action", "-a", help="Player action that produced the passage."),
    ] = "",
    output_dir: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write completed images here as PNG files."),
    ] = None,
) -> None:
    """Identify imageable scenes in a passage and generate their images."""
    import base64

    if not passage.is_file():
        console.print(f"[red]Error:[/red] Passage file not found: {passage}")
        raise typer.Exit(1)
    # Validate settings up front so a bad file is reported before any work starts
    _load(settings_file)

    narrative = passage.read_text(encoding="utf-8")
    images = asyncio.run(
        _illustrate(settings_file, narrative, action, story_id="cli", entry_id=passage.stem)
    )

    if not images:
        console.print("No images generated.")
        return

    table = Table(title=f"Images for {passage.name}")
    table.add_column("Id", style="cyan")
    table.add_column("Status")
    table.add_column("Source text")
    table.add_column("Detail")

    for image in images:
        detail = image.error_message or ""
        if image.status.value == "complete" and output_dir is not None:
            output_dir.mkdir(parents=True, exist_ok=True)
            target = output_dir / f"{image.id}.png"
            target.write_bytes(base64.b64decode(image.image_data))
            detail = str(target)
        style = "green" if image.status.value == "complete" else "red"
        table.add_row(
            image.id[:8],
            f"[{style}]{image.status.value}[/{style}]",
            image.source_text[:60],
            detail,
        )

    console.print(table)
