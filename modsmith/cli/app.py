"""
Main CLI application for modsmith-core.

Usage:
    modsmith generate PROMPT [--project DIR] [--mode chat|structured-json]
                             [--attach FILE] [--apply] [--deterministic]
                             [--profile NAME] [--verbose]
    modsmith providers list
    modsmith config show|validate
    modsmith version
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from modsmith.config import (
    ModsmithConfig,
    build_descriptors,
    build_retry,
    load_config,
    validate_config,
)
from modsmith.llm.errors import CompletionError
from modsmith.llm.types import (
    Attachment,
    ChatMessage,
    CompletionRequest,
    OutputMode,
    ProviderDescriptor,
    StructuredResult,
    TextDelta,
)

app = typer.Typer(name="modsmith", help="Modsmith - resilient LLM code generation for Minecraft projects")
providers_app = typer.Typer(help="Provider management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(providers_app, name="providers")
app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def configure_logging(level: str = "WARNING") -> None:
    """Route stdlib logging through rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    env_path = os.environ.get("MODSMITH_CONFIG")
    if env_path:
        return Path(env_path)
    candidates = [
        Path.cwd() / "modsmith.yaml",
        Path.cwd() / "modsmith.yml",
        Path.home() / ".config" / "modsmith" / "config.yaml",
        Path.home() / ".modsmith" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load_or_exit(profile: str | None = None, cli_overrides: dict | None = None) -> ModsmithConfig:
    try:
        return load_config(_get_config_path(), profile=profile, cli_overrides=cli_overrides)
    except (ValueError, TypeError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)


async def _close_providers(descriptors: tuple[ProviderDescriptor, ...]) -> None:
    for d in descriptors:
        await d.provider.aclose()


async def _generate(
    request: CompletionRequest,
    cfg: ModsmithConfig,
    descriptors: tuple[ProviderDescriptor, ...],
):
    """Run one request, streaming chat text to the console."""
    from modsmith.cli.output import OutputFormatter
    from modsmith.llm.token_counter import TokenCounter
    from modsmith.orchestrator.core import CompletionOrchestrator
    from modsmith.prompts.context import ProjectContextPacker

    formatter = OutputFormatter(console)
    packer = ProjectContextPacker(
        TokenCounter(descriptors[0].model),
        max_context_tokens=cfg.generation.max_context_tokens,
        reserve_tokens=cfg.generation.reserve_tokens,
    )
    orchestrator = CompletionOrchestrator(descriptors, retry=build_retry(cfg), packer=packer)

    outcome = None
    try:
        if request.mode == OutputMode.STRUCTURED_JSON:
            with console.status("Generating changes..."):
                outcome = await orchestrator.complete(request)
        else:
            async for item in orchestrator.run(request):
                if isinstance(item, TextDelta):
                    formatter.stream_text(item.text)
                elif isinstance(item, (ChatMessage, StructuredResult)):
                    outcome = item
    finally:
        await _close_providers(descriptors)
    return outcome


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def generate(
    prompt: str = typer.Argument(..., help="What to build or change"),
    project: Optional[Path] = typer.Option(None, "--project", "-p", help="Project directory to include as context"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="Output mode: chat or structured-json"),
    attach: Optional[Path] = typer.Option(None, "--attach", help="Attach a text document as extra context"),
    apply: bool = typer.Option(False, "--apply", help="Write structured edits into the project"),
    deterministic: bool = typer.Option(False, "--deterministic", help="Temperature 0 and fixed sampling"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Generate a response or a set of file edits for PROMPT."""
    from modsmith.cli.output import OutputFormatter
    from modsmith.project import apply_edits, load_project_info, load_snapshot

    overrides: dict = {}
    if mode:
        overrides["generation.mode"] = mode
    if deterministic:
        overrides["generation.deterministic"] = True
    cfg = _load_or_exit(profile, overrides)
    configure_logging("DEBUG" if verbose else cfg.logging.level)

    problems = validate_config(cfg)
    if problems:
        for p in problems:
            console.print(f"[red]Config error:[/red] {p}")
        raise typer.Exit(1)

    if apply and cfg.generation.mode != OutputMode.STRUCTURED_JSON:
        console.print("[red]--apply requires --mode structured-json[/red]")
        raise typer.Exit(1)
    if apply and project is None:
        console.print("[red]--apply requires --project[/red]")
        raise typer.Exit(1)

    descriptors = build_descriptors(cfg)
    if not descriptors:
        console.print("[red]No usable providers:[/red] set at least one API key (see 'modsmith providers list').")
        raise typer.Exit(1)

    files: dict[str, str] = {}
    project_info = None
    if project is not None:
        try:
            files = load_snapshot(project)
        except NotADirectoryError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        project_info = load_project_info(project)

    attachment = None
    if attach is not None:
        try:
            attachment = Attachment(name=attach.name, text=attach.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            console.print(f"[red]Cannot read attachment:[/red] {e}")
            raise typer.Exit(1)

    request = CompletionRequest(
        prompt=prompt,
        temperature=cfg.generation.temperature,
        deterministic=cfg.generation.deterministic,
        mode=cfg.generation.mode,
        files=files,
        project=project_info,
        attachment=attachment,
    )

    formatter = OutputFormatter(console)
    try:
        outcome = asyncio.run(_generate(request, cfg, descriptors))
    except CompletionError as e:
        formatter.format_error(e)
        raise typer.Exit(1)

    if isinstance(outcome, ChatMessage):
        formatter.format_chat(outcome)
    elif isinstance(outcome, StructuredResult):
        formatter.format_structured(outcome, existing=set(files))
        if apply:
            try:
                written = apply_edits(project, outcome.files)
            except ValueError as e:
                console.print(f"[red]Refusing to apply edits:[/red] {e}")
                raise typer.Exit(1)
            formatter.format_written(project, written)
        else:
            for edit in outcome.files:
                formatter.format_file(edit.path, edit.content)


@providers_app.command("list")
def providers_list(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """List configured providers in failover order."""
    from modsmith.cli.output import OutputFormatter

    cfg = _load_or_exit(profile)
    OutputFormatter(console).format_providers(cfg, dict(os.environ))


@config_app.command("show")
def config_show(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Show effective config."""
    from modsmith.cli.output import OutputFormatter

    cfg = _load_or_exit(profile)
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Validate config and report problems."""
    config_path = _get_config_path()
    cfg = _load_or_exit(profile)
    problems = validate_config(cfg)
    if problems:
        console.print("[red]Config validation failed:[/red]")
        for p in problems:
            console.print(f"  - {p}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    chain = " -> ".join(p.name for p in cfg.providers)
    console.print(f"  Provider chain: {chain}")
    console.print(f"  Default mode: {cfg.generation.mode}")
    console.print(f"  Retries: {cfg.retry.max_retries} (max delay {cfg.retry.max_delay_seconds}s)")


@app.command()
def version():
    """Show version."""
    console.print("modsmith-core v0.1.0")


def main():
    app()


if __name__ == "__main__":
    main()
