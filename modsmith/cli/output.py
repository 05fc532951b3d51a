"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from modsmith.config import ModsmithConfig
from modsmith.llm.errors import CompletionError
from modsmith.llm.types import ChatMessage, StructuredResult
from modsmith.prompts.context import fence_language

KIND_COLORS = {
    "safety_blocked": "magenta",
    "rate_limited": "yellow",
    "all_providers_exhausted": "yellow",
    "malformed_response": "red",
    "auth_error": "red",
    "network_error": "yellow",
}


class OutputFormatter:
    """Rich-based output formatting for the modsmith CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def stream_text(self, text: str) -> None:
        self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)

    def format_chat(self, message: ChatMessage) -> None:
        self.console.print()
        for call in message.tool_calls:
            self.console.print(f"  [yellow]tool call[/yellow] [bold]{call.name}[/bold] ({call.id})")
            self.console.print(Syntax(json.dumps(call.arguments, indent=2), "json", theme="monokai"))
        self.console.print(f"[dim]-- {message.provider} ({message.model})[/dim]")

    def format_structured(self, result: StructuredResult, existing: set[str]) -> None:
        table = Table(title=f"Proposed changes ({result.provider})")
        table.add_column("Action", no_wrap=True)
        table.add_column("Path", style="cyan")
        table.add_column("Lines", justify="right")
        for edit in result.files:
            action = Text("update", style="yellow") if edit.path in existing else Text("create", style="green")
            table.add_row(action, edit.path, str(edit.content.count("\n") + 1))
        self.console.print(table)

    def format_file(self, path: str, content: str) -> None:
        lexer = fence_language(path) or "text"
        self.console.print(Panel(Syntax(content, lexer, theme="monokai", line_numbers=True), title=path))

    def format_written(self, root: Path, written: list[Path]) -> None:
        for path in written:
            self.console.print(f"  [green]wrote[/green] {path.relative_to(root.resolve()).as_posix()}")

    def format_error(self, error: CompletionError) -> None:
        color = KIND_COLORS.get(error.kind, "red")
        hint = " [dim](retry later)[/dim]" if error.retriable else ""
        self.console.print(f"\n[{color}]{error.kind}[/{color}]: {error.message}{hint}")

    def format_providers(self, cfg: ModsmithConfig, environ: dict[str, str]) -> None:
        table = Table(title="Providers (priority order)")
        table.add_column("#", justify="right")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Kind", no_wrap=True)
        table.add_column("Model")
        table.add_column("Key", no_wrap=True)
        table.add_column("Tools", no_wrap=True)
        table.add_column("Stream", no_wrap=True)

        for i, p in enumerate(cfg.providers, start=1):
            has_key = bool(environ.get(p.api_key_env))
            key = Text(p.api_key_env, style="green" if has_key else "red")
            table.add_row(
                str(i), p.name, p.kind, p.model, key,
                "yes" if p.supports_tools else "no",
                "yes" if p.supports_streaming else "no",
            )
        self.console.print(table)

    def format_config(self, config: dict) -> None:
        yaml_str = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(yaml_str, "json", theme="monokai"))
