"""
CLI utility helpers: shared state, config loading and output formatting.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from binship.core.errors import BinshipError, ConfigError

console = Console()
err_console = Console(stderr=True)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


@dataclass
class CLIState:
    """Global options from the root callback, carried on ``ctx.obj``."""

    config_path: str | None = None
    verbose: bool = False
    json_output: bool = False


def get_state(ctx: typer.Context) -> CLIState:
    obj = ctx.find_root().obj
    return obj if isinstance(obj, CLIState) else CLIState()


# ── Config / runtime helpers ─────────────────────────────────────────────


def load_cli_config(ctx: typer.Context, **overrides: Any) -> Any:
    """Load the pipeline config; exit with status 2 when it is invalid."""
    from binship.release.config import load_config

    state = get_state(ctx)
    try:
        return load_config(state.config_path, **_drop_none(overrides))
    except ConfigError as e:
        err_console.print(f"[bold red]Configuration error[/bold red]: {escape(e.message)}")
        raise typer.Exit(code=EXIT_CONFIG) from e


def make_runtime() -> Any:
    """Container runtime for CLI commands; exit 1 when docker is missing."""
    from binship.release.runtime import ContainerRuntime

    try:
        return ContainerRuntime()
    except BinshipError as e:
        err_console.print(f"[bold red]Error[/bold red]: {escape(e.message)}")
        raise typer.Exit(code=EXIT_FAILURE) from e


def fail(error: BinshipError) -> None:
    """Print a stage error and exit 1."""
    err_console.print(f"[bold red]✗[/bold red] {escape(str(error))}")
    raise typer.Exit(code=EXIT_FAILURE)


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, dict):
            nested = _drop_none(value)
            if nested:
                cleaned[key] = nested
        elif value is not None:
            cleaned[key] = value
    return cleaned


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def print_json(data: Any) -> None:
    typer.echo(json.dumps(_to_dict(data), indent=2, default=str))


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def print_pipeline_result(result: Any, *, as_json: bool = False) -> None:
    """Render a ``PipelineResult`` as a stage table plus the produced artifacts."""
    from binship.release.results import StageStatus

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
        return

    table = Table(title=f"Run {result.run_id}")
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Time", justify="right")

    styles = {
        StageStatus.PASSED: "green",
        StageStatus.FAILED: "red",
        StageStatus.SKIPPED: "dim",
    }
    for stage in result.stages:
        style = styles.get(stage.status, "white")
        table.add_row(
            stage.stage,
            f"[{style}]{stage.status.value}[/{style}]",
            str(stage.attempts or "—"),
            f"{stage.duration_seconds:.1f}s" if stage.duration_seconds else "—",
        )
    console.print(table)

    if result.artifact:
        console.print(f"  [cyan]artifact[/cyan]: {result.artifact.binary_name} sha256:{result.artifact.sha256[:12]}")
    if result.image:
        console.print(f"  [cyan]image[/cyan]: {result.image.reference} ({result.image.image_id[:19]})")
    if result.reference:
        digest = f" {result.reference.digest}" if result.reference.digest else ""
        console.print(f"  [cyan]published[/cyan]: {result.reference}{digest}")
    if result.instance:
        console.print(
            f"  [cyan]instance[/cyan]: {result.instance.name} "
            f"{result.instance.host_port}->{result.instance.container_port}"
        )

    if result.success:
        console.print(f"[green]✓ {result.summary}[/green]")
    else:
        err_console.print(f"[bold red]✗ {result.failed_stage} failed[/bold red]: {escape(result.error or '')}")
