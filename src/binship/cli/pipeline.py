"""
CLI: pipeline commands, each running a prefix of the stage sequence.

Usage::

    binship fetch                     # resolve
    binship compile                   # resolve → compile
    binship build                     # ... → assemble (local image only)
    binship publish --tagging digest  # ... → publish
    binship release                   # all five stages
    binship dockerfile                # combined multi-stage Dockerfile
"""

from __future__ import annotations

from pathlib import Path

import typer

from binship.cli.utils import (
    EXIT_FAILURE,
    console,
    get_state,
    load_cli_config,
    make_runtime,
    print_pipeline_result,
)
from binship.release.config import TagPolicy


def _run_pipeline(
    ctx: typer.Context,
    last: str,
    *,
    keep_workspace: bool = False,
    tagging: TagPolicy | None = None,
    force: bool = False,
    project_dir: Path | None = None,
) -> None:
    from binship.release.workflow import PipelineRunner, stages_through

    state = get_state(ctx)
    config = load_cli_config(
        ctx,
        project_dir=project_dir,
        keep_workspace=keep_workspace or None,
        registry={"tagging": tagging},
    )
    runtime = make_runtime()

    if not state.json_output:
        console.print(f"[bold]binship {last}[/] — run_id: {config.run_id}")

    runner = PipelineRunner(config, runtime)
    result = runner.run(stages_through(last), force=force)
    print_pipeline_result(result, as_json=state.json_output)

    if not result.success:
        raise typer.Exit(code=EXIT_FAILURE)


_PROJECT = typer.Option(None, "--project", "-p", help="Source tree (defaults to config project_dir).")
_KEEP = typer.Option(False, "--keep-workspace", help="Keep the run workspace for inspection.")
_TAGGING = typer.Option(None, "--tagging", "-t", help="Tag policy: latest, digest or version.")
_FORCE = typer.Option(False, "--force", help="Republish an existing version tag.")


def fetch(
    ctx: typer.Context,
    project: Path | None = _PROJECT,
    keep: bool = _KEEP,
) -> None:
    """Resolve and lock dependencies."""
    _run_pipeline(ctx, "resolve", keep_workspace=keep, project_dir=project)


def compile_(
    ctx: typer.Context,
    project: Path | None = _PROJECT,
    keep: bool = _KEEP,
) -> None:
    """Resolve dependencies and compile the release binary."""
    _run_pipeline(ctx, "compile", keep_workspace=keep, project_dir=project)


def build(
    ctx: typer.Context,
    project: Path | None = _PROJECT,
    keep: bool = _KEEP,
    tagging: TagPolicy | None = _TAGGING,
) -> None:
    """Compile and assemble the runtime image locally."""
    _run_pipeline(ctx, "assemble", keep_workspace=keep, tagging=tagging, project_dir=project)


def publish(
    ctx: typer.Context,
    project: Path | None = _PROJECT,
    keep: bool = _KEEP,
    tagging: TagPolicy | None = _TAGGING,
    force: bool = _FORCE,
) -> None:
    """Build the runtime image and push it to the registry."""
    _run_pipeline(ctx, "publish", keep_workspace=keep, tagging=tagging, force=force, project_dir=project)


def release(
    ctx: typer.Context,
    project: Path | None = _PROJECT,
    keep: bool = _KEEP,
    tagging: TagPolicy | None = _TAGGING,
    force: bool = _FORCE,
) -> None:
    """Run every stage: resolve, compile, assemble, publish, deploy."""
    _run_pipeline(ctx, "deploy", keep_workspace=keep, tagging=tagging, force=force, project_dir=project)


def dockerfile(
    ctx: typer.Context,
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to file instead of stdout."),
) -> None:
    """Print the combined multi-stage Dockerfile for one-pass CI builds."""
    from binship.release.dockerfile import render_multistage_dockerfile

    config = load_cli_config(ctx)
    text = render_multistage_dockerfile(config)
    if output is None:
        typer.echo(text, nl=False)
        return
    output.write_text(text, encoding="utf-8")
    console.print(f"[green]✓ wrote {output}[/green]")
