"""
Root Typer application for the binship CLI.

Global options (``--config``, ``--verbose``, ``--json``) are parsed by the
root callback and stored on ``ctx.obj``; commands read them through
``binship.cli.utils.get_state``. Pipeline internals are imported inside
command bodies so ``binship --help`` stays fast.
"""

from __future__ import annotations

import typer
from typer import Typer

from binship.cli import instance, pipeline
from binship.cli.utils import CLIState

app = Typer(
    name="binship",
    help="binship — build, package, publish and run a single-binary service.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("binship")
        except PackageNotFoundError:
            from binship import __version__ as v
        typer.echo(f"binship {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Pipeline config file (default: binship.yaml if present).",
        envvar="BINSHIP_CONFIG",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs."),
    json_output: bool = typer.Option(False, "--json", help="Machine-readable output."),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """binship CLI — resolve, compile, assemble, publish and deploy."""
    from binship.core.logging import configure_logging

    configure_logging(level="DEBUG" if verbose else "WARNING", json_format=json_output or None)
    ctx.obj = CLIState(config_path=config, verbose=verbose, json_output=json_output)


# ── Command registration ─────────────────────────────────────────────────

app.command("fetch")(pipeline.fetch)
app.command("compile")(pipeline.compile_)
app.command("build")(pipeline.build)
app.command("publish")(pipeline.publish)
app.command("release")(pipeline.release)
app.command("dockerfile")(pipeline.dockerfile)

app.command("pull")(instance.pull)
app.command("run")(instance.run)
app.command("stop")(instance.stop)
app.command("status")(instance.status)
app.command("login")(instance.login)
