"""
CLI: instance commands, operating on published images and the host.

Usage::

    binship pull                                   # configured repository:latest
    binship run alexandrvirtual/marketplace-api:1.4.0 --port 9000
    binship stop                                   # explicit teardown
    binship status --json
    binship login                                  # docker login passthrough
"""

from __future__ import annotations

from pathlib import Path

import typer

from binship.cli.utils import (
    EXIT_FAILURE,
    console,
    err_console,
    fail,
    get_state,
    load_cli_config,
    make_runtime,
    print_dict,
    print_json,
)
from binship.core.errors import BinshipError

_REFERENCE = typer.Argument(None, help="Image reference name:tag (defaults to the configured repository).")
_NAME = typer.Option(None, "--name", "-n", help="Instance name (defaults to deploy.instance_name).")


def _deployer(config):
    from binship.release.deployer import Deployer
    from binship.release.workflow import retry_strategy

    return Deployer(config, make_runtime(), retry_strategy(config))


def _default_reference(config, reference: str | None) -> str:
    return reference or config.image.reference(config.registry.moving_tag)


def pull(ctx: typer.Context, reference: str | None = _REFERENCE) -> None:
    """Retrieve a published image from the registry."""
    state = get_state(ctx)
    config = load_cli_config(ctx)
    deployer = _deployer(config)
    try:
        image = deployer.retrieve(_default_reference(config, reference))
    except BinshipError as e:
        fail(e)

    if state.json_output:
        print_json(image)
    else:
        console.print(f"[green]✓ pulled {image.reference}[/green] ({image.image_id[:19]})")


def run(
    ctx: typer.Context,
    reference: str | None = _REFERENCE,
    name: str | None = _NAME,
    port: int | None = typer.Option(None, "--port", "-p", help="Host port (defaults to deploy.host_port)."),
    env_file: Path | None = typer.Option(None, "--env-file", "-e", help="Environment file."),
) -> None:
    """Retrieve an image and start it as a named, detached instance."""
    state = get_state(ctx)
    config = load_cli_config(
        ctx,
        deploy={"instance_name": name, "host_port": port, "env_file": env_file},
    )
    deployer = _deployer(config)
    try:
        instance = deployer.deploy(_default_reference(config, reference))
    except BinshipError as e:
        fail(e)

    if state.json_output:
        print_json(instance)
    else:
        console.print(
            f"[green]✓ {instance.name}[/green] running {instance.reference} "
            f"on port {instance.host_port} ({instance.container_id})"
        )


def stop(ctx: typer.Context, name: str | None = _NAME) -> None:
    """Stop and remove the named instance."""
    config = load_cli_config(ctx, deploy={"instance_name": name})
    deployer = _deployer(config)
    target = config.deploy.instance_name
    try:
        removed = deployer.teardown(target)
    except BinshipError as e:
        fail(e)

    if removed:
        console.print(f"[green]✓ {target} stopped and removed[/green]")
    else:
        console.print(f"[dim]No instance named {target}.[/dim]")


def status(ctx: typer.Context, name: str | None = _NAME) -> None:
    """Show the state of the named instance."""
    state = get_state(ctx)
    config = load_cli_config(ctx, deploy={"instance_name": name})
    info = _deployer(config).status(config.deploy.instance_name)

    if state.json_output:
        print_json(info)
    else:
        print_dict(info, title="Instance")


def login(
    ctx: typer.Context,
    registry: str | None = typer.Argument(None, help="Registry host (Docker Hub when omitted)."),
    username: str | None = typer.Option(None, "--username", "-u", help="Registry user."),
) -> None:
    """Authenticate against the registry (``docker login`` passthrough)."""
    code = make_runtime().login(registry, username)
    if code != 0:
        err_console.print("[red]✗ login failed[/red]")
        raise typer.Exit(code=EXIT_FAILURE)
