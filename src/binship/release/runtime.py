"""Container runtime access via the ``docker`` CLI.

Every interaction with images, registries and containers goes through
``ContainerRuntime``: build, inspect, push, pull, disposable ``run --rm``
for the build environment, detached ``run`` for instances, and the
filesystem export used by the minimality check.

Architecture Decisions:
    - subprocess, not docker-py: works with any runtime exposing a
      ``docker`` CLI (Docker Engine, Podman's docker shim, Colima).
    - Failures surface as ``CommandError`` carrying argv, exit code and
      output. Stages translate them into their own stage errors.
    - Label-based ownership: instances get ``io.binship.*`` labels so
      ``status`` can report what binship created.

Related Modules:
    - :mod:`binship.release.environment` — runs the toolchain through here
    - :mod:`binship.release.deployer` — instance lifecycle
"""

from __future__ import annotations

import json
import re
import shutil
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from binship.core.errors import CommandError, RuntimeNotFoundError
from binship.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Mount:
    """Bind mount for a disposable container."""

    source: Path
    target: str
    read_only: bool = False

    def as_arg(self) -> str:
        suffix = ":ro" if self.read_only else ""
        return f"{Path(self.source).resolve()}:{self.target}{suffix}"


class ContainerRuntime:
    """Thin wrapper around the ``docker`` CLI.

    Parameters
    ----------
    docker_cmd
        Explicit path to the CLI. Looked up on PATH when omitted.
    label_prefix
        Prefix for ownership labels on created containers.
    """

    def __init__(self, docker_cmd: str | None = None, label_prefix: str = "io.binship") -> None:
        self.label_prefix = label_prefix
        self._docker_cmd = docker_cmd or self._find_docker()

    # ------------------------------------------------------------------
    # Docker CLI discovery
    # ------------------------------------------------------------------

    @staticmethod
    def _find_docker() -> str:
        docker = shutil.which("docker")
        if docker is None:
            raise RuntimeNotFoundError(
                "Docker CLI not found on PATH. Install Docker or add it to PATH.\n"
                "  - Linux:   https://docs.docker.com/engine/install/\n"
                "  - macOS:   https://docs.docker.com/desktop/install/mac-install/"
            )
        return docker

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def build_image(
        self,
        context: Path,
        tag: str,
        *,
        platform: str | None = None,
        timeout: int = 1800,
    ) -> subprocess.CompletedProcess[str]:
        """Build an image from ``context`` and tag it."""
        cmd = ["build", "--tag", tag]
        if platform:
            cmd.extend(["--platform", platform])
        cmd.append(str(context))
        result = self._run(cmd, timeout=timeout)
        logger.info("image.built", tag=tag)
        return result

    def image_id(self, ref: str) -> str | None:
        """Local image ID for ``ref``, or None if the image is not present."""
        result = self._run(["image", "inspect", "--format", "{{.Id}}", ref], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def image_exists(self, ref: str) -> bool:
        return self.image_id(ref) is not None

    def image_labels(self, ref: str) -> dict[str, str]:
        result = self._run(
            ["image", "inspect", "--format", "{{json .Config.Labels}}", ref],
            check=False,
        )
        if result.returncode != 0 or not result.stdout.strip():
            return {}
        try:
            labels = json.loads(result.stdout)
        except json.JSONDecodeError:
            return {}
        return labels or {}

    def push(self, ref: str, timeout: int = 900) -> str | None:
        """Push ``ref`` and return the registry digest reported by the CLI."""
        result = self._run(["push", ref], timeout=timeout)
        for line in result.stdout.splitlines():
            if "digest: sha256:" in line:
                return "sha256:" + line.split("digest: sha256:", 1)[1].split()[0]
        return None

    def pull(self, ref: str, platform: str | None = None, timeout: int = 900) -> None:
        cmd = ["pull"]
        if platform:
            cmd.extend(["--platform", platform])
        cmd.append(ref)
        self._run(cmd, timeout=timeout)

    def remote_exists(self, ref: str) -> bool:
        """Whether the registry already serves a manifest for ``ref``."""
        result = self._run(["manifest", "inspect", ref], check=False, timeout=120)
        return result.returncode == 0

    def list_image_files(self, ref: str) -> list[str]:
        """List every path in the image filesystem.

        Creates a stopped container, streams ``docker export`` through
        ``tarfile`` and removes the container again.
        """
        created = self._run(["create", ref])
        container_id = created.stdout.strip()
        argv = ["export", container_id]
        proc: subprocess.Popen[bytes] | None = None
        try:
            proc = subprocess.Popen(  # noqa: S603
                [self._docker_cmd, *argv],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
            try:
                with tarfile.open(fileobj=proc.stdout, mode="r|") as archive:
                    names = [member.name.removeprefix("./").rstrip("/") for member in archive]
            except tarfile.TarError as e:
                raise CommandError(
                    f"docker export for {ref} produced an unreadable archive: {e}",
                    argv=argv,
                    cause=e,
                ) from e
            _, stderr = proc.communicate()
            if proc.returncode != 0:
                raise CommandError(
                    f"docker export failed for {ref}",
                    argv=argv,
                    exit_code=proc.returncode,
                    stderr=stderr.decode(errors="replace"),
                )
            return names
        finally:
            if proc is not None and proc.poll() is None:
                proc.kill()
                proc.wait()
            self._run(["rm", "--force", container_id], check=False)

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def run_ephemeral(
        self,
        image: str,
        command: list[str],
        *,
        mounts: list[Mount] | None = None,
        env: dict[str, str] | None = None,
        network: bool = True,
        workdir: str | None = None,
        user: str | None = None,
        timeout: int = 3600,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``command`` in a disposable container removed on exit."""
        cmd = ["run", "--rm"]
        if not network:
            cmd.extend(["--network", "none"])
        for mount in mounts or []:
            cmd.extend(["--volume", mount.as_arg()])
        for key, value in (env or {}).items():
            cmd.extend(["--env", f"{key}={value}"])
        if workdir:
            cmd.extend(["--workdir", workdir])
        if user:
            cmd.extend(["--user", user])
        cmd.append(image)
        cmd.extend(command)
        return self._run(cmd, timeout=timeout)

    def run_detached(
        self,
        image: str,
        name: str,
        *,
        ports: dict[int, int] | None = None,
        env_file: Path | None = None,
        labels: dict[str, str] | None = None,
    ) -> str:
        """Create and start a named, detached container. Returns its ID."""
        cmd = ["run", "--detach", "--name", name]
        for host_port, container_port in (ports or {}).items():
            cmd.extend(["--publish", f"{host_port}:{container_port}"])
        if env_file is not None:
            cmd.extend(["--env-file", str(env_file)])
        for key, value in (labels or {}).items():
            cmd.extend(["--label", f"{self.label_prefix}.{key}={value}"])
        cmd.append(image)
        result = self._run(cmd)
        container_id = result.stdout.strip()[:12]
        logger.info("container.started", container=name, image=image, container_id=container_id)
        return container_id

    def find_container(self, name: str) -> dict[str, Any] | None:
        """Container with exactly this name, running or stopped."""
        result = self._run(
            ["ps", "--all", "--filter", f"name=^/{name}$", "--format", "{{json .}}"],
            check=False,
        )
        for line in result.stdout.strip().splitlines():
            if not line.strip():
                continue
            try:
                info = json.loads(line)
            except json.JSONDecodeError:
                continue
            if info.get("Names") == name:
                return info
        return None

    def containers_publishing(self, host_port: int) -> list[str]:
        """Names of running containers bound to ``host_port`` on the host.

        ``ps --filter publish=`` matches the container side of a mapping,
        so the host side is read from the ``Ports`` column instead.
        """
        result = self._run(["ps", "--format", "{{.Names}}\t{{.Ports}}"], check=False)
        holders = []
        for line in result.stdout.splitlines():
            name, _, ports = line.partition("\t")
            if name.strip() and host_port in host_ports(ports):
                holders.append(name.strip())
        return holders

    def container_labels(self, name: str) -> dict[str, str]:
        result = self._run(
            ["inspect", "--format", "{{json .Config.Labels}}", name],
            check=False,
        )
        if result.returncode != 0 or not result.stdout.strip():
            return {}
        try:
            labels = json.loads(result.stdout)
        except json.JSONDecodeError:
            return {}
        return labels or {}

    def container_state(self, name: str) -> str:
        result = self._run(["inspect", "--format", "{{.State.Status}}", name], check=False)
        return result.stdout.strip() if result.returncode == 0 else "not_found"

    def stop(self, name: str, timeout: int = 10) -> None:
        self._run(["stop", "--time", str(timeout), name])
        logger.info("container.stopped", container=name)

    def remove(self, name: str) -> None:
        self._run(["rm", name])
        logger.info("container.removed", container=name)

    def login(self, registry: str | None = None, username: str | None = None) -> int:
        """Interactive ``docker login`` passthrough. Returns the exit status."""
        cmd = [self._docker_cmd, "login"]
        if username:
            cmd.extend(["--username", username])
        if registry:
            cmd.append(registry)
        return subprocess.run(cmd, check=False).returncode  # noqa: S603

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run(
        self,
        args: list[str],
        check: bool = True,
        timeout: int = 600,
    ) -> subprocess.CompletedProcess[str]:
        cmd = [self._docker_cmd, *args]
        logger.debug("docker.exec", cmd=" ".join(cmd))
        try:
            result = subprocess.run(  # noqa: S603
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandError(
                f"docker {args[0]} timed out after {timeout}s",
                argv=args,
                retryable=True,
                cause=exc,
            ) from exc
        if check and result.returncode != 0:
            raise CommandError(
                f"docker {args[0]} failed (exit {result.returncode})",
                argv=args,
                exit_code=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


_PORT_BINDING = re.compile(r":(\d+)(?:-(\d+))?->")


def host_ports(ports: str) -> set[int]:
    """Host-side ports in a ``docker ps`` Ports column.

    ``"0.0.0.0:8032->4000/tcp, :::8032->4000/tcp"`` gives ``{8032}``;
    exposed but unpublished ports (``"4000/tcp"``) give nothing.
    """
    found: set[int] = set()
    for match in _PORT_BINDING.finditer(ports):
        first = int(match.group(1))
        last = int(match.group(2) or first)
        found.update(range(first, last + 1))
    return found


def scratch_dir(prefix: str = "binship-") -> tempfile.TemporaryDirectory[str]:
    """Temporary directory used as an isolated build context."""
    return tempfile.TemporaryDirectory(prefix=prefix)


__all__ = ["ContainerRuntime", "Mount", "host_ports", "scratch_dir"]
