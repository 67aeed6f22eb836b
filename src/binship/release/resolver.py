"""Dependency Resolver stage.

Fetches and locks every external crate before compilation so that the
compiler can run with networking disabled. The resolved ``Cargo.lock`` is
the Locked Dependency Set; the shared cargo cache under ``cache_dir`` only
speeds things up and a cold cache yields the same lockfile.

Failure classification:
    - unsatisfiable constraints, unknown crates, stale/invalid lockfiles
      → ``ResolutionError(retryable=False)``
    - anything else (download, DNS, TLS, timeouts)
      → ``ResolutionError(retryable=True)``, retried with backoff
"""

from __future__ import annotations

import hashlib
import tomllib
from pathlib import Path, PurePosixPath

from binship.core.errors import CommandError, ResolutionError
from binship.core.logging import get_logger
from binship.core.retry import RetryContext, RetryStrategy
from binship.release.config import PipelineConfig
from binship.release.environment import BuildEnvironment
from binship.release.log_collector import LogCollector
from binship.release.models import LockedDependencySet, LockedPackage
from binship.release.workspace import Workspace

logger = get_logger(__name__)

# cargo output fragments that mean the graph itself is wrong
UNSATISFIABLE_MARKERS = (
    "failed to select a version",
    "no matching package",
    "no matching version",
    "failed to parse lock file",
    "failed to parse manifest",
    "needs to be updated but --locked was passed",
    "cyclic package dependency",
    "could not find `",
)

STAGE = "resolve"


def read_lockfile(path: Path, generated: bool = False) -> LockedDependencySet:
    """Parse a ``Cargo.lock`` into a ``LockedDependencySet``."""
    raw = path.read_bytes()
    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise ResolutionError(f"lockfile {path.name} is not valid TOML: {e}", cause=e) from e

    packages = [
        LockedPackage(
            name=entry["name"],
            version=entry["version"],
            source=entry.get("source"),
            checksum=entry.get("checksum"),
        )
        for entry in data.get("package", [])
    ]
    return LockedDependencySet(
        lockfile=path,
        lock_digest=hashlib.sha256(raw).hexdigest(),
        packages=packages,
        generated=generated,
    )


def classify_failure(error: CommandError, action: str) -> ResolutionError:
    """Turn a failed cargo invocation into a retryable or fatal ResolutionError."""
    output = error.output.lower()
    tail = error.tail(12) or error.message
    if any(marker in output for marker in UNSATISFIABLE_MARKERS):
        return ResolutionError(
            f"{action}: dependency graph cannot be satisfied:\n{tail}",
            retryable=False,
            cause=error,
        )
    return ResolutionError(
        f"{action}: dependencies unreachable:\n{tail}",
        retryable=True,
        cause=error,
    )


class DependencyResolver:
    """Produces the Locked Dependency Set for the staged source tree."""

    def __init__(
        self,
        config: PipelineConfig,
        environment: BuildEnvironment,
        retry: RetryStrategy,
        collector: LogCollector | None = None,
    ) -> None:
        self.config = config
        self.environment = environment
        self.retry = retry
        self.collector = collector
        self.attempts = 0

    def resolve(self, workspace: Workspace) -> LockedDependencySet:
        manifest = workspace.src / self.config.artifact.manifest
        if not manifest.is_file():
            raise ResolutionError(
                f"manifest {self.config.artifact.manifest} not found in {self.config.project_dir}",
                retryable=False,
            )

        lockfile = manifest.parent / "Cargo.lock"
        manifest_arg = str(PurePosixPath(self.config.build.source_mount) / self.config.artifact.manifest)

        self.environment.ensure_image(ResolutionError)

        generated = False
        if not lockfile.exists():
            if self.config.artifact.require_lockfile:
                raise ResolutionError(
                    "Cargo.lock is missing and require_lockfile is set",
                    retryable=False,
                )
            logger.warning("resolve.generating_lockfile", manifest=self.config.artifact.manifest)
            self._cargo(
                workspace,
                ["cargo", "generate-lockfile", "--manifest-path", manifest_arg],
                "cargo-generate-lockfile",
            )
            generated = True

        self._cargo(
            workspace,
            ["cargo", "fetch", "--locked", "--manifest-path", manifest_arg],
            "cargo-fetch",
        )

        locked = read_lockfile(lockfile, generated=generated)
        logger.info(
            "resolve.locked",
            packages=len(locked.packages),
            external=len(locked.external),
            lock_digest=locked.lock_digest[:12],
        )
        return locked

    def _cargo(self, workspace: Workspace, command: list[str], log_name: str) -> None:
        def _on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning("resolve.retry", attempt=attempt, delay=round(delay, 2), error=str(error))

        ctx = RetryContext(self.retry, on_retry=_on_retry)
        try:
            ctx.run(self._attempt, workspace, command, log_name)
        finally:
            self.attempts += ctx.attempts

    def _attempt(self, workspace: Workspace, command: list[str], log_name: str) -> None:
        try:
            result = self.environment.run(
                command,
                source=workspace.src,
                cache_dir=self.config.cache_dir,
                network=True,
            )
        except CommandError as e:
            if self.collector:
                self.collector.save_output(STAGE, log_name, e)
            raise classify_failure(e, " ".join(command[:2])) from e
        if self.collector:
            self.collector.save_output(STAGE, log_name, result)


__all__ = ["DependencyResolver", "classify_failure", "read_lockfile"]
