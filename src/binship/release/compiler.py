"""Compiler stage.

Produces exactly one release-mode binary. The build runs offline in a
disposable container; only the binary leaves it. Compilation is treated
as deterministic, so every failure here is final for the run.
"""

from __future__ import annotations

import hashlib
import shutil
import stat
from pathlib import Path, PurePosixPath

from binship.core.errors import CommandError, CompileError
from binship.core.logging import get_logger
from binship.release.config import PipelineConfig
from binship.release.environment import BuildEnvironment
from binship.release.log_collector import LogCollector
from binship.release.models import CompiledArtifact, LockedDependencySet
from binship.release.workspace import Workspace

logger = get_logger(__name__)

STAGE = "compile"
PROFILE = "release"


def sha256_file(path: Path, chunk_size: int = 1 << 20) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


class Compiler:
    """Compiles the configured binary from the staged source tree."""

    def __init__(
        self,
        config: PipelineConfig,
        environment: BuildEnvironment,
        collector: LogCollector | None = None,
    ) -> None:
        self.config = config
        self.environment = environment
        self.collector = collector

    def command(self) -> list[str]:
        """The cargo invocation, offline and locked."""
        manifest = PurePosixPath(self.config.build.source_mount) / self.config.artifact.manifest
        cmd = [
            "cargo", "build",
            "--release", "--locked", "--offline",
            "--manifest-path", str(manifest),
            "--bin", self.config.artifact.binary,
        ]
        if self.config.artifact.features:
            cmd.extend(["--features", ",".join(self.config.artifact.features)])
        return cmd

    def build_env(self) -> dict[str, str]:
        mount = self.config.build.source_mount
        return {
            "CARGO_INCREMENTAL": "0",
            "SOURCE_DATE_EPOCH": str(self.config.build.source_date_epoch),
            "RUSTFLAGS": f"--remap-path-prefix={mount}=/build",
        }

    def compile(self, workspace: Workspace, locked: LockedDependencySet) -> CompiledArtifact:
        binary = self.config.artifact.binary
        self.environment.ensure_image(CompileError)

        try:
            result = self.environment.run(
                self.command(),
                source=workspace.src,
                cache_dir=self.config.cache_dir,
                target_dir=workspace.target,
                network=False,
                env=self.build_env(),
            )
        except CommandError as e:
            if self.collector:
                self.collector.save_output(STAGE, "cargo-build", e)
            raise CompileError(
                f"cargo build failed for {binary}:\n{e.tail() or e.message}",
                cause=e,
            ).with_context(exit_code=e.exit_code) from e
        if self.collector:
            self.collector.save_output(STAGE, "cargo-build", result)

        built = workspace.target / PROFILE / binary
        if not built.is_file():
            raise CompileError(f"cargo build succeeded but produced no binary named {binary!r}")

        artifact = self._collect(built, workspace, locked)
        workspace.discard_build_state()
        self._check_lock_unchanged(locked)

        logger.info(
            "compile.artifact",
            binary=binary,
            sha256=artifact.sha256[:12],
            size_bytes=artifact.size_bytes,
        )
        return artifact

    def _collect(self, built: Path, workspace: Workspace, locked: LockedDependencySet) -> CompiledArtifact:
        workspace.artifact_dir.mkdir(parents=True, exist_ok=True)
        dest = workspace.artifact_dir / built.name
        if dest.exists():
            dest.chmod(0o644)
            dest.unlink()
        shutil.copy2(built, dest)
        dest.chmod(stat.S_IRUSR | stat.S_IXUSR | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH)
        return CompiledArtifact(
            binary_name=built.name,
            path=dest,
            sha256=sha256_file(dest),
            size_bytes=dest.stat().st_size,
            profile=PROFILE,
            lock_digest=locked.lock_digest,
        )

    def _check_lock_unchanged(self, locked: LockedDependencySet) -> None:
        if not locked.lockfile.exists():
            raise CompileError(f"lockfile {locked.lockfile.name} disappeared during compilation")
        current = sha256_file(locked.lockfile)
        if current != locked.lock_digest:
            raise CompileError(
                "Cargo.lock changed during compilation; the locked dependency set is not what was built"
            )


__all__ = ["Compiler", "sha256_file"]
