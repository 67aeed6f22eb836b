"""Disposable build environment.

The toolchain (Rust, cargo, C compilers, system headers) lives only in a
builder image and only ever runs inside ``docker run --rm`` containers.
Nothing from those containers reaches later stages except what they
write into the run workspace, and the compiler stage discards that
(``target/``) before handing over the binary.

The builder image is tagged by a hash of its rendered Dockerfile, so it
is built once per toolchain definition and reused across runs.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

from binship.core.errors import CommandError, StageError
from binship.core.logging import get_logger
from binship.release.config import BuildConfig
from binship.release.dockerfile import builder_tag, render_builder_dockerfile
from binship.release.runtime import ContainerRuntime, Mount, scratch_dir

logger = get_logger(__name__)

CARGO_HOME = "/cargo-home"
TARGET_MOUNT = "/workspace/target"


class BuildEnvironment:
    """Runs toolchain commands in disposable containers.

    Parameters
    ----------
    build
        Toolchain definition.
    runtime
        Container runtime used to build the image and run commands.
    platform
        Target platform, passed through to the builder image build.
    """

    def __init__(
        self,
        build: BuildConfig,
        runtime: ContainerRuntime,
        platform: str | None = None,
    ) -> None:
        self.build = build
        self.runtime = runtime
        self.platform = platform
        self.image = builder_tag(build)

    def ensure_image(self, error_cls: type[StageError]) -> str:
        """Build the toolchain image unless it already exists locally."""
        if self.runtime.image_exists(self.image):
            logger.debug("builder.cached", image=self.image)
            return self.image

        logger.info("builder.building", image=self.image, base=self.build.builder_image)
        with scratch_dir("binship-builder-") as tmp:
            context = Path(tmp)
            (context / "Dockerfile").write_text(render_builder_dockerfile(self.build), encoding="utf-8")
            try:
                self.runtime.build_image(context, self.image, platform=self.platform)
            except CommandError as e:
                raise error_cls(
                    f"toolchain image {self.build.builder_image} could not be prepared: {e.tail()}",
                    cause=e,
                    retryable=False,
                ) from e
        return self.image

    def run(
        self,
        command: list[str],
        *,
        source: Path,
        cache_dir: Path,
        target_dir: Path | None = None,
        network: bool,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``command`` with the staged source mounted at the fixed source path.

        Raises:
            CommandError: The command exited non-zero or timed out
        """
        cache_dir.mkdir(parents=True, exist_ok=True)
        mounts = [
            Mount(source, self.build.source_mount),
            Mount(cache_dir, CARGO_HOME),
        ]
        full_env = {"CARGO_HOME": CARGO_HOME}
        if target_dir is not None:
            target_dir.mkdir(parents=True, exist_ok=True)
            mounts.append(Mount(target_dir, TARGET_MOUNT))
            full_env["CARGO_TARGET_DIR"] = TARGET_MOUNT
        full_env.update(env or {})

        logger.info("builder.exec", command=" ".join(command), network=network)
        return self.runtime.run_ephemeral(
            self.image,
            command,
            mounts=mounts,
            env=full_env,
            network=network,
            workdir=self.build.source_mount,
            user=_host_user(),
            timeout=timeout or self.build.timeout_seconds,
        )


def _host_user() -> str | None:
    """``uid:gid`` so files written into mounts stay owned by the caller."""
    if hasattr(os, "getuid"):
        return f"{os.getuid()}:{os.getgid()}"
    return None


__all__ = ["BuildEnvironment", "CARGO_HOME", "TARGET_MOUNT"]
