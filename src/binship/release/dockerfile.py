"""Dockerfile rendering from the single pipeline configuration.

Three renderings, all derived from one ``PipelineConfig`` so that they
cannot drift apart:

    render_builder_dockerfile()     toolchain image for resolve + compile
    render_runtime_dockerfile()     base + binary only, built by the assembler
    render_multistage_dockerfile()  both combined, for ``binship dockerfile``
                                    and CI systems that build in one pass

Example::

    text = render_runtime_dockerfile(config.image, "marketplace-api")
    (context / "Dockerfile").write_text(text)
"""

from __future__ import annotations

import hashlib
import shlex
from pathlib import PurePosixPath

from binship.release.config import BuildConfig, ImageConfig, PipelineConfig


def _apt_install(packages: list[str]) -> list[str]:
    if not packages:
        return []
    joined = " \\\n    ".join(packages)
    return [
        "RUN apt-get update && apt-get install -y --no-install-recommends \\",
        f"    {joined} \\",
        "    && rm -rf /var/lib/apt/lists/*",
    ]


def _label_lines(labels: dict[str, str]) -> list[str]:
    return [f"LABEL {key}={shlex.quote(value)}" for key, value in sorted(labels.items())]


def render_builder_dockerfile(build: BuildConfig) -> str:
    """Toolchain image: pinned builder plus system libraries, no sources."""
    lines = [f"FROM {build.builder_image}", ""]
    lines.extend(_apt_install(build.system_packages))
    lines.extend(["", f"WORKDIR {build.source_mount}", ""])
    return "\n".join(lines)


def builder_tag(build: BuildConfig) -> str:
    """Content-addressed tag for the toolchain image."""
    digest = hashlib.sha256(render_builder_dockerfile(build).encode()).hexdigest()[:12]
    return f"binship-builder:{digest}"


def render_runtime_dockerfile(
    image: ImageConfig,
    binary_name: str,
    labels: dict[str, str] | None = None,
) -> str:
    """Runtime image: pinned base, runtime libraries, the binary, nothing else.

    The build context next to this file holds only ``binary_name``.
    """
    target = f"{image.install_dir.rstrip('/')}/{binary_name}"
    lines = [f"FROM {image.base_image}", ""]
    lines.extend(_apt_install(image.runtime_packages))
    lines.extend(_label_lines({**image.labels, **(labels or {})}))
    lines.extend([
        "",
        f"COPY --chmod=0555 {binary_name} {target}",
        "",
        f"EXPOSE {image.port}",
        "",
        f'CMD ["{binary_name}"]',
        "",
    ])
    return "\n".join(lines)


def render_multistage_dockerfile(config: PipelineConfig) -> str:
    """Single-file equivalent of the whole build for one-pass CI builds.

    Runs the same cargo steps as the resolver and compiler: the lockfile is
    generated only when the tree has none and ``require_lockfile`` is off,
    and every invocation points at the configured manifest. The builder
    stage is discarded by the final ``FROM``; only the binary is copied
    across the stage boundary.
    """
    build = config.build
    artifact = config.artifact
    binary = artifact.binary
    mount = PurePosixPath(build.source_mount)
    manifest = mount / artifact.manifest
    lockfile = manifest.parent / "Cargo.lock"
    target_dir = mount.parent / "target"

    cargo_args = [
        "cargo", "build", "--release", "--locked", "--offline",
        "--manifest-path", str(manifest), "--bin", binary,
    ]
    if artifact.features:
        cargo_args.extend(["--features", ",".join(artifact.features)])

    lines = [f"FROM {build.builder_image} AS builder", ""]
    lines.extend(_apt_install(build.system_packages))
    lines.extend(["", f"WORKDIR {mount}", "", "COPY . .", ""])
    if not artifact.require_lockfile:
        lines.append(f"RUN test -f {lockfile} || cargo generate-lockfile --manifest-path {manifest}")
    lines.extend([
        f"RUN cargo fetch --locked --manifest-path {manifest}",
        "",
        f"ENV CARGO_INCREMENTAL=0 SOURCE_DATE_EPOCH={build.source_date_epoch} \\",
        f"    CARGO_TARGET_DIR={target_dir} RUSTFLAGS=--remap-path-prefix={mount}=/build",
        f"RUN {' '.join(cargo_args)}",
        "",
    ])
    runtime = render_runtime_dockerfile(config.image, binary).splitlines()
    for line in runtime:
        if line.startswith("COPY "):
            target = f"{config.image.install_dir.rstrip('/')}/{binary}"
            line = f"COPY --from=builder --chmod=0555 {target_dir}/release/{binary} {target}"
        lines.append(line)
    return "\n".join(lines)


__all__ = [
    "builder_tag",
    "render_builder_dockerfile",
    "render_multistage_dockerfile",
    "render_runtime_dockerfile",
]
