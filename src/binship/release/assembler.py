"""Image assembler stage.

Layers the compiled binary onto the pinned runtime base. The build
context is a fresh scratch directory holding the binary and the
generated Dockerfile and nothing else, so neither the toolchain nor the
source tree can reach the image through ``COPY``.

After the build the image filesystem is listed and checked against
``FORBIDDEN_PATTERNS``. A hit is an ``AssemblyError``: leaking build
tooling into the runtime layer is a defect, not a warning.
"""

from __future__ import annotations

import fnmatch
import shutil
from pathlib import Path

from binship.core.errors import AssemblyError, CommandError
from binship.core.logging import get_logger
from binship.release.compiler import sha256_file
from binship.release.config import PipelineConfig
from binship.release.dockerfile import render_runtime_dockerfile
from binship.release.log_collector import LogCollector
from binship.release.models import CompiledArtifact, RuntimeImage
from binship.release.runtime import ContainerRuntime, scratch_dir
from binship.release.tagging import TagStrategy

logger = get_logger(__name__)

STAGE = "assemble"
ARTIFACT_LABEL = "io.binship.artifact.sha256"
BINARY_LABEL = "io.binship.artifact.binary"
BASE_LABEL = "io.binship.base"

# fnmatch patterns over paths relative to the image root
FORBIDDEN_PATTERNS = (
    "usr/local/cargo",
    "usr/local/cargo/*",
    "usr/local/rustup",
    "usr/local/rustup/*",
    "*/.cargo",
    "*/.cargo/*",
    "*/.rustup",
    "*/.rustup/*",
    "*/bin/cargo",
    "*/bin/rustc",
    "target/release",
    "target/release/*",
    "*/target/release",
    "*/target/release/*",
    "*/target/debug/*",
    "Cargo.toml",
    "*/Cargo.toml",
    "*/Cargo.lock",
    "*.rs",
)


def find_forbidden(files: list[str], source_mount: str) -> list[str]:
    """Paths in ``files`` that belong to the build, not the runtime."""
    mount = source_mount.strip("/")
    hits = []
    for name in files:
        if mount and (name == mount or name.startswith(mount + "/")):
            hits.append(name)
        elif any(fnmatch.fnmatch(name, pattern) for pattern in FORBIDDEN_PATTERNS):
            hits.append(name)
    return hits


class ImageAssembler:
    """Builds the runtime image around one compiled artifact."""

    def __init__(
        self,
        config: PipelineConfig,
        runtime: ContainerRuntime,
        strategy: TagStrategy,
        collector: LogCollector | None = None,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.strategy = strategy
        self.collector = collector

    def assemble(self, artifact: CompiledArtifact) -> RuntimeImage:
        self._check_artifact(artifact)

        image_cfg = self.config.image
        tag = self.strategy.tag_for(artifact)
        reference = image_cfg.reference(tag)
        labels = {
            ARTIFACT_LABEL: artifact.sha256,
            BINARY_LABEL: artifact.binary_name,
            BASE_LABEL: image_cfg.base_image,
        }
        dockerfile = render_runtime_dockerfile(image_cfg, artifact.binary_name, labels)
        if self.collector:
            self.collector.save_text(STAGE, "Dockerfile", dockerfile)

        with scratch_dir("binship-context-") as tmp:
            context = Path(tmp)
            shutil.copy2(artifact.path, context / artifact.binary_name)
            (context / "Dockerfile").write_text(dockerfile, encoding="utf-8")
            try:
                result = self.runtime.build_image(
                    context,
                    reference,
                    platform=image_cfg.platform,
                )
            except CommandError as e:
                if self.collector:
                    self.collector.save_output(STAGE, "docker-build", e)
                raise AssemblyError(
                    f"image build failed on base {image_cfg.base_image}:\n{e.tail() or e.message}",
                    cause=e,
                ).with_context(reference=reference) from e
        if self.collector:
            self.collector.save_output(STAGE, "docker-build", result)

        image_id = self.runtime.image_id(reference)
        if image_id is None:
            raise AssemblyError(f"image {reference} is missing after a successful build")

        image = RuntimeImage(
            repository=image_cfg.repository,
            tag=tag,
            image_id=image_id,
            base_image=image_cfg.base_image,
            exposed_port=image_cfg.port,
            artifact_sha256=artifact.sha256,
        )
        if image_cfg.verify_minimal:
            self.verify_minimal(image)

        logger.info("assemble.image", reference=reference, image_id=image_id[:19])
        return image

    def verify_minimal(self, image: RuntimeImage) -> list[str]:
        """List the image filesystem and fail on any build-time leftovers."""
        reference = str(image.reference)
        try:
            files = self.runtime.list_image_files(reference)
        except CommandError as e:
            raise AssemblyError(f"could not inspect {reference}: {e.message}", cause=e) from e

        image.files = files
        hits = find_forbidden(files, self.config.build.source_mount)
        if hits:
            shown = ", ".join(sorted(hits)[:10])
            raise AssemblyError(
                f"runtime image {reference} contains build-time files: {shown}"
            ).with_context(reference=reference, forbidden=len(hits))

        logger.debug("assemble.minimal", reference=reference, files=len(files))
        return files

    def _check_artifact(self, artifact: CompiledArtifact) -> None:
        if not artifact.path.is_file():
            raise AssemblyError(f"compiled artifact {artifact.path} is missing")
        actual = sha256_file(artifact.path)
        if actual != artifact.sha256:
            raise AssemblyError(
                f"compiled artifact {artifact.binary_name} changed after compilation "
                f"(expected sha256 {artifact.sha256[:12]}, found {actual[:12]})"
            )


__all__ = ["ARTIFACT_LABEL", "BASE_LABEL", "FORBIDDEN_PATTERNS", "ImageAssembler", "find_forbidden"]
