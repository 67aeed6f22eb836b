"""Artifact models handed from stage to stage.

Each stage produces exactly one of these and the next stage consumes it
read-only:

    LockedDependencySet → CompiledArtifact → RuntimeImage
        → RegistryReference → RunningInstance

All are Pydantic v2 models so that a run record can serialise the whole
chain with ``model_dump(mode="json")``.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class PipelineState(str, Enum):
    """Position of a run in the strictly forward stage sequence."""

    PENDING = "PENDING"
    RESOLVING = "RESOLVING"
    COMPILING = "COMPILING"
    ASSEMBLING = "ASSEMBLING"
    PUBLISHING = "PUBLISHING"
    DEPLOYING = "DEPLOYING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.FAILED)


class LockedPackage(BaseModel):
    """One ``[[package]]`` entry of a resolved lockfile."""

    name: str
    version: str
    source: str | None = None
    checksum: str | None = None

    @property
    def is_local(self) -> bool:
        """Workspace members carry no source."""
        return self.source is None


class LockedDependencySet(BaseModel):
    """Resolved, pinned dependency graph for one build."""

    lockfile: Path
    lock_digest: str
    packages: list[LockedPackage] = Field(default_factory=list)
    generated: bool = False

    @property
    def external(self) -> list[LockedPackage]:
        return [p for p in self.packages if not p.is_local]

    def find(self, name: str) -> list[LockedPackage]:
        return [p for p in self.packages if p.name == name]


class CompiledArtifact(BaseModel):
    """The single release-mode binary produced by one run."""

    binary_name: str
    path: Path
    sha256: str
    size_bytes: int
    profile: str = "release"
    lock_digest: str | None = None


class RegistryReference(BaseModel):
    """``repository:tag`` address of a published image."""

    repository: str
    tag: str
    digest: str | None = None

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"

    @classmethod
    def parse(cls, value: str) -> RegistryReference:
        """Parse ``name:tag``; a missing tag means ``latest``.

        A colon inside the registry host (``host:5000/name``) is not a tag.
        """
        digest = None
        if "@" in value:
            value, digest = value.split("@", 1)
        head, _, last = value.rpartition("/")
        if ":" in last:
            name, tag = last.split(":", 1)
        else:
            name, tag = last, "latest"
        repository = f"{head}/{name}" if head else name
        if not name or not tag:
            raise ValueError(f"Invalid image reference: {value!r}")
        return cls(repository=repository, tag=tag, digest=digest)


class RuntimeImage(BaseModel):
    """Minimal runtime image holding the compiled artifact."""

    repository: str
    tag: str
    image_id: str
    base_image: str
    exposed_port: int
    artifact_sha256: str | None = None
    files: list[str] = Field(default_factory=list, exclude=True)

    @property
    def reference(self) -> RegistryReference:
        return RegistryReference(repository=self.repository, tag=self.tag)


class RunningInstance(BaseModel):
    """A named, detached container created from a published image."""

    name: str
    container_id: str
    reference: str
    host_port: int
    container_port: int
    env_file: Path
    image_id: str | None = None
    artifact_sha256: str | None = None
    status: str = "running"


__all__ = [
    "CompiledArtifact",
    "LockedDependencySet",
    "LockedPackage",
    "PipelineState",
    "RegistryReference",
    "RunningInstance",
    "RuntimeImage",
]
