"""Tag strategies for published images.

The strategy decides the tag before the image is built so that the
assembler and the publisher agree on the same ``repository:tag``.

    latest   moving tag; every publish re-points it
    digest   ``sha-<12 hex>`` of the artifact digest; never reassigned
    version  ``[package].version`` from Cargo.toml; never reassigned
"""

from __future__ import annotations

import tomllib
from abc import ABC, abstractmethod
from pathlib import Path

from binship.core.errors import ConfigError
from binship.release.config import PipelineConfig, TagPolicy
from binship.release.models import CompiledArtifact


class TagStrategy(ABC):
    """Base class for tag strategies."""

    policy: TagPolicy
    mutable: bool = False

    @abstractmethod
    def tag_for(self, artifact: CompiledArtifact) -> str:
        ...


class LatestTag(TagStrategy):
    policy = TagPolicy.LATEST
    mutable = True

    def __init__(self, tag: str = "latest") -> None:
        self.tag = tag

    def tag_for(self, artifact: CompiledArtifact) -> str:
        return self.tag


class DigestTag(TagStrategy):
    policy = TagPolicy.DIGEST

    def __init__(self, length: int = 12) -> None:
        self.length = length

    def tag_for(self, artifact: CompiledArtifact) -> str:
        return f"sha-{artifact.sha256[: self.length]}"


class VersionTag(TagStrategy):
    """Tag with the package version read from the manifest."""

    policy = TagPolicy.VERSION

    def __init__(self, manifest: Path) -> None:
        self.manifest = Path(manifest)

    def tag_for(self, artifact: CompiledArtifact) -> str:
        return read_package_version(self.manifest)


def read_package_version(manifest: Path) -> str:
    """``[package].version`` of a Cargo manifest.

    Raises:
        ConfigError: The manifest is unreadable or declares no version
    """
    try:
        data = tomllib.loads(Path(manifest).read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read package version from {manifest}: {e}", cause=e) from e

    version = data.get("package", {}).get("version")
    if not isinstance(version, str) or not version:
        raise ConfigError(f"{manifest} declares no [package].version; use another tagging policy")
    return version


def strategy_for(config: PipelineConfig) -> TagStrategy:
    """Build the strategy named by ``registry.tagging``."""
    policy = config.registry.tagging
    if policy == TagPolicy.LATEST:
        return LatestTag(config.registry.moving_tag)
    if policy == TagPolicy.DIGEST:
        return DigestTag()
    if policy == TagPolicy.VERSION:
        return VersionTag(config.manifest_path)
    raise ConfigError(f"Unknown tagging policy: {policy}")


__all__ = [
    "DigestTag",
    "LatestTag",
    "TagStrategy",
    "VersionTag",
    "read_package_version",
    "strategy_for",
]
