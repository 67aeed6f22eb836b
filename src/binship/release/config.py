"""Configuration models for the binship release pipeline.

One validated ``PipelineConfig`` is the single definition of the build:
which binary to compile, which toolchain image compiles it, which pinned
base image it ships on, where it is published, and how it is run. There
is exactly one base image and one dependency set per configuration.

Key Concepts:
    PipelineConfig: Root model. Nested sections for artifact, build,
        image, registry, deploy and retry settings.
    TagPolicy: Named tagging strategy (latest / digest / version).
    load_config(): YAML file + ``BINSHIP_*`` env vars + keyword overrides.

Architecture Decisions:
    - Pydantic v2 models: ``model_validate()`` for the YAML payload,
      ``model_dump_json()`` for run records.
    - Override precedence: kwargs > env vars > config file > field defaults.
    - Pinned images are enforced at load time: a floating ``latest`` base
      is a configuration error, not a warning.

Example::

    config = load_config("binship.yaml", deploy={"host_port": 9000})
    config.image.reference("latest")   # 'alexandrvirtual/marketplace-api:latest'
"""

from __future__ import annotations

import os
import uuid
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from binship.core.errors import ConfigError

DEFAULT_CONFIG_FILE = "binship.yaml"


class TagPolicy(str, Enum):
    """How the publisher names the image it pushes."""

    LATEST = "latest"  # Moving tag, overwritten by every publish
    DIGEST = "digest"  # sha-<artifact digest prefix>, content-addressed
    VERSION = "version"  # Cargo package version, immutable once pushed


def is_pinned(image: str) -> bool:
    """Whether an image reference is pinned to a digest or a non-``latest`` tag."""
    if "@sha256:" in image:
        return True
    last = image.rsplit("/", 1)[-1]
    if ":" not in last:
        return False
    tag = last.split(":", 1)[1]
    return bool(tag) and tag != "latest"


class ArtifactConfig(BaseModel):
    """The single binary the pipeline produces."""

    binary: str = Field(default="marketplace-api", description="Cargo binary target name")
    manifest: str = Field(default="Cargo.toml", description="Manifest path inside the source tree")
    require_lockfile: bool = Field(
        default=False,
        description="Fail resolution instead of generating Cargo.lock when it is absent",
    )
    features: list[str] = Field(default_factory=list, description="Cargo features to enable")

    @field_validator("binary")
    @classmethod
    def _check_binary(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value:
            raise ValueError(f"binary must be a bare target name, got {value!r}")
        return value


class BuildConfig(BaseModel):
    """Disposable build environment carrying the toolchain."""

    builder_image: str = Field(default="rust:1.77-bookworm", description="Pinned toolchain image")
    system_packages: list[str] = Field(
        default_factory=lambda: [
            "build-essential",
            "pkg-config",
            "libssl-dev",
            "zlib1g-dev",
            "cmake",
            "clang",
            "libclang-dev",
            "git",
        ],
        description="apt packages installed into the toolchain image",
    )
    source_mount: str = Field(default="/workspace/src", description="Fixed source path in the container")
    source_date_epoch: int = Field(default=0, description="SOURCE_DATE_EPOCH for reproducible output")
    exclude: list[str] = Field(
        default_factory=lambda: ["target", ".git", ".binship"],
        description="Top-level entries not copied into the build workspace",
    )
    timeout_seconds: int = Field(default=3600, ge=1, description="Compile timeout")

    @field_validator("builder_image")
    @classmethod
    def _check_pinned(cls, value: str) -> str:
        if not is_pinned(value):
            raise ValueError(f"builder_image must be pinned to a tag or digest, got {value!r}")
        return value


class ImageConfig(BaseModel):
    """Runtime image assembled around the compiled binary."""

    repository: str = Field(default="alexandrvirtual/marketplace-api", description="Registry repository")
    base_image: str = Field(default="debian:12.5-slim", description="Pinned minimal runtime base")
    runtime_packages: list[str] = Field(
        default_factory=lambda: ["libssl3", "ca-certificates"],
        description="apt packages the binary needs at run time",
    )
    port: int = Field(default=4000, ge=1, le=65535, description="Port the service listens on")
    platform: str | None = Field(default="linux/amd64", description="Target platform (--platform)")
    install_dir: str = Field(default="/usr/local/bin", description="Where the binary is installed")
    labels: dict[str, str] = Field(default_factory=dict, description="Extra image labels")
    verify_minimal: bool = Field(default=True, description="Inspect the image filesystem after build")

    @field_validator("base_image")
    @classmethod
    def _check_pinned(cls, value: str) -> str:
        if not is_pinned(value):
            raise ValueError(f"base_image must be pinned to a tag or digest, got {value!r}")
        return value

    @field_validator("repository")
    @classmethod
    def _check_repository(cls, value: str) -> str:
        if not value or "@" in value or value.rsplit("/", 1)[-1].count(":"):
            raise ValueError(f"repository must not carry a tag or digest, got {value!r}")
        return value

    def reference(self, tag: str) -> str:
        return f"{self.repository}:{tag}"


class RegistryConfig(BaseModel):
    """Publishing policy."""

    tagging: TagPolicy = Field(default=TagPolicy.LATEST, description="Tagging strategy")
    moving_tag: str = Field(default="latest", description="Tag used by the latest policy")
    push_timeout_seconds: int = Field(default=900, ge=1)


class DeployConfig(BaseModel):
    """Running instance on the target host."""

    instance_name: str = Field(default="marketplace-api", description="Container name (uniqueness key)")
    host_port: int = Field(default=8032, ge=1, le=65535, description="Host side of the port mapping")
    env_file: Path = Field(default=Path("env"), description="Environment file passed via --env-file")
    pull_timeout_seconds: int = Field(default=900, ge=1)


class RetryConfig(BaseModel):
    """Backoff for network-bound stages (resolve, publish, retrieve)."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)


class PipelineConfig(BaseModel):
    """Complete definition of one build-and-release pipeline.

    Example::

        config = PipelineConfig(artifact=ArtifactConfig(binary="api"))
        config.workspace_dir   # .binship/work/<run_id>
    """

    project_dir: Path = Field(default=Path("."), description="Source tree root")
    workspace_root: Path = Field(default=Path(".binship/work"), description="Per-run workspaces")
    cache_dir: Path = Field(default=Path(".binship/cache"), description="Dependency cache (advisory)")
    output_dir: Path = Field(default=Path(".binship/runs"), description="Run records")
    keep_workspace: bool = Field(default=False, description="Keep the run workspace after completion")

    artifact: ArtifactConfig = Field(default_factory=ArtifactConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> PipelineConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    @property
    def workspace_dir(self) -> Path:
        return self.workspace_root / self.run_id

    @property
    def manifest_path(self) -> Path:
        return self.project_dir / self.artifact.manifest

    @classmethod
    def from_env(cls, **overrides: Any) -> PipelineConfig:
        """Create config from BINSHIP_* environment variables."""
        return cls.model_validate(_deep_merge(env_overrides(), overrides))


# BINSHIP_* variable -> (section, field); section None means top level
ENV_MAP: dict[str, tuple[str | None, str]] = {
    "BINSHIP_PROJECT_DIR": (None, "project_dir"),
    "BINSHIP_WORKSPACE_ROOT": (None, "workspace_root"),
    "BINSHIP_CACHE_DIR": (None, "cache_dir"),
    "BINSHIP_OUTPUT_DIR": (None, "output_dir"),
    "BINSHIP_BINARY": ("artifact", "binary"),
    "BINSHIP_BUILDER_IMAGE": ("build", "builder_image"),
    "BINSHIP_REPOSITORY": ("image", "repository"),
    "BINSHIP_BASE_IMAGE": ("image", "base_image"),
    "BINSHIP_PLATFORM": ("image", "platform"),
    "BINSHIP_TAGGING": ("registry", "tagging"),
    "BINSHIP_INSTANCE_NAME": ("deploy", "instance_name"),
    "BINSHIP_HOST_PORT": ("deploy", "host_port"),
    "BINSHIP_ENV_FILE": ("deploy", "env_file"),
}


def env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Collect BINSHIP_* variables into a nested override dict."""
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for env_var, (section, field_name) in ENV_MAP.items():
        env_val = environ.get(env_var)
        if env_val is None:
            continue
        if section is None:
            values[field_name] = env_val
        else:
            values.setdefault(section, {})[field_name] = env_val
    return values


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path | None = None, **overrides: Any) -> PipelineConfig:
    """Load the pipeline definition.

    Args:
        path: YAML file. ``None`` reads ``binship.yaml`` if it exists.
        **overrides: Section dicts or top-level values, highest precedence.

    Raises:
        ConfigError: Missing explicit file, malformed YAML, or invalid values
    """
    data: dict[str, Any] = {}
    config_path = Path(path) if path is not None else Path(DEFAULT_CONFIG_FILE)

    if config_path.exists():
        try:
            loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}", cause=e) from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a mapping in {config_path}, got {type(loaded).__name__}")
        data = loaded
    elif path is not None:
        raise ConfigError(f"Config file not found: {config_path}")

    data = _deep_merge(data, env_overrides())
    data = _deep_merge(data, overrides)

    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid pipeline configuration: {e}", cause=e) from e


__all__ = [
    "ArtifactConfig",
    "BuildConfig",
    "DeployConfig",
    "ImageConfig",
    "PipelineConfig",
    "RegistryConfig",
    "RetryConfig",
    "TagPolicy",
    "env_overrides",
    "is_pinned",
    "load_config",
]
