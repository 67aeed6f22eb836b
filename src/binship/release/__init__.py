"""binship.release - the build-and-release pipeline.

Five stages, each a hard boundary that hands one artifact to the next:

    DependencyResolver  Source Tree        → LockedDependencySet
    Compiler            LockedDependencySet → CompiledArtifact
    ImageAssembler      CompiledArtifact    → RuntimeImage
    Publisher           RuntimeImage        → RegistryReference
    Deployer            RegistryReference   → RunningInstance

Key Concepts:
    PipelineConfig: The single definition of the build (binary, toolchain
        image, pinned base image, registry, deploy target).
    PipelineRunner: Config in, ``PipelineResult`` out. Forward-only state
        machine; the first failing stage ends the run.
    ContainerRuntime: Subprocess wrapper around the ``docker`` CLI used by
        every stage.

Architecture::

    ┌────────────────────────────────────────────────────────────────┐
    │                        PipelineRunner                           │
    ├──────────┬──────────┬───────────┬───────────┬──────────────────┤
    │ Resolver │ Compiler │ Assembler │ Publisher │ Deployer         │
    ├──────────┴──────────┼───────────┴───────────┴──────────────────┤
    │ BuildEnvironment    │                                          │
    │ (disposable --rm)   │                                          │
    ├─────────────────────┴──────────────────────────────────────────┤
    │        ContainerRuntime (docker CLI subprocess)                 │
    ├────────────────────────────────────────────────────────────────┤
    │  Workspace │ Dockerfile rendering │ Tag strategies │ LogCollector│
    └────────────────────────────────────────────────────────────────┘

Example:
    >>> from binship.release import PipelineConfig, TagPolicy
    >>> config = PipelineConfig(run_id="abc123def456")
    >>> config.registry.tagging == TagPolicy.LATEST
    True
"""

from binship.release.assembler import ImageAssembler
from binship.release.compiler import Compiler
from binship.release.config import (
    ArtifactConfig,
    BuildConfig,
    DeployConfig,
    ImageConfig,
    PipelineConfig,
    RegistryConfig,
    RetryConfig,
    TagPolicy,
    load_config,
)
from binship.release.deployer import Deployer
from binship.release.dockerfile import (
    render_builder_dockerfile,
    render_multistage_dockerfile,
    render_runtime_dockerfile,
)
from binship.release.environment import BuildEnvironment
from binship.release.log_collector import LogCollector
from binship.release.models import (
    CompiledArtifact,
    LockedDependencySet,
    LockedPackage,
    PipelineState,
    RegistryReference,
    RunningInstance,
    RuntimeImage,
)
from binship.release.publisher import Publisher
from binship.release.resolver import DependencyResolver
from binship.release.results import PipelineResult, StageResult, StageStatus
from binship.release.runtime import ContainerRuntime
from binship.release.tagging import DigestTag, LatestTag, TagStrategy, VersionTag, strategy_for
from binship.release.workflow import STAGES, PipelineRunner, stages_through
from binship.release.workspace import Workspace

__all__ = [
    # Config
    "ArtifactConfig",
    "BuildConfig",
    "DeployConfig",
    "ImageConfig",
    "PipelineConfig",
    "RegistryConfig",
    "RetryConfig",
    "TagPolicy",
    "load_config",
    # Models
    "CompiledArtifact",
    "LockedDependencySet",
    "LockedPackage",
    "PipelineState",
    "RegistryReference",
    "RunningInstance",
    "RuntimeImage",
    # Results
    "PipelineResult",
    "StageResult",
    "StageStatus",
    # Stages
    "Compiler",
    "DependencyResolver",
    "Deployer",
    "ImageAssembler",
    "Publisher",
    # Infrastructure
    "BuildEnvironment",
    "ContainerRuntime",
    "LogCollector",
    "Workspace",
    "render_builder_dockerfile",
    "render_multistage_dockerfile",
    "render_runtime_dockerfile",
    # Tagging
    "DigestTag",
    "LatestTag",
    "TagStrategy",
    "VersionTag",
    "strategy_for",
    # Runner
    "PipelineRunner",
    "STAGES",
    "stages_through",
]
