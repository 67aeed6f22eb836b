"""Pipeline runner for binship.

Coordinates one run through the stage sequence::

    PENDING → RESOLVING → COMPILING → ASSEMBLING → PUBLISHING → DEPLOYING → DONE
                 └───────────┴───────────┴────────────┴────────────┴──→ FAILED

Key Concepts:
    PipelineRunner: Config → ``PipelineResult``. Stages run strictly in
        order, each consuming the artifact its predecessor produced. The
        first failing stage ends the run; later stages are recorded as
        skipped.
    STAGES: The stage order. A run executes a prefix of it (``build``
        stops after ``assemble``, ``release`` runs all five).

Architecture Decisions:
    - Forward-only state machine: ``transition()`` rejects any move
      backwards or out of a terminal state with ``PipelineStateError``.
    - Failures are recorded, not raised: the caller gets a failed
      ``PipelineResult`` naming the stage and the cause.
    - Workspace per run: ``<workspace_root>/<run_id>``, removed in
      ``finally`` unless ``keep_workspace`` is set.
    - Collaborators are constructor-injected so tests can swap the
      container runtime for an in-memory fake.

Example::

    from binship.release import PipelineRunner, load_config

    runner = PipelineRunner(load_config())
    result = runner.run(stages_through("assemble"))
    print(result.summary)
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from binship.core.errors import BinshipError, ConfigError, PipelineStateError, ResolutionError
from binship.core.logging import LogContext, get_logger
from binship.core.retry import ExponentialBackoff, RetryStrategy
from binship.release.assembler import ImageAssembler
from binship.release.compiler import Compiler
from binship.release.config import PipelineConfig
from binship.release.deployer import Deployer
from binship.release.environment import BuildEnvironment
from binship.release.log_collector import LogCollector
from binship.release.models import PipelineState
from binship.release.publisher import Publisher
from binship.release.resolver import DependencyResolver
from binship.release.results import PipelineResult, StageResult
from binship.release.runtime import ContainerRuntime
from binship.release.tagging import strategy_for
from binship.release.workspace import Workspace

logger = get_logger(__name__)

STAGES: tuple[str, ...] = ("resolve", "compile", "assemble", "publish", "deploy")

STAGE_STATES: dict[str, PipelineState] = {
    "resolve": PipelineState.RESOLVING,
    "compile": PipelineState.COMPILING,
    "assemble": PipelineState.ASSEMBLING,
    "publish": PipelineState.PUBLISHING,
    "deploy": PipelineState.DEPLOYING,
}

_ORDER: tuple[PipelineState, ...] = (
    PipelineState.PENDING,
    PipelineState.RESOLVING,
    PipelineState.COMPILING,
    PipelineState.ASSEMBLING,
    PipelineState.PUBLISHING,
    PipelineState.DEPLOYING,
    PipelineState.DONE,
)


def stages_through(last: str) -> list[str]:
    """Stage names from ``resolve`` up to and including ``last``."""
    if last not in STAGES:
        raise ConfigError(f"Unknown stage {last!r}; expected one of {', '.join(STAGES)}")
    return list(STAGES[: STAGES.index(last) + 1])


def retry_strategy(config: PipelineConfig) -> RetryStrategy:
    return ExponentialBackoff(
        max_attempts=config.retry.max_attempts,
        base_delay=config.retry.base_delay,
        max_delay=config.retry.max_delay,
    )


class PipelineRunner:
    """Runs one pipeline run. A runner is used once.

    Parameters
    ----------
    config
        Pipeline definition. ``config.run_id`` names the run.
    runtime
        Container runtime. Defaults to the ``docker`` CLI.
    retry
        Backoff for the network-bound stages. Defaults to ``config.retry``.
    """

    def __init__(
        self,
        config: PipelineConfig,
        runtime: ContainerRuntime | None = None,
        retry: RetryStrategy | None = None,
    ) -> None:
        self.config = config
        self.runtime = runtime or ContainerRuntime()
        self.retry = retry or retry_strategy(config)
        self.state = PipelineState.PENDING

        self.collector = LogCollector(config.output_dir, config.run_id)
        self.workspace = Workspace(config.workspace_root, config.run_id)
        self.strategy = strategy_for(config)
        self.environment = BuildEnvironment(config.build, self.runtime, platform=config.image.platform)

        self.resolver = DependencyResolver(config, self.environment, self.retry, self.collector)
        self.compiler = Compiler(config, self.environment, self.collector)
        self.assembler = ImageAssembler(config, self.runtime, self.strategy, self.collector)
        self.publisher = Publisher(config, self.runtime, self.strategy, self.retry, self.collector)
        self.deployer = Deployer(config, self.runtime, self.retry, self.collector)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def transition(self, target: PipelineState) -> None:
        """Move to ``target``; only forward moves and FAILED are legal."""
        current = self.state
        if current.is_terminal:
            raise PipelineStateError(f"Cannot leave terminal state {current.value} for {target.value}")
        if target != PipelineState.FAILED and _ORDER.index(target) <= _ORDER.index(current):
            raise PipelineStateError(f"Illegal transition {current.value} -> {target.value}")
        logger.debug("pipeline.transition", source=current.value, target=target.value)
        self.state = target

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, stages: Sequence[str] = STAGES, force: bool = False) -> PipelineResult:
        """Execute ``stages`` in order and return the run result.

        ``force`` allows republishing an existing version tag.
        """
        stages = list(stages)
        if not stages or stages != list(STAGES[: len(stages)]):
            raise ConfigError(f"Stages must be a prefix of {', '.join(STAGES)}; got {', '.join(stages)}")
        if self.state != PipelineState.PENDING:
            raise PipelineStateError(f"Run {self.config.run_id} already executed; create a new runner")

        result = PipelineResult(run_id=self.config.run_id, stages_requested=stages)

        with LogContext(run_id=self.config.run_id):
            logger.info("pipeline.started", stages=stages, project=str(self.config.project_dir))
            try:
                for name in stages:
                    if not self._run_stage(name, result, force):
                        break
                else:
                    self.transition(PipelineState.DONE)
            finally:
                result.state = self.state
                result.mark_complete()
                self.collector.write_summary(result)
                if not self.config.keep_workspace:
                    self.workspace.cleanup()

            if result.success:
                logger.info("pipeline.completed", summary=result.summary)
            else:
                logger.error("pipeline.failed", stage=result.failed_stage, error=result.error)
        return result

    def _run_stage(self, name: str, result: PipelineResult, force: bool) -> bool:
        self.transition(STAGE_STATES[name])
        result.state = self.state
        stage = StageResult(stage=name)
        result.stages.append(stage)
        stage.start()
        logger.info("stage.started", stage=name)

        try:
            self._execute(name, result, force)
        except BinshipError as e:
            stage.attempts = self._attempts(name)
            stage.finish(error=e.to_dict())
            self._fail(result, name, e, e.to_dict())
            return False
        except Exception as e:  # noqa: BLE001
            logger.exception("stage.crashed", stage=name)
            detail = {"error_type": type(e).__name__, "message": str(e), "stage": name}
            stage.attempts = self._attempts(name)
            stage.finish(error=detail)
            self._fail(result, name, e, detail)
            return False

        stage.attempts = self._attempts(name)
        stage.finish()
        logger.info("stage.completed", stage=name, duration_ms=int(stage.duration_seconds * 1000))
        return True

    def _execute(self, name: str, result: PipelineResult, force: bool) -> None:
        if name == "resolve":
            try:
                self.workspace.stage_source(self.config.project_dir, self.config.build.exclude)
            except OSError as e:
                raise ResolutionError(
                    f"cannot stage source tree {self.config.project_dir}: {e}", cause=e
                ) from e
            result.locked = self.resolver.resolve(self.workspace)
        elif name == "compile":
            result.artifact = self.compiler.compile(self.workspace, result.locked)
        elif name == "assemble":
            result.image = self.assembler.assemble(result.artifact)
        elif name == "publish":
            result.reference = self.publisher.publish(result.image, force=force)
        elif name == "deploy":
            result.instance = self.deployer.deploy(result.reference)

    def _attempts(self, name: str) -> int:
        if name == "resolve":
            return self.resolver.attempts
        if name == "publish":
            return self.publisher.attempts
        if name == "deploy":
            return max(self.deployer.attempts, 1)
        return 1

    def _fail(self, result: PipelineResult, name: str, error: Exception, detail: dict[str, Any]) -> None:
        self.transition(PipelineState.FAILED)
        result.state = self.state
        result.failed_stage = name
        result.error = str(error)
        result.error_detail = detail
        logger.error("stage.failed", stage=name, error=str(error))


__all__ = [
    "PipelineRunner",
    "STAGES",
    "STAGE_STATES",
    "retry_strategy",
    "stages_through",
]
