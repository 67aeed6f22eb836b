"""Result models for pipeline runs.

Per-stage ``StageResult`` entries roll up into one ``PipelineResult``.
The runner calls ``mark_complete()`` when the run ends, which finalises
timestamps, duration and the one-line summary that the CLI prints.

Key Concepts:
    StageStatus: PENDING / RUNNING / PASSED / FAILED / SKIPPED.
    StageResult: One stage's outcome, timings and error dict.
    PipelineResult: The run: final ``PipelineState``, every artifact the
        run produced, ``failed_stage`` and ``error`` when it failed.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from binship.release.models import (
    CompiledArtifact,
    LockedDependencySet,
    PipelineState,
    RegistryReference,
    RunningInstance,
    RuntimeImage,
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _elapsed(started_at: str, completed_at: str) -> float:
    start = datetime.fromisoformat(started_at)
    end = datetime.fromisoformat(completed_at)
    return (end - start).total_seconds()


class StageStatus(str, Enum):
    """Outcome of a single stage."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PASSED = "PASSED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class StageResult(BaseModel):
    """Outcome of one stage of one run."""

    stage: str
    status: StageStatus = StageStatus.PENDING
    started_at: str | None = None
    completed_at: str | None = None
    duration_seconds: float = 0.0
    attempts: int = 0
    error: dict[str, Any] | None = None

    def start(self) -> None:
        self.status = StageStatus.RUNNING
        self.started_at = _now()

    def finish(self, error: dict[str, Any] | None = None) -> None:
        self.completed_at = _now()
        if self.started_at:
            self.duration_seconds = _elapsed(self.started_at, self.completed_at)
        self.error = error
        self.status = StageStatus.FAILED if error else StageStatus.PASSED


class PipelineResult(BaseModel):
    """Result of one pipeline run."""

    run_id: str
    stages_requested: list[str] = Field(default_factory=list)
    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float = 0.0
    state: PipelineState = PipelineState.PENDING
    stages: list[StageResult] = Field(default_factory=list)

    locked: LockedDependencySet | None = None
    artifact: CompiledArtifact | None = None
    image: RuntimeImage | None = None
    reference: RegistryReference | None = None
    instance: RunningInstance | None = None

    failed_stage: str | None = None
    error: str | None = None
    error_detail: dict[str, Any] | None = None
    summary: str = ""

    @property
    def success(self) -> bool:
        return self.state == PipelineState.DONE

    def stage(self, name: str) -> StageResult | None:
        for result in self.stages:
            if result.stage == name:
                return result
        return None

    def mark_complete(self) -> None:
        """Finalize run: compute duration, skipped stages, summary."""
        self.completed_at = _now()
        self.duration_seconds = _elapsed(self.started_at, self.completed_at)

        ran = {s.stage for s in self.stages}
        for name in self.stages_requested:
            if name not in ran:
                self.stages.append(StageResult(stage=name, status=StageStatus.SKIPPED))

        passed = sum(1 for s in self.stages if s.status == StageStatus.PASSED)
        total = len(self.stages_requested)
        if self.success:
            self.summary = f"{passed}/{total} stages passed in {self.duration_seconds:.1f}s"
        else:
            self.summary = (
                f"failed at {self.failed_stage or 'unknown'} stage after "
                f"{passed}/{total} stages: {self.error}"
            )


__all__ = [
    "PipelineResult",
    "StageResult",
    "StageStatus",
]
