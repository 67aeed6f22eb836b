"""Run records for binship pipeline runs.

Every run writes its command output and final result under
``<output_dir>/<run_id>/``::

    .binship/runs/3f2a9c1d7e08/
    ├── summary.json          PipelineResult (model_dump_json)
    ├── resolve/
    │   └── cargo-fetch.log
    ├── compile/
    │   └── cargo-build.log
    ├── assemble/
    │   ├── Dockerfile
    │   └── docker-build.log
    ├── publish/
    │   └── docker-push.log
    └── deploy/
        └── docker-run.log

The collector only records. Failures are never decided here.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from binship.core.errors import CommandError
from binship.core.logging import get_logger
from binship.release.results import PipelineResult

logger = get_logger(__name__)


class LogCollector:
    """Collects per-stage command output and the run summary."""

    def __init__(self, output_dir: Path, run_id: str) -> None:
        self.run_dir = Path(output_dir) / run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id

    def stage_dir(self, stage: str) -> Path:
        """Get or create the directory for a stage."""
        d = self.run_dir / stage
        d.mkdir(parents=True, exist_ok=True)
        return d

    def save_text(self, stage: str, name: str, text: str) -> Path:
        path = self.stage_dir(stage) / name
        path.write_text(text, encoding="utf-8")
        return path

    def save_output(
        self,
        stage: str,
        name: str,
        outcome: subprocess.CompletedProcess[str] | CommandError,
    ) -> Path:
        """Save stdout and stderr of a finished (or failed) command as ``<name>.log``."""
        if isinstance(outcome, CommandError):
            text = outcome.output
        else:
            text = "\n".join(part for part in (outcome.stdout, outcome.stderr) if part)
        path = self.save_text(stage, f"{name}.log", text or "")
        logger.debug("output.captured", stage=stage, path=str(path))
        return path

    def write_summary(self, result: PipelineResult) -> Path:
        """Write machine-readable summary JSON."""
        path = self.run_dir / "summary.json"
        path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        logger.info("summary.written", path=str(path))
        return path


__all__ = ["LogCollector"]
