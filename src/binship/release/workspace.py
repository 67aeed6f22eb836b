"""Per-run build workspace.

Each run gets ``<workspace_root>/<run_id>/`` with:

    src/        copy of the source tree (the only tree the toolchain sees)
    target/     cargo target directory, discarded after compilation
    artifact/   the compiled binary, read-only once written

The original source tree is copied, never written. Concurrent runs use
distinct run IDs and therefore distinct workspaces.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from binship.core.logging import get_logger

logger = get_logger(__name__)


class Workspace:
    """Isolated scratch area for one pipeline run."""

    def __init__(self, root: Path, run_id: str) -> None:
        self.root = Path(root) / run_id
        self.run_id = run_id

    @property
    def src(self) -> Path:
        return self.root / "src"

    @property
    def target(self) -> Path:
        return self.root / "target"

    @property
    def artifact_dir(self) -> Path:
        return self.root / "artifact"

    def stage_source(self, project_dir: Path, exclude: list[str] | None = None) -> Path:
        """Copy the source tree into ``src/``, skipping top-level ``exclude`` entries."""
        project_dir = Path(project_dir).resolve()
        excluded = set(exclude or [])
        root = self.root.resolve()

        def _ignore(directory: str, names: list[str]) -> set[str]:
            ignored = set()
            for name in names:
                path = Path(directory) / name
                if Path(directory).resolve() == project_dir and name in excluded:
                    ignored.add(name)
                # workspace_root may live inside the project
                elif path.resolve() == root or root.is_relative_to(path.resolve()):
                    ignored.add(name)
            return ignored

        if self.src.exists():
            shutil.rmtree(self.src)
        self.root.mkdir(parents=True, exist_ok=True)
        shutil.copytree(project_dir, self.src, ignore=_ignore, symlinks=True)
        logger.debug("workspace.staged", source=str(project_dir), dest=str(self.src))
        return self.src

    def discard_build_state(self) -> None:
        """Delete the target directory (object files, build scripts, caches)."""
        if self.target.exists():
            shutil.rmtree(self.target)
        logger.debug("workspace.build_state_discarded", path=str(self.target))

    def cleanup(self) -> None:
        """Remove the whole workspace, including the read-only artifact."""
        if not self.root.exists():
            return
        for path in self.root.rglob("*"):
            if path.is_file() and not path.is_symlink():
                path.chmod(0o644)
        shutil.rmtree(self.root)
        logger.debug("workspace.removed", path=str(self.root))


__all__ = ["Workspace"]
