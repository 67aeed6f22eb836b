"""
Shared pytest fixtures for binship tests.

This module provides:
- An isolated working directory with no BINSHIP_* variables set
- A minimal Cargo project on disk
- A ``make_config`` factory pointing every pipeline directory at tmp_path
- The in-memory ``FakeRuntime`` (no Docker or Cargo needed)

Usage::

    def test_release(make_config, fake_runtime, no_wait):
        runner = PipelineRunner(make_config(), fake_runtime, no_wait)
        assert runner.run().success
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from binship.core.retry import ExponentialBackoff
from binship.release.config import PipelineConfig
from tests._support.fake_runtime import FakeRuntime

CARGO_TOML = """\
[package]
name = "marketplace-api"
version = "0.3.1"
edition = "2021"

[[bin]]
name = "marketplace-api"
path = "src/main.rs"

[dependencies]
serde = "1.0"
tokio = { version = "1.36", features = ["full"] }
"""

MAIN_RS = """\
fn main() {
    println!("listening on 0.0.0.0:4000");
}
"""


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every test in an empty cwd without BINSHIP_* overrides."""
    for key in list(os.environ):
        if key.startswith("BINSHIP_"):
            monkeypatch.delenv(key)
    cwd = tmp_path / "cwd"
    cwd.mkdir()
    monkeypatch.chdir(cwd)


@pytest.fixture
def cargo_project(tmp_path: Path) -> Path:
    """A Cargo source tree with two registry dependencies and an env file."""
    project = tmp_path / "project"
    (project / "src").mkdir(parents=True)
    (project / "Cargo.toml").write_text(CARGO_TOML)
    (project / "src" / "main.rs").write_text(MAIN_RS)
    (project / "env").write_text("DATABASE_URL=postgres://db/marketplace\n")
    return project


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def no_wait() -> ExponentialBackoff:
    """Backoff with the production attempt count but no sleeping."""
    return ExponentialBackoff(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def make_config(tmp_path: Path, cargo_project: Path) -> Callable[..., PipelineConfig]:
    """Factory for configs rooted in tmp_path; keyword args override sections."""

    def _make(**overrides: Any) -> PipelineConfig:
        data: dict[str, Any] = {
            "project_dir": cargo_project,
            "workspace_root": tmp_path / "work",
            "cache_dir": tmp_path / "cache",
            "output_dir": tmp_path / "runs",
            "deploy": {"env_file": cargo_project / "env"},
        }
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return PipelineConfig.model_validate(data)

    return _make
