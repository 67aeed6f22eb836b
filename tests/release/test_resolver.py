"""Tests for the dependency resolver stage."""

from __future__ import annotations

import pytest

from binship.core.errors import CommandError, ResolutionError
from binship.release.environment import BuildEnvironment
from binship.release.log_collector import LogCollector
from binship.release.resolver import DependencyResolver, classify_failure, read_lockfile
from binship.release.workspace import Workspace


@pytest.fixture
def setup(make_config, fake_runtime, no_wait):
    def _setup(**overrides):
        config = make_config(**overrides)
        workspace = Workspace(config.workspace_root, config.run_id)
        workspace.stage_source(config.project_dir, config.build.exclude)
        collector = LogCollector(config.output_dir, config.run_id)
        env = BuildEnvironment(config.build, fake_runtime)
        resolver = DependencyResolver(config, env, no_wait, collector)
        return resolver, workspace, collector

    return _setup


class TestResolve:
    def test_generates_lockfile_when_missing(self, setup, fake_runtime, cargo_project):
        resolver, workspace, collector = setup()
        locked = resolver.resolve(workspace)

        assert locked.generated
        assert locked.lockfile == workspace.src / "Cargo.lock"
        assert {p.name for p in locked.external} == {"serde", "tokio"}
        assert locked.find("tokio")[0].version == "1.36.0"
        assert len(locked.lock_digest) == 64
        assert not (cargo_project / "Cargo.lock").exists()
        assert (collector.run_dir / "resolve" / "cargo-fetch.log").exists()

        commands = [e["command"][:2] for e in fake_runtime.ephemeral]
        assert commands == [["cargo", "generate-lockfile"], ["cargo", "fetch"]]
        assert all(e["network"] for e in fake_runtime.ephemeral)

    def test_existing_lockfile_is_kept(self, setup, fake_runtime, cargo_project):
        resolver, workspace, _ = setup()
        resolver.resolve(workspace)
        (cargo_project / "Cargo.lock").write_text((workspace.src / "Cargo.lock").read_text())

        resolver2, workspace2, _ = setup()
        fake_runtime.ephemeral.clear()
        locked = resolver2.resolve(workspace2)

        assert not locked.generated
        assert [e["command"][1] for e in fake_runtime.ephemeral] == ["fetch"]

    def test_builder_image_built_once(self, setup, fake_runtime):
        resolver, workspace, _ = setup()
        resolver.resolve(workspace)
        resolver.resolve(workspace)
        builds = [c for c in fake_runtime.calls if c[0] == "build"]
        assert len(builds) == 1
        assert builds[0][1]["tag"] == resolver.environment.image

    def test_require_lockfile(self, setup, fake_runtime):
        resolver, workspace, _ = setup(artifact={"require_lockfile": True})
        with pytest.raises(ResolutionError, match="Cargo.lock is missing") as exc:
            resolver.resolve(workspace)
        assert not exc.value.retryable
        assert fake_runtime.ephemeral == []

    def test_missing_manifest(self, setup):
        resolver, workspace, _ = setup(artifact={"manifest": "api/Cargo.toml"})
        with pytest.raises(ResolutionError, match="not found"):
            resolver.resolve(workspace)


class TestFailures:
    def test_unsatisfiable_is_not_retried(self, setup, fake_runtime):
        fake_runtime.unavailable_crates.add("tokio")
        resolver, workspace, collector = setup()

        with pytest.raises(ResolutionError, match="cannot be satisfied") as exc:
            resolver.resolve(workspace)

        assert not exc.value.retryable
        assert "tokio" in exc.value.message
        assert resolver.attempts == 1
        assert (collector.run_dir / "resolve" / "cargo-generate-lockfile.log").exists()

    def test_transient_network_errors_retried(self, setup, fake_runtime):
        fake_runtime.fetch_failures = 2
        resolver, workspace, _ = setup()
        locked = resolver.resolve(workspace)

        assert locked.packages
        # generate-lockfile once, fetch three times
        assert resolver.attempts == 4

    def test_retries_exhausted(self, setup, fake_runtime):
        fake_runtime.fetch_failures = 5
        resolver, workspace, _ = setup()

        with pytest.raises(ResolutionError, match="unreachable") as exc:
            resolver.resolve(workspace)
        assert exc.value.retryable
        assert fake_runtime.fetch_failures == 2

    def test_builder_image_failure(self, setup, fake_runtime):
        fake_runtime.missing_bases.add("rust:1.77-bookworm")
        resolver, workspace, _ = setup()
        with pytest.raises(ResolutionError, match="toolchain image"):
            resolver.resolve(workspace)


class TestHelpers:
    def test_classify_failure(self):
        fatal = classify_failure(
            CommandError("x", stderr="error: no matching package named `foo` found"), "cargo fetch"
        )
        transient = classify_failure(CommandError("x", stderr="error: SSL connect error"), "cargo fetch")
        assert not fatal.retryable
        assert transient.retryable
        assert transient.message.startswith("cargo fetch: dependencies unreachable")

    def test_read_lockfile_invalid(self, tmp_path):
        path = tmp_path / "Cargo.lock"
        path.write_text("[[package]\n")
        with pytest.raises(ResolutionError, match="not valid TOML"):
            read_lockfile(path)

    def test_read_lockfile_local_members(self, tmp_path):
        path = tmp_path / "Cargo.lock"
        path.write_text(
            'version = 3\n\n[[package]]\nname = "api"\nversion = "0.1.0"\n\n'
            '[[package]]\nname = "serde"\nversion = "1.0.197"\n'
            'source = "registry+https://github.com/rust-lang/crates.io-index"\n'
        )
        locked = read_lockfile(path)
        assert [p.name for p in locked.external] == ["serde"]
        assert not locked.generated
