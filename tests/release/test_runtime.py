"""Tests for ContainerRuntime — every docker call is mocked."""

from __future__ import annotations

import io
import json
import subprocess
import tarfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from binship.core.errors import CommandError, RuntimeNotFoundError
from binship.release.runtime import ContainerRuntime, Mount, host_ports


def _proc(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def rt() -> ContainerRuntime:
    return ContainerRuntime(docker_cmd="docker")


def _argv(mock_run: MagicMock, call: int = -1) -> list[str]:
    return mock_run.call_args_list[call].args[0]


class TestDiscovery:
    @patch("shutil.which", return_value=None)
    def test_missing_docker(self, _which):
        with pytest.raises(RuntimeNotFoundError, match="Docker CLI not found"):
            ContainerRuntime()


class TestRunHelper:
    @patch("subprocess.run")
    def test_non_zero_raises_command_error(self, mock_run, rt):
        mock_run.return_value = _proc(1, stderr="Error: No such container: ghost")
        with pytest.raises(CommandError) as exc:
            rt.remove("ghost")
        assert exc.value.exit_code == 1
        assert "No such container" in exc.value.output
        assert exc.value.argv == ["rm", "ghost"]
        assert not exc.value.retryable

    @patch("subprocess.run", side_effect=subprocess.TimeoutExpired("docker", 900))
    def test_timeout_is_retryable(self, _run, rt):
        with pytest.raises(CommandError, match="timed out") as exc:
            rt.push("api:latest")
        assert exc.value.retryable


class TestImages:
    @patch("subprocess.run")
    def test_build_image_argv(self, mock_run, rt, tmp_path):
        mock_run.return_value = _proc(0)
        rt.build_image(tmp_path, "api:latest", platform="linux/amd64")
        assert _argv(mock_run) == [
            "docker", "build", "--tag", "api:latest",
            "--platform", "linux/amd64", str(tmp_path),
        ]

    @patch("subprocess.run")
    def test_image_id_missing(self, mock_run, rt):
        mock_run.return_value = _proc(1, stderr="No such image")
        assert rt.image_id("api:latest") is None
        assert rt.image_exists("api:latest") is False

    @patch("subprocess.run")
    def test_image_id_present(self, mock_run, rt):
        mock_run.return_value = _proc(0, stdout="sha256:abc\n")
        assert rt.image_id("api:latest") == "sha256:abc"

    @patch("subprocess.run")
    def test_image_labels(self, mock_run, rt):
        mock_run.return_value = _proc(0, stdout=json.dumps({"io.binship.artifact.sha256": "ff"}))
        assert rt.image_labels("api:latest") == {"io.binship.artifact.sha256": "ff"}
        mock_run.return_value = _proc(0, stdout="null")
        assert rt.image_labels("api:latest") == {}

    @patch("subprocess.run")
    def test_push_returns_digest(self, mock_run, rt):
        mock_run.return_value = _proc(0, stdout="latest: digest: sha256:0123abcd size: 1573\n")
        assert rt.push("api:latest") == "sha256:0123abcd"

    @patch("subprocess.run")
    def test_pull_with_platform(self, mock_run, rt):
        mock_run.return_value = _proc(0)
        rt.pull("api:1.0", platform="linux/amd64")
        assert _argv(mock_run) == ["docker", "pull", "--platform", "linux/amd64", "api:1.0"]

    @patch("subprocess.run")
    def test_remote_exists(self, mock_run, rt):
        mock_run.return_value = _proc(0, stdout="{}")
        assert rt.remote_exists("api:1.0") is True
        mock_run.return_value = _proc(1, stderr="no such manifest")
        assert rt.remote_exists("api:1.0") is False

    @patch("subprocess.Popen")
    @patch("subprocess.run")
    def test_list_image_files(self, mock_run, mock_popen, rt):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as archive:
            for name in ("./etc/", "./usr/local/bin/api", ".cargo/config"):
                info = tarfile.TarInfo(name)
                info.size = 0
                archive.addfile(info, io.BytesIO(b""))
        buf.seek(0)

        mock_run.return_value = _proc(0, stdout="c0ffee\n")
        proc = MagicMock(stdout=buf, returncode=0)
        proc.communicate.return_value = (b"", b"")
        mock_popen.return_value = proc

        files = rt.list_image_files("api:latest")

        assert files == ["etc", "usr/local/bin/api", ".cargo/config"]
        assert mock_popen.call_args.args[0] == ["docker", "export", "c0ffee"]
        assert _argv(mock_run) == ["docker", "rm", "--force", "c0ffee"]

    @patch("subprocess.Popen")
    @patch("subprocess.run")
    def test_list_image_files_unreadable_export(self, mock_run, mock_popen, rt):
        mock_run.return_value = _proc(0, stdout="c0ffee\n")
        proc = MagicMock(stdout=io.BytesIO(b"not a tar archive" * 64))
        proc.poll.return_value = None
        mock_popen.return_value = proc

        with pytest.raises(CommandError, match="unreadable archive") as exc:
            rt.list_image_files("api:latest")

        assert exc.value.argv == ["export", "c0ffee"]
        proc.kill.assert_called_once()
        proc.wait.assert_called_once()
        assert _argv(mock_run) == ["docker", "rm", "--force", "c0ffee"]


class TestHostPorts:
    def test_ipv4_and_ipv6_bindings(self):
        assert host_ports("0.0.0.0:8032->4000/tcp, :::8032->4000/tcp") == {8032}

    def test_container_side_is_ignored(self):
        assert host_ports("0.0.0.0:9100->8032/tcp") == {9100}

    def test_exposed_only(self):
        assert host_ports("4000/tcp") == set()
        assert host_ports("") == set()

    def test_range(self):
        assert host_ports("0.0.0.0:8000-8002->8000-8002/tcp") == {8000, 8001, 8002}


class TestContainers:
    @patch("subprocess.run")
    def test_run_ephemeral_offline(self, mock_run, rt, tmp_path):
        mock_run.return_value = _proc(0)
        rt.run_ephemeral(
            "builder:1",
            ["cargo", "build"],
            mounts=[Mount(tmp_path, "/workspace/src")],
            env={"CARGO_INCREMENTAL": "0"},
            network=False,
            workdir="/workspace/src",
            user="1000:1000",
        )
        argv = _argv(mock_run)
        assert argv[:3] == ["docker", "run", "--rm"]
        assert ["--network", "none"] == argv[3:5]
        assert f"{tmp_path.resolve()}:/workspace/src" in argv
        assert "CARGO_INCREMENTAL=0" in argv
        assert argv[-3:] == ["builder:1", "cargo", "build"]

    @patch("subprocess.run")
    def test_run_ephemeral_online_has_no_network_flag(self, mock_run, rt):
        mock_run.return_value = _proc(0)
        rt.run_ephemeral("builder:1", ["cargo", "fetch"], network=True)
        assert "--network" not in _argv(mock_run)

    def test_mount_read_only(self, tmp_path):
        assert Mount(tmp_path, "/x", read_only=True).as_arg().endswith(":/x:ro")

    @patch("subprocess.run")
    def test_run_detached(self, mock_run, rt):
        mock_run.return_value = _proc(0, stdout="0123456789abcdef0123\n")
        container_id = rt.run_detached(
            "api:latest", "marketplace-api",
            ports={8032: 4000}, env_file=Path("env"), labels={"managed": "true"},
        )
        assert container_id == "0123456789ab"
        assert _argv(mock_run) == [
            "docker", "run", "--detach", "--name", "marketplace-api",
            "--publish", "8032:4000", "--env-file", "env",
            "--label", "io.binship.managed=true", "api:latest",
        ]

    @patch("subprocess.run")
    def test_find_container_exact_name(self, mock_run, rt):
        lines = [
            json.dumps({"Names": "marketplace-api-old", "State": "exited"}),
            json.dumps({"Names": "marketplace-api", "State": "running"}),
        ]
        mock_run.return_value = _proc(0, stdout="\n".join(lines))
        assert rt.find_container("marketplace-api")["State"] == "running"
        assert "name=^/marketplace-api$" in _argv(mock_run)

    @patch("subprocess.run")
    def test_find_container_none(self, mock_run, rt):
        mock_run.return_value = _proc(0, stdout="")
        assert rt.find_container("marketplace-api") is None

    @patch("subprocess.run")
    def test_containers_publishing_matches_host_side(self, mock_run, rt):
        mock_run.return_value = _proc(0, stdout=(
            "legacy\t0.0.0.0:8032->4000/tcp, :::8032->4000/tcp\n"
            "metrics\t0.0.0.0:9100->8032/tcp\n"
            "worker\t8032/tcp\n"
        ))
        assert rt.containers_publishing(8032) == ["legacy"]
        assert rt.containers_publishing(4000) == []
        argv = _argv(mock_run)
        assert argv[:2] == ["docker", "ps"]
        assert not any(arg.startswith("publish=") for arg in argv)

    @patch("subprocess.run")
    def test_container_labels(self, mock_run, rt):
        mock_run.return_value = _proc(0, stdout=json.dumps({"io.binship.run_id": "3f2a9c1d7e08"}))
        assert rt.container_labels("marketplace-api") == {"io.binship.run_id": "3f2a9c1d7e08"}
        mock_run.return_value = _proc(1, stderr="No such object")
        assert rt.container_labels("ghost") == {}

    @patch("subprocess.run")
    def test_container_state(self, mock_run, rt):
        mock_run.return_value = _proc(1)
        assert rt.container_state("x") == "not_found"
        mock_run.return_value = _proc(0, stdout="exited\n")
        assert rt.container_state("x") == "exited"

    @patch("subprocess.run")
    def test_login_passthrough(self, mock_run, rt):
        mock_run.return_value = _proc(0)
        assert rt.login("ghcr.io", "ci") == 0
        assert _argv(mock_run) == ["docker", "login", "--username", "ci", "ghcr.io"]
