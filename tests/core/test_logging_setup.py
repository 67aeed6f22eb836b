"""
Tests for binship.core.logging.

Tests verify:
- JSON lines carry event, level, logger name and service
- LogContext binds run_id only for the duration of the block
- DEBUG lines are suppressed at WARNING level
"""

import json

import pytest
import structlog

from binship.core.logging import LogContext, bind_context, clear_context, configure_logging, get_logger


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    clear_context()
    structlog.reset_defaults()


def _lines(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestConfigureLogging:
    def test_json_output_to_stderr(self, capsys):
        configure_logging(level="INFO", json_format=True)
        get_logger("binship.release.compiler").info("compile.artifact", sha256="abc")

        captured = capsys.readouterr()
        assert captured.out == ""
        [entry] = _lines(captured.err)
        assert entry["event"] == "compile.artifact"
        assert entry["level"] == "info"
        assert entry["logger"] == "binship.release.compiler"
        assert entry["service"] == "binship"
        assert entry["sha256"] == "abc"
        assert "timestamp" in entry

    def test_level_filtering(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        logger = get_logger("test")
        logger.debug("hidden")
        logger.info("hidden.too")
        logger.warning("publish.retry", attempt=1)

        entries = _lines(capsys.readouterr().err)
        assert [e["event"] for e in entries] == ["publish.retry"]

    def test_custom_service_name(self, capsys):
        configure_logging(level="INFO", json_format=True, service="ci-runner", add_timestamp=False)
        get_logger().info("x")

        [entry] = _lines(capsys.readouterr().err)
        assert entry["service"] == "ci-runner"
        assert "timestamp" not in entry
        assert "logger" not in entry

    def test_module_logger_follows_later_configuration(self, capsys):
        logger = get_logger("binship.release.deployer")
        configure_logging(level="INFO", json_format=True)
        logger.info("deploy.running", instance="marketplace-api")

        captured = capsys.readouterr()
        assert captured.out == ""
        [entry] = _lines(captured.err)
        assert entry["logger"] == "binship.release.deployer"
        assert entry["instance"] == "marketplace-api"


class TestLogContext:
    def test_run_id_bound_inside_block_only(self, capsys):
        configure_logging(level="INFO", json_format=True)
        logger = get_logger("test")

        with LogContext(run_id="3f2a9c1d7e08"):
            logger.info("stage.started", stage="resolve")
        logger.info("after")

        inside, after = _lines(capsys.readouterr().err)
        assert inside["run_id"] == "3f2a9c1d7e08"
        assert "run_id" not in after

    def test_bind_context_persists_until_cleared(self, capsys):
        configure_logging(level="INFO", json_format=True)
        bind_context(stage="publish")
        get_logger("test").info("one")
        clear_context()
        get_logger("test").info("two")

        one, two = _lines(capsys.readouterr().err)
        assert one["stage"] == "publish"
        assert "stage" not in two
