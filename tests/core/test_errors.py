"""Tests for binship.core.errors module."""

import pytest

from binship.core.errors import (
    AssemblyError,
    BinshipError,
    CommandError,
    CompileError,
    ConfigError,
    DeployError,
    ErrorCategory,
    ErrorContext,
    PipelineStateError,
    PublishError,
    ResolutionError,
    StageError,
    get_retry_after,
    is_retryable,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_empty_context_serializes_to_empty_dict(self):
        assert ErrorContext().to_dict() == {}

    def test_to_dict_skips_none_and_merges_metadata(self):
        ctx = ErrorContext(stage="publish", reference="svc:latest", metadata={"attempt": 2})
        assert ctx.to_dict() == {"stage": "publish", "reference": "svc:latest", "attempt": 2}


class TestBinshipError:
    """Test the base error."""

    def test_defaults(self):
        error = BinshipError("boom")
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.retry_after is None
        assert str(error) == "boom"

    def test_cause_is_chained(self):
        cause = OSError("disk full")
        error = BinshipError("write failed", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "disk full"

    def test_with_context_sets_known_fields_and_metadata(self):
        error = BinshipError("x").with_context(reference="svc:1.0", instance="svc")
        assert error.context.reference == "svc:1.0"
        assert error.context.metadata == {"instance": "svc"}

    def test_to_dict(self):
        error = BinshipError("x", retry_after=5).with_context(run_id="abc")
        data = error.to_dict()
        assert data["error_type"] == "BinshipError"
        assert data["retry_after"] == 5
        assert data["context"] == {"run_id": "abc"}


class TestStageErrors:
    """Every stage error names its stage."""

    @pytest.mark.parametrize(
        ("cls", "stage", "retryable"),
        [
            (ResolutionError, "resolve", False),
            (CompileError, "compile", False),
            (AssemblyError, "assemble", False),
            (PublishError, "publish", True),
            (DeployError, "deploy", False),
        ],
    )
    def test_stage_and_default_retryability(self, cls, stage, retryable):
        error = cls("failure")
        assert isinstance(error, StageError)
        assert error.stage == stage
        assert error.context.stage == stage
        assert error.retryable is retryable
        assert str(error) == f"[{stage}] failure"
        assert error.to_dict()["stage"] == stage

    def test_retryable_override(self):
        assert ResolutionError("index unreachable", retryable=True).retryable is True
        assert PublishError("unauthorized", retryable=False).retryable is False


class TestCommandError:
    """Test CommandError output helpers."""

    def test_output_and_tail(self):
        stderr = "\n".join(f"line {i}" for i in range(30))
        error = CommandError("cargo failed", argv=["run", "--rm", "img"], exit_code=101, stdout="out", stderr=stderr)
        assert error.output.startswith("out\nline 0")
        assert error.tail(3) == "line 27\nline 28\nline 29"
        assert error.context.command == "run --rm img"
        assert error.context.exit_code == 101

    def test_empty_output(self):
        error = CommandError("timed out", argv=["push"])
        assert error.output == ""
        assert error.tail() == ""


class TestUtilities:
    """Test is_retryable / get_retry_after."""

    def test_is_retryable(self):
        assert is_retryable(PublishError("reset"))
        assert not is_retryable(CompileError("E0425"))
        assert is_retryable(ConnectionError())
        assert is_retryable(TimeoutError())
        assert not is_retryable(ValueError())

    def test_get_retry_after(self):
        assert get_retry_after(PublishError("rate limited", retry_after=30)) == 30
        assert get_retry_after(RuntimeError()) is None

    def test_supporting_errors_never_retryable(self):
        assert not ConfigError("bad").retryable
        assert not PipelineStateError("backwards").retryable
        assert ConfigError("bad").category == ErrorCategory.CONFIG
