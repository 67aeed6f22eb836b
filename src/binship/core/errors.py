"""
Structured error types for binship.

Every failure the pipeline can report is a typed ``BinshipError`` carrying
rich metadata for retry decisions, stage attribution, and user-facing
reporting. Nothing is swallowed: a stage raises, the runner records the
error against the failed stage, and the run stops.

Manifesto:
    - **Typed Error Hierarchy:** One error type per pipeline stage
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Stage Attribution:** Every stage error names the stage that failed
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       BinshipError                               │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  StageError (stage)                    ConfigError   (CONFIG)    │
        │     │                                  CommandError  (RUNTIME)   │
        │  ResolutionError   resolve             RuntimeNotFoundError      │
        │  CompileError      compile  (never)    PipelineStateError        │
        │  AssemblyError     assemble (never)                              │
        │  PublishError      publish  (retryable)                          │
        │  DeployError       deploy                                        │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = CompileError("cargo build failed: linker `cc` not found")
    >>> error.retryable
    False
    >>> str(error)
    '[compile] cargo build failed: linker `cc` not found'

    >>> error = PublishError("connection reset by peer")
    >>> error.retryable
    True

Guardrails:
    ❌ DON'T: Raise a bare Exception from a stage - the runner cannot attribute it
    ✅ DO: Raise the stage's own error type with ``cause=`` set

    ❌ DON'T: Mark CompileError or AssemblyError retryable
    ✅ DO: Treat a retry there as "the input changed", i.e. a new run

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    binship, pipeline-stages
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"           # Registry, crate index, DNS
    STORAGE = "STORAGE"           # Workspace, cache, file system

    # Pipeline stage errors
    DEPENDENCY = "DEPENDENCY"     # Unsatisfiable or unreachable dependencies
    BUILD = "BUILD"               # Compilation and image assembly
    AUTH = "AUTH"                 # Registry authentication
    DEPLOYMENT = "DEPLOYMENT"     # Instance creation on the host

    # Configuration errors (never retryable)
    CONFIG = "CONFIG"             # Missing config, invalid settings

    # Runtime / internal
    RUNTIME = "RUNTIME"           # Container runtime CLI failures
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        stage: Pipeline stage where the error occurred
        run_id: Pipeline run identifier
        reference: Registry reference involved (``name:tag``)
        command: Command line that failed, if any
        exit_code: Exit status of the failed command
        metadata: Additional key-value pairs
    """

    stage: str | None = None
    run_id: str | None = None
    reference: str | None = None
    command: str | None = None
    exit_code: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["stage", "run_id", "reference", "command", "exit_code"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class BinshipError(Exception):
    """
    Base exception for all binship errors.

    All instances carry a category, a retryable flag, an optional
    ``retry_after`` hint, an ``ErrorContext`` and an optional chained cause.
    Subclasses set ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = BinshipError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = BinshipError("push failed").with_context(reference="svc:latest")
        >>> error.context.reference
        'svc:latest'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BinshipError:
        """
        Add context to this error (fluent API).

        Usage:
            raise DeployError("name in use").with_context(
                reference="svc:latest",
                instance="svc",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.context:
            context_dict = self.context.to_dict()
            if context_dict:
                result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STAGE ERRORS
# =============================================================================


class StageError(BinshipError):
    """
    Failure of one pipeline stage.

    ``stage`` is a class attribute on each subclass and is mirrored into the
    error context so that any rendering of the error names the stage.
    """

    stage: str = "pipeline"

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        if self.context.stage is None:
            self.context.stage = self.stage

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["stage"] = self.stage
        return result


class ResolutionError(StageError):
    """Dependency graph is unsatisfiable or a dependency is unreachable.

    Retryable only when the failure came from the network; an unsatisfiable
    constraint is raised with ``retryable=False``.
    """

    stage = "resolve"
    default_category = ErrorCategory.DEPENDENCY
    default_retryable = False


class CompileError(StageError):
    """Source error, missing system library, or toolchain mismatch.

    Compilation is deterministic: retrying an unchanged input is pointless.
    """

    stage = "compile"
    default_category = ErrorCategory.BUILD
    default_retryable = False


class AssemblyError(StageError):
    """Compiled artifact missing, base image unavailable, or minimality violated."""

    stage = "assemble"
    default_category = ErrorCategory.BUILD
    default_retryable = False


class PublishError(StageError):
    """Registry push failed (authentication or network)."""

    stage = "publish"
    default_category = ErrorCategory.NETWORK
    default_retryable = True


class DeployError(StageError):
    """Instance name collision, image not retrievable, or host port conflict."""

    stage = "deploy"
    default_category = ErrorCategory.DEPLOYMENT
    default_retryable = False


# =============================================================================
# SUPPORTING ERRORS
# =============================================================================


class ConfigError(BinshipError):
    """Invalid or missing pipeline configuration. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class RuntimeNotFoundError(BinshipError):
    """The container runtime CLI is not installed or not on PATH."""

    default_category = ErrorCategory.RUNTIME
    default_retryable = False


class CommandError(BinshipError):
    """An external command exited non-zero or timed out.

    Stages catch this and re-raise their own ``StageError`` with the
    command error chained as the cause.
    """

    default_category = ErrorCategory.RUNTIME
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        argv: list[str] | None = None,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.argv = list(argv or [])
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        if self.argv:
            self.context.command = " ".join(self.argv)
        self.context.exit_code = exit_code

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def tail(self, lines: int = 20) -> str:
        """Last ``lines`` lines of output, for error messages."""
        return "\n".join(self.output.strip().splitlines()[-lines:])


class PipelineStateError(BinshipError):
    """Illegal pipeline state transition (e.g. backwards, or out of a terminal state)."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, BinshipError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def get_retry_after(error: Exception) -> int | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, BinshipError):
        return error.retry_after
    return None


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "BinshipError",
    # Stages
    "StageError",
    "ResolutionError",
    "CompileError",
    "AssemblyError",
    "PublishError",
    "DeployError",
    # Supporting
    "ConfigError",
    "RuntimeNotFoundError",
    "CommandError",
    "PipelineStateError",
    # Utilities
    "is_retryable",
    "get_retry_after",
]
