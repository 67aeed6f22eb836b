"""
Core primitives shared by every binship stage.

    errors.py     Typed error hierarchy (one error per pipeline stage)
    logging.py    structlog configuration and scoped context
    retry.py      Backoff strategies for network-bound stages
"""

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
    RuntimeNotFoundError,
    StageError,
)
from binship.core.logging import LogContext, configure_logging, get_logger
from binship.core.retry import ExponentialBackoff, RetryContext

__all__ = [
    "AssemblyError",
    "BinshipError",
    "CommandError",
    "CompileError",
    "ConfigError",
    "DeployError",
    "ErrorCategory",
    "ErrorContext",
    "ExponentialBackoff",
    "LogContext",
    "PipelineStateError",
    "PublishError",
    "ResolutionError",
    "RetryContext",
    "RuntimeNotFoundError",
    "StageError",
    "configure_logging",
    "get_logger",
]
