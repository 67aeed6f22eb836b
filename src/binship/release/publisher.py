"""Publisher stage.

Pushes the runtime image under its registry reference. Network failures
are retried with backoff; an authentication rejection is final and says
so, pointing at ``binship login``.

Tag mutability::

    latest   pushed every time; the moving tag is re-pointed
    digest   already in the registry -> skipped (same bytes by definition)
    version  already in the registry -> PublishError unless force=True
"""

from __future__ import annotations

from binship.core.errors import CommandError, ErrorCategory, PublishError
from binship.core.logging import get_logger
from binship.core.retry import RetryContext, RetryStrategy
from binship.release.config import PipelineConfig, TagPolicy
from binship.release.log_collector import LogCollector
from binship.release.models import RegistryReference, RuntimeImage
from binship.release.runtime import ContainerRuntime
from binship.release.tagging import TagStrategy

logger = get_logger(__name__)

STAGE = "publish"

AUTH_MARKERS = (
    "unauthorized",
    "denied",
    "authentication required",
    "no basic auth credentials",
    "incorrect username or password",
)


def classify_push_failure(error: CommandError, reference: str) -> PublishError:
    output = error.output.lower()
    if any(marker in output for marker in AUTH_MARKERS):
        return PublishError(
            f"registry rejected authentication for {reference}; run `binship login` and retry:\n"
            f"{error.tail(5)}",
            category=ErrorCategory.AUTH,
            retryable=False,
            cause=error,
        ).with_context(reference=reference)
    return PublishError(
        f"push of {reference} failed:\n{error.tail(8) or error.message}",
        retryable=True,
        cause=error,
    ).with_context(reference=reference)


class Publisher:
    """Pushes runtime images to the registry."""

    def __init__(
        self,
        config: PipelineConfig,
        runtime: ContainerRuntime,
        strategy: TagStrategy,
        retry: RetryStrategy,
        collector: LogCollector | None = None,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.strategy = strategy
        self.retry = retry
        self.collector = collector
        self.attempts = 0

    def publish(self, image: RuntimeImage, force: bool = False) -> RegistryReference:
        reference = image.reference
        ref = str(reference)

        if not self.strategy.mutable and self.runtime.remote_exists(ref):
            if self.strategy.policy == TagPolicy.DIGEST:
                logger.info("publish.already_published", reference=ref)
                return reference
            if not force:
                raise PublishError(
                    f"{ref} already exists in the registry and {self.strategy.policy.value} "
                    "tags are immutable; bump the version or publish with --force",
                    retryable=False,
                ).with_context(reference=ref)
            logger.warning("publish.overwriting_immutable_tag", reference=ref)

        def _on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning("publish.retry", reference=ref, attempt=attempt, delay=round(delay, 2))

        ctx = RetryContext(self.retry, on_retry=_on_retry)
        try:
            digest = ctx.run(self._push, ref)
        finally:
            self.attempts = ctx.attempts

        published = reference.model_copy(update={"digest": digest})
        logger.info("publish.pushed", reference=ref, digest=digest, attempts=ctx.attempts)
        return published

    def _push(self, ref: str) -> str | None:
        try:
            digest = self.runtime.push(ref, timeout=self.config.registry.push_timeout_seconds)
        except CommandError as e:
            if self.collector:
                self.collector.save_output(STAGE, "docker-push", e)
            raise classify_push_failure(e, ref) from e
        if self.collector:
            self.collector.save_text(STAGE, "docker-push.log", f"pushed {ref} {digest or ''}\n")
        return digest


__all__ = ["Publisher", "classify_push_failure"]
