"""Deployer stage.

Retrieves a published image and runs it as one named, detached
container. The instance name is the host-wide uniqueness key and is
checked when the deployer runs, not reserved ahead of time: two
concurrent deploys under one name end with the loser failing on the
name conflict.

An existing instance is never stopped or replaced implicitly. Redeploying
means ``teardown()`` first.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from binship.core.errors import CommandError, DeployError, ErrorCategory
from binship.core.logging import get_logger
from binship.core.retry import RetryContext, RetryStrategy
from binship.release.assembler import ARTIFACT_LABEL, BASE_LABEL
from binship.release.config import PipelineConfig
from binship.release.log_collector import LogCollector
from binship.release.models import RegistryReference, RunningInstance, RuntimeImage
from binship.release.runtime import ContainerRuntime

logger = get_logger(__name__)

STAGE = "deploy"

MISSING_IMAGE_MARKERS = ("not found", "manifest unknown", "pull access denied", "does not exist")
PORT_MARKERS = ("port is already allocated", "address already in use")
NAME_MARKERS = ("is already in use by container",)


def classify_pull_failure(error: CommandError, reference: str) -> DeployError:
    output = error.output.lower()
    if any(marker in output for marker in MISSING_IMAGE_MARKERS):
        return DeployError(
            f"image {reference} cannot be retrieved: not found in the registry",
            retryable=False,
            cause=error,
        ).with_context(reference=reference)
    return DeployError(
        f"retrieving {reference} failed:\n{error.tail(8) or error.message}",
        category=ErrorCategory.NETWORK,
        retryable=True,
        cause=error,
    ).with_context(reference=reference)


def classify_run_failure(error: CommandError, name: str, host_port: int) -> DeployError:
    output = error.output.lower()
    if any(marker in output for marker in PORT_MARKERS):
        message = f"host port {host_port} is already in use"
    elif "conflict" in output and any(marker in output for marker in NAME_MARKERS):
        message = f"instance name {name!r} is already in use"
    else:
        message = f"starting instance {name!r} failed:\n{error.tail(8) or error.message}"
    return DeployError(message, cause=error).with_context(instance=name, host_port=host_port)


class Deployer:
    """Instantiates published images on the local container host."""

    def __init__(
        self,
        config: PipelineConfig,
        runtime: ContainerRuntime,
        retry: RetryStrategy,
        collector: LogCollector | None = None,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.retry = retry
        self.collector = collector
        self.attempts = 0

    def retrieve(self, reference: RegistryReference | str) -> RuntimeImage:
        """Pull ``reference`` from the registry, retrying network failures."""
        ref = RegistryReference.parse(reference) if isinstance(reference, str) else reference
        target = str(ref)

        def _on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning("deploy.pull_retry", reference=target, attempt=attempt, delay=round(delay, 2))

        ctx = RetryContext(self.retry, on_retry=_on_retry)
        try:
            ctx.run(self._pull, target)
        finally:
            self.attempts = ctx.attempts

        image_id = self.runtime.image_id(target)
        if image_id is None:
            raise DeployError(f"image {target} is not present after pull").with_context(reference=target)

        labels = self.runtime.image_labels(target)
        logger.info("deploy.retrieved", reference=target, image_id=image_id[:19])
        return RuntimeImage(
            repository=ref.repository,
            tag=ref.tag,
            image_id=image_id,
            base_image=labels.get(BASE_LABEL, "unknown"),
            exposed_port=self.config.image.port,
            artifact_sha256=labels.get(ARTIFACT_LABEL),
        )

    def deploy(self, reference: RegistryReference | str, image: RuntimeImage | None = None) -> RunningInstance:
        """Retrieve (unless ``image`` is given) and start the named instance."""
        deploy_cfg = self.config.deploy
        name = deploy_cfg.instance_name
        ref = RegistryReference.parse(reference) if isinstance(reference, str) else reference
        target = str(ref)

        self.preflight()
        if image is None:
            image = self.retrieve(ref)

        try:
            container_id = self.runtime.run_detached(
                target,
                name,
                ports={deploy_cfg.host_port: self.config.image.port},
                env_file=deploy_cfg.env_file,
                labels={
                    "managed": "true",
                    "run_id": self.config.run_id,
                    "reference": target,
                },
            )
        except CommandError as e:
            if self.collector:
                self.collector.save_output(STAGE, "docker-run", e)
            self._discard_unstarted(name)
            raise classify_run_failure(e, name, deploy_cfg.host_port) from e

        instance = RunningInstance(
            name=name,
            container_id=container_id,
            reference=target,
            host_port=deploy_cfg.host_port,
            container_port=self.config.image.port,
            env_file=deploy_cfg.env_file,
            image_id=image.image_id,
            artifact_sha256=image.artifact_sha256,
            status=self.runtime.container_state(name),
        )
        logger.info(
            "deploy.running",
            instance=name,
            container_id=container_id,
            port=f"{deploy_cfg.host_port}:{self.config.image.port}",
        )
        return instance

    def preflight(self) -> None:
        """Checks that must pass before anything is created on the host."""
        deploy_cfg = self.config.deploy
        name = deploy_cfg.instance_name

        env_file = Path(deploy_cfg.env_file)
        if not env_file.is_file():
            raise DeployError(f"environment file {env_file} does not exist").with_context(instance=name)

        existing = self.runtime.find_container(name)
        if existing is not None:
            state = existing.get("State", "unknown")
            raise DeployError(
                f"instance name {name!r} is already in use (container state: {state}); "
                f"run `binship stop` to tear it down first"
            ).with_context(instance=name)

        holders = self.runtime.containers_publishing(deploy_cfg.host_port)
        if holders:
            raise DeployError(
                f"host port {deploy_cfg.host_port} is already in use by {', '.join(holders)}"
            ).with_context(instance=name, host_port=deploy_cfg.host_port)

    def teardown(self, name: str | None = None) -> bool:
        """Stop and remove the named instance. Returns False if none existed."""
        name = name or self.config.deploy.instance_name
        existing = self.runtime.find_container(name)
        if existing is None:
            logger.info("deploy.teardown_noop", instance=name)
            return False
        try:
            if existing.get("State") == "running":
                self.runtime.stop(name)
            self.runtime.remove(name)
        except CommandError as e:
            raise DeployError(f"tearing down {name!r} failed: {e.tail(5) or e.message}", cause=e) from e
        return True

    def status(self, name: str | None = None) -> dict[str, Any]:
        name = name or self.config.deploy.instance_name
        info = self.runtime.find_container(name)
        if info is None:
            return {"name": name, "state": "not_found"}
        return {
            "name": name,
            "state": info.get("State", self.runtime.container_state(name)),
            "status": info.get("Status", ""),
            "image": info.get("Image", ""),
            "ports": info.get("Ports", ""),
            "container_id": info.get("ID", ""),
        }

    def _discard_unstarted(self, name: str) -> None:
        """Remove a container this run created but docker could not start.

        ``docker run`` creates the container before binding ports, so a port
        conflict leaves it behind in the ``created`` state. Containers from
        other runs are left alone.
        """
        info = self.runtime.find_container(name)
        if info is None or info.get("State") == "running":
            return
        labels = self.runtime.container_labels(name)
        if labels.get(f"{self.runtime.label_prefix}.run_id") != self.config.run_id:
            return
        try:
            self.runtime.remove(name)
        except CommandError as e:
            logger.warning("deploy.cleanup_failed", instance=name, error=e.message)
            return
        logger.info("deploy.discarded_unstarted", instance=name)

    def _pull(self, target: str) -> None:
        try:
            self.runtime.pull(
                target,
                platform=self.config.image.platform,
                timeout=self.config.deploy.pull_timeout_seconds,
            )
        except CommandError as e:
            if self.collector:
                self.collector.save_output(STAGE, "docker-pull", e)
            raise classify_pull_failure(e, target) from e


__all__ = ["Deployer", "classify_pull_failure", "classify_run_failure"]
