"""Main entry point for the Vault Config Operator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import kopf
from kubernetes import client

from . import health
from . import logging as structured_logging
from .auth import AuthManager
from .config import OperatorConfig
from .controller import Controller
from .reconciler import Reconciler
from .services.vault import VaultClient
from .status import KubernetesStatusSink, get_k8s_client
from .store import ResourceStore
from .tracing import initialize_tracing
from .utils.tokens import ServiceAccountTokenSource
from .workqueue import WorkQueue

# Registers the watch handlers with kopf.
from .handlers import watch  # noqa: F401

logger = logging.getLogger(__name__)


@dataclass
class OperatorRuntime:
    """Long-lived components shared by the watch handlers and workers."""

    config: OperatorConfig
    auth_manager: AuthManager
    store: ResourceStore
    queue: WorkQueue
    controller: Controller


def build_runtime(config: OperatorConfig, api_client: client.ApiClient) -> OperatorRuntime:
    """Wire the operator's components together.

    Args:
        config: Operator configuration
        api_client: Authenticated Kubernetes API client

    Returns:
        Runtime with a controller that has not been started yet
    """
    vault = VaultClient(config.vault_addr, timeout=config.request_timeout, verify=config.vault_verify)
    identity = ServiceAccountTokenSource(
        client.CoreV1Api(api_client),
        audiences=config.sa_token_audiences,
        expiration_seconds=config.sa_token_expiration_seconds,
    )
    auth_manager = AuthManager(vault, identity, renewal_ratio=config.token_renewal_ratio)
    sink = KubernetesStatusSink(client.CustomObjectsApi(api_client))
    store = ResourceStore()
    queue = WorkQueue()
    reconciler = Reconciler(
        vault,
        auth_manager,
        sink,
        retry=config.retry,
        resync_interval=config.resync_interval,
        current_generation=store.generation,
    )
    controller = Controller(
        reconciler,
        store,
        queue,
        workers=config.max_workers,
        resync_interval=config.resync_interval,
        retry=config.retry,
    )
    return OperatorRuntime(config, auth_manager, store, queue, controller)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure the operator and start the reconcile workers."""
    # Set up structured JSON logging
    structured_logging.setup_structured_logging()
    initialize_tracing()

    config = OperatorConfig.from_env()

    settings.posting.level = 0
    settings.networking.request_timeout = config.request_timeout
    settings.execution.max_workers = config.max_workers

    runtime = build_runtime(config, get_k8s_client())
    runtime.controller.start()

    memo.runtime = runtime
    memo.store = runtime.store
    memo.queue = runtime.queue

    # Start metrics HTTP server with health check endpoints
    memo.health_server = health.start_health_server(
        config.metrics_port, ready_check=lambda: runtime.controller.is_running
    )
    logger.info(f"Operator started against {config.vault_addr}")


@kopf.on.cleanup()
def shutdown(memo: kopf.Memo, **_: Any) -> None:
    """Stop workers and tear down the token cache."""
    runtime: OperatorRuntime | None = getattr(memo, "runtime", None)
    if runtime is not None:
        runtime.controller.stop()
        runtime.auth_manager.close()
    server = getattr(memo, "health_server", None)
    if server is not None:
        server.shutdown()
    logger.info("Operator stopped")


def main() -> None:
    """Run the operator."""
    config = OperatorConfig.from_env()
    if config.watch_namespaces:
        kopf.run(namespaces=list(config.watch_namespaces))
    else:
        kopf.run(clusterwide=True)


if __name__ == "__main__":
    main()
