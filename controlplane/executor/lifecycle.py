"""
Where: controlplane/executor/lifecycle.py
What: Executor startup/shutdown orchestration.
Why: Keep main.py focused on app assembly; adoption must run before orphan cleanup.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from kubernetes import client

from .config import ExecutorConfig
from .core.naming import NamespaceResolver
from .services.cluster_client import KubeClusterClient, KubeFunctionSource, load_kube_config
from .services.container_manager import ContainerExecutor
from .services.function_watcher import FunctionWatcher

logger = logging.getLogger("executor.main")


@asynccontextmanager
async def manage_lifespan(app: FastAPI, executor_config: ExecutorConfig) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    executor: Optional[ContainerExecutor] = None
    watcher: Optional[FunctionWatcher] = None

    try:
        load_kube_config(executor_config.KUBE_IN_CLUSTER)
        api_client = client.ApiClient()

        namespaces = NamespaceResolver(
            default_namespace=executor_config.DEFAULT_NAMESPACE,
            function_namespace=executor_config.FUNCTION_NAMESPACE,
            additional_namespaces=executor_config.additional_namespaces,
        )
        cluster = KubeClusterClient(api_client, executor_config.KUBE_REQUEST_TIMEOUT)
        functions = KubeFunctionSource(
            namespaces.resource_namespaces, api_client, executor_config.KUBE_REQUEST_TIMEOUT
        )

        executor = ContainerExecutor(cluster, functions, executor_config)
        logger.info(
            "Initializing container executor",
            extra={
                "instance_id": executor.instance_id,
                "namespaces": namespaces.resource_namespaces,
            },
        )

        # Adoption stamps this instance id on existing objects; whatever is
        # still stamped by another instance afterwards is an orphan.
        await executor.adopt_existing_resources()
        await executor.cleanup_old_executor_objects()
        await executor.run()

        watcher = FunctionWatcher(executor, namespaces.resource_namespaces, api_client)
        await watcher.start()

        app.state.config = executor_config
        app.state.executor = executor
        app.state.function_watcher = watcher

        logger.info("Executor initialized.")
        yield
    finally:
        if watcher:
            await watcher.stop()

        if executor:
            await executor.stop()

        logger.info("Executor shut down.")
