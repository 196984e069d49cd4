"""
IdleObjectReaper - periodic scale-down of idle container functions.

Also holds the startup sweep that removes objects left behind by a previous
executor instance.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from ..core.exceptions import MultiError, is_cluster_not_found
from ..core.naming import EXECUTOR_INSTANCEID_LABEL
from .cluster_client import ClusterClient

if TYPE_CHECKING:
    from .container_manager import ContainerExecutor

logger = logging.getLogger("executor.janitor")


class IdleObjectReaper:
    """
    Runs `ContainerExecutor.do_idle_object_reaper` every `interval` seconds.
    """

    def __init__(self, executor: "ContainerExecutor", interval: float = 5.0):
        self.executor = executor
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the reaper loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Idle object reaper started (interval: {self.interval}s)")

    async def stop(self) -> None:
        """Stop the reaper loop."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Idle object reaper stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
                # Scale-downs run detached so a slow API call never delays the next pass.
                await self.executor.do_idle_object_reaper()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Idle object reaper pass failed: {e}")


def _is_orphan(obj, instance_id: str) -> bool:
    annotations = obj.metadata.annotations or {}
    owner = annotations.get(EXECUTOR_INSTANCEID_LABEL)
    return owner is not None and owner != instance_id


async def _cleanup_kind(
    kind: str,
    namespaces: List[str],
    instance_id: str,
    selector: str,
    list_fn: Callable[[str, str], Awaitable[list]],
    delete_fn: Callable[[str, str], Awaitable[None]],
) -> List[BaseException]:
    errors: List[BaseException] = []
    for namespace in namespaces:
        try:
            objects = await list_fn(namespace, selector)
        except Exception as e:
            errors.append(e)
            continue
        for obj in objects:
            if not _is_orphan(obj, instance_id):
                continue
            name = obj.metadata.name
            logger.info(f"Cleaning up orphaned {kind} {namespace}/{name}")
            try:
                await delete_fn(namespace, name)
            except Exception as e:
                if not is_cluster_not_found(e):
                    errors.append(e)
    return errors


async def cleanup_orphans(
    cluster: ClusterClient,
    namespaces: List[str],
    instance_id: str,
    selector: str,
) -> Optional[BaseException]:
    """
    Delete HPAs, deployments and services matching `selector` whose
    executor instance annotation names another instance.

    Returns the aggregated error, or None.
    """
    errors: List[BaseException] = []
    errors += await _cleanup_kind(
        "HPA", namespaces, instance_id, selector, cluster.list_hpas, cluster.delete_hpa
    )
    errors += await _cleanup_kind(
        "deployment",
        namespaces,
        instance_id,
        selector,
        cluster.list_deployments,
        cluster.delete_deployment,
    )
    errors += await _cleanup_kind(
        "service", namespaces, instance_id, selector, cluster.list_services, cluster.delete_service
    )
    return MultiError.collect(errors)
