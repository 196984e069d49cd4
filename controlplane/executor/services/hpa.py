"""
HpaOperations - create/get/update/delete for function autoscalers.
"""

import logging
from typing import Dict, Optional

from kubernetes import client

from ..core.exceptions import is_already_exists
from ..core.naming import EXECUTOR_INSTANCEID_LABEL
from ..models.function import ExecutionStrategy
from .cluster_client import ClusterClient

logger = logging.getLogger("executor.hpa")


def hpa_replica_bounds(strategy: ExecutionStrategy) -> tuple:
    """(min, max) replicas for an execution strategy; min is never below 1."""
    min_replicas = strategy.min_scale if strategy.min_scale > 0 else 1
    max_replicas = max(strategy.max_scale, min_replicas)
    return min_replicas, max_replicas


def build_hpa_metrics(strategy: ExecutionStrategy) -> Optional[list]:
    if strategy.metrics:
        return list(strategy.metrics)
    if strategy.target_cpu_percent > 0:
        return [
            client.V2MetricSpec(
                type="Resource",
                resource=client.V2ResourceMetricSource(
                    name="cpu",
                    target=client.V2MetricTarget(
                        type="Utilization", average_utilization=strategy.target_cpu_percent
                    ),
                ),
            )
        ]
    return None


class HpaOperations:
    def __init__(self, cluster: ClusterClient, instance_id: str):
        self.cluster = cluster
        self.instance_id = instance_id

    def build_hpa(
        self,
        name: str,
        namespace: str,
        strategy: ExecutionStrategy,
        deployment: client.V1Deployment,
        labels: Dict[str, str],
        annotations: Dict[str, str],
    ) -> client.V2HorizontalPodAutoscaler:
        min_replicas, max_replicas = hpa_replica_bounds(strategy)
        return client.V2HorizontalPodAutoscaler(
            api_version="autoscaling/v2",
            kind="HorizontalPodAutoscaler",
            metadata=client.V1ObjectMeta(
                name=name, namespace=namespace, labels=labels, annotations=annotations
            ),
            spec=client.V2HorizontalPodAutoscalerSpec(
                scale_target_ref=client.V2CrossVersionObjectReference(
                    api_version="apps/v1", kind="Deployment", name=deployment.metadata.name
                ),
                min_replicas=min_replicas,
                max_replicas=max_replicas,
                metrics=build_hpa_metrics(strategy),
                behavior=strategy.behavior,
            ),
        )

    async def create_or_get_hpa(
        self,
        name: str,
        namespace: str,
        strategy: ExecutionStrategy,
        deployment: client.V1Deployment,
        labels: Dict[str, str],
        annotations: Dict[str, str],
    ) -> client.V2HorizontalPodAutoscaler:
        body = self.build_hpa(name, namespace, strategy, deployment, labels, annotations)
        try:
            return await self.cluster.create_hpa(namespace, body)
        except Exception as e:
            if not is_already_exists(e):
                raise

        existing = await self.cluster.get_hpa(namespace, name)
        existing_annotations = existing.metadata.annotations or {}
        if existing_annotations.get(EXECUTOR_INSTANCEID_LABEL) != self.instance_id:
            # Adopt: stamp our instance id so orphan cleanup leaves it alone.
            existing.metadata.annotations = {**existing_annotations, **annotations}
            existing.metadata.labels = labels
            existing.spec = body.spec
            logger.info(f"Adopting HPA {namespace}/{name}")
            return await self.cluster.update_hpa(namespace, existing)
        return existing

    async def get_hpa(self, namespace: str, name: str) -> client.V2HorizontalPodAutoscaler:
        return await self.cluster.get_hpa(namespace, name)

    async def update_hpa(
        self, hpa: client.V2HorizontalPodAutoscaler
    ) -> client.V2HorizontalPodAutoscaler:
        return await self.cluster.update_hpa(hpa.metadata.namespace, hpa)

    async def delete_hpa(self, namespace: str, name: str) -> None:
        await self.cluster.delete_hpa(namespace, name)
