"""
Cluster API access for the executor.

`ClusterClient` / `FunctionSource` are the contracts the executor consumes.
`KubeClusterClient` / `KubeFunctionSource` implement them on top of the
synchronous kubernetes client, running each call in the threadpool so the
event loop is never blocked.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from ..core.exceptions import ClusterAPIError
from ..models.function import Function

logger = logging.getLogger("executor.cluster_client")

STRATEGIC_MERGE_PATCH = "application/strategic-merge-patch+json"

FUNCTION_GROUP = "fission.io"
FUNCTION_VERSION = "v1"
FUNCTION_PLURAL = "functions"


class ClusterClient(Protocol):
    async def create_service(self, namespace: str, body: client.V1Service) -> client.V1Service: ...

    async def get_service(self, namespace: str, name: str) -> client.V1Service: ...

    async def update_service(self, namespace: str, body: client.V1Service) -> client.V1Service: ...

    async def list_services(self, namespace: str, label_selector: str) -> List[client.V1Service]: ...

    async def delete_service(self, namespace: str, name: str) -> None: ...

    async def create_deployment(
        self, namespace: str, body: client.V1Deployment
    ) -> client.V1Deployment: ...

    async def get_deployment(self, namespace: str, name: str) -> client.V1Deployment: ...

    async def update_deployment(
        self, namespace: str, body: client.V1Deployment
    ) -> client.V1Deployment: ...

    async def patch_deployment(
        self, namespace: str, name: str, patch: Dict[str, Any]
    ) -> client.V1Deployment: ...

    async def list_deployments(
        self, namespace: str, label_selector: str
    ) -> List[client.V1Deployment]: ...

    async def delete_deployment(self, namespace: str, name: str) -> None: ...

    async def create_hpa(
        self, namespace: str, body: client.V2HorizontalPodAutoscaler
    ) -> client.V2HorizontalPodAutoscaler: ...

    async def get_hpa(self, namespace: str, name: str) -> client.V2HorizontalPodAutoscaler: ...

    async def update_hpa(
        self, namespace: str, body: client.V2HorizontalPodAutoscaler
    ) -> client.V2HorizontalPodAutoscaler: ...

    async def list_hpas(
        self, namespace: str, label_selector: str
    ) -> List[client.V2HorizontalPodAutoscaler]: ...

    async def delete_hpa(self, namespace: str, name: str) -> None: ...

    async def get_secret(self, namespace: str, name: str) -> client.V1Secret: ...

    async def get_config_map(self, namespace: str, name: str) -> client.V1ConfigMap: ...


class FunctionSource(Protocol):
    async def wait_for_sync(self) -> bool: ...

    async def get_function(self, namespace: str, name: str) -> Function: ...

    async def list_functions(self, namespace: str) -> List[Function]: ...


def load_kube_config(in_cluster: bool = True) -> None:
    """
    Prefer in-cluster configuration, falling back to the local kubeconfig.
    """
    if in_cluster:
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration.")
            return
        except ConfigException:
            logger.info("In-cluster configuration unavailable, trying kubeconfig.")
    config.load_kube_config()
    logger.info("Loaded local kubeconfig configuration.")


class _ThreadpoolCaller:
    def __init__(self, request_timeout: Optional[float]):
        self.request_timeout = request_timeout

    async def _call(self, operation: str, name: str, fn: Callable[..., Any], *args, **kwargs):
        if self.request_timeout:
            kwargs.setdefault("_request_timeout", self.request_timeout)
        try:
            return await run_in_threadpool(fn, *args, **kwargs)
        except ApiException as e:
            raise ClusterAPIError(operation, name, e) from e


class KubeClusterClient(_ThreadpoolCaller):
    """ClusterClient backed by the official kubernetes client."""

    def __init__(
        self,
        api_client: Optional[client.ApiClient] = None,
        request_timeout: Optional[float] = 30.0,
    ):
        super().__init__(request_timeout)
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)
        self.autoscaling = client.AutoscalingV2Api(api_client)

    # Services

    async def create_service(self, namespace, body):
        return await self._call(
            "creating service", body.metadata.name,
            self.core.create_namespaced_service, namespace, body,
        )

    async def get_service(self, namespace, name):
        return await self._call(
            "getting service", name, self.core.read_namespaced_service, name, namespace
        )

    async def update_service(self, namespace, body):
        return await self._call(
            "updating service", body.metadata.name,
            self.core.replace_namespaced_service, body.metadata.name, namespace, body,
        )

    async def list_services(self, namespace, label_selector):
        result = await self._call(
            "listing services", namespace,
            self.core.list_namespaced_service, namespace, label_selector=label_selector,
        )
        return result.items

    async def delete_service(self, namespace, name):
        await self._call(
            "deleting service", name,
            self.core.delete_namespaced_service, name, namespace,
            body=client.V1DeleteOptions(propagation_policy="Foreground"),
        )

    # Deployments

    async def create_deployment(self, namespace, body):
        return await self._call(
            "creating deployment", body.metadata.name,
            self.apps.create_namespaced_deployment, namespace, body,
        )

    async def get_deployment(self, namespace, name):
        return await self._call(
            "getting deployment", name, self.apps.read_namespaced_deployment, name, namespace
        )

    async def update_deployment(self, namespace, body):
        return await self._call(
            "updating deployment", body.metadata.name,
            self.apps.replace_namespaced_deployment, body.metadata.name, namespace, body,
        )

    async def patch_deployment(self, namespace, name, patch):
        return await self._call(
            "patching deployment", name,
            self.apps.patch_namespaced_deployment, name, namespace, patch,
            _content_type=STRATEGIC_MERGE_PATCH,
        )

    async def list_deployments(self, namespace, label_selector):
        result = await self._call(
            "listing deployments", namespace,
            self.apps.list_namespaced_deployment, namespace, label_selector=label_selector,
        )
        return result.items

    async def delete_deployment(self, namespace, name):
        await self._call(
            "deleting deployment", name,
            self.apps.delete_namespaced_deployment, name, namespace,
            body=client.V1DeleteOptions(propagation_policy="Foreground"),
        )

    # HorizontalPodAutoscalers

    async def create_hpa(self, namespace, body):
        return await self._call(
            "creating HPA", body.metadata.name,
            self.autoscaling.create_namespaced_horizontal_pod_autoscaler, namespace, body,
        )

    async def get_hpa(self, namespace, name):
        return await self._call(
            "getting HPA", name,
            self.autoscaling.read_namespaced_horizontal_pod_autoscaler, name, namespace,
        )

    async def update_hpa(self, namespace, body):
        return await self._call(
            "updating HPA", body.metadata.name,
            self.autoscaling.replace_namespaced_horizontal_pod_autoscaler,
            body.metadata.name, namespace, body,
        )

    async def list_hpas(self, namespace, label_selector):
        result = await self._call(
            "listing HPAs", namespace,
            self.autoscaling.list_namespaced_horizontal_pod_autoscaler,
            namespace, label_selector=label_selector,
        )
        return result.items

    async def delete_hpa(self, namespace, name):
        await self._call(
            "deleting HPA", name,
            self.autoscaling.delete_namespaced_horizontal_pod_autoscaler, name, namespace,
        )

    # Referenced config

    async def get_secret(self, namespace, name):
        return await self._call(
            "getting secret", name, self.core.read_namespaced_secret, name, namespace
        )

    async def get_config_map(self, namespace, name):
        return await self._call(
            "getting configmap", name, self.core.read_namespaced_config_map, name, namespace
        )


class KubeFunctionSource(_ThreadpoolCaller):
    """FunctionSource reading Function custom objects."""

    def __init__(
        self,
        namespaces: List[str],
        api_client: Optional[client.ApiClient] = None,
        request_timeout: Optional[float] = 30.0,
    ):
        super().__init__(request_timeout)
        self.namespaces = namespaces
        self.custom = client.CustomObjectsApi(api_client)

    async def wait_for_sync(self) -> bool:
        """Check every watched namespace can be listed once."""
        for namespace in self.namespaces:
            try:
                await self.list_functions(namespace)
            except ClusterAPIError as e:
                logger.error(f"Function list failed for namespace {namespace}: {e}")
                return False
        return True

    async def get_function(self, namespace: str, name: str) -> Function:
        obj = await self._call(
            "getting function", f"{namespace}/{name}",
            self.custom.get_namespaced_custom_object,
            FUNCTION_GROUP, FUNCTION_VERSION, namespace, FUNCTION_PLURAL, name,
        )
        return Function.from_dict(obj)

    async def list_functions(self, namespace: str) -> List[Function]:
        result = await self._call(
            "listing functions", namespace,
            self.custom.list_namespaced_custom_object,
            FUNCTION_GROUP, FUNCTION_VERSION, namespace, FUNCTION_PLURAL,
        )
        return [Function.from_dict(item) for item in result.get("items", [])]
