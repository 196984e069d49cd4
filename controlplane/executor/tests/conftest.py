import os
import uuid
from typing import Dict, List, Optional, Tuple

import pytest
from kubernetes import client

# Config reads the environment on construction; set before any import of it.
os.environ.setdefault("EXECUTOR_INSTANCE_ID", "test-instance")
os.environ.setdefault("KUBE_IN_CLUSTER", "false")

from controlplane.executor.config import ExecutorConfig  # noqa: E402
from controlplane.executor.core.exceptions import ClusterAPIError  # noqa: E402
from controlplane.executor.models.function import ExecutorType, Function  # noqa: E402
from controlplane.executor.services.container_manager import ContainerExecutor  # noqa: E402

Key = Tuple[str, str]


def _matches(labels: Optional[Dict[str, str]], selector: str) -> bool:
    labels = labels or {}
    for term in filter(None, selector.split(",")):
        k, _, v = term.partition("=")
        if labels.get(k) != v:
            return False
    return True


class FakeCluster:
    """
    In-memory ClusterClient.

    Stores kubernetes model objects per kind and answers like the API server:
    404 for missing objects, 409 for duplicate names, a fresh uid and resource
    version on writes. Deployments report their replicas as available unless
    `deployment_ready` is False.
    """

    def __init__(self):
        self.stores: Dict[str, Dict[Key, object]] = {
            "service": {},
            "deployment": {},
            "hpa": {},
            "secret": {},
            "configmap": {},
        }
        self.calls: List[Tuple[str, str, str, str]] = []
        self.patches: List[Tuple[str, str, dict]] = []
        self.failures: Dict[Tuple[str, str], BaseException] = {}
        self.deployment_ready = True
        self._rv = 0

    # helpers

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def _record(self, op: str, kind: str, namespace: str, name: str) -> None:
        self.calls.append((op, kind, namespace, name))
        err = self.failures.get((op, kind))
        if err is not None:
            raise err

    def _refresh_status(self, obj) -> None:
        available = obj.spec.replicas if self.deployment_ready else 0
        obj.status = client.V1DeploymentStatus(
            replicas=obj.spec.replicas, available_replicas=available
        )

    def _create(self, kind: str, namespace: str, body):
        name = body.metadata.name
        self._record("create", kind, namespace, name)
        store = self.stores[kind]
        if (namespace, name) in store:
            raise ClusterAPIError(f"creating {kind}", name, status_code=409)
        body.metadata.namespace = namespace
        body.metadata.uid = str(uuid.uuid4())
        body.metadata.resource_version = self._next_rv()
        if kind == "deployment":
            self._refresh_status(body)
        store[(namespace, name)] = body
        return body

    def _get(self, kind: str, namespace: str, name: str):
        self._record("get", kind, namespace, name)
        try:
            return self.stores[kind][(namespace, name)]
        except KeyError:
            raise ClusterAPIError(f"getting {kind}", name, status_code=404) from None

    def _update(self, kind: str, namespace: str, body):
        name = body.metadata.name
        self._record("update", kind, namespace, name)
        store = self.stores[kind]
        current = store.get((namespace, name))
        if current is None:
            raise ClusterAPIError(f"updating {kind}", name, status_code=404)
        body.metadata.namespace = namespace
        body.metadata.uid = current.metadata.uid
        body.metadata.resource_version = self._next_rv()
        if kind == "deployment":
            self._refresh_status(body)
        store[(namespace, name)] = body
        return body

    def _list(self, kind: str, namespace: str, selector: str):
        self._record("list", kind, namespace, selector)
        return [
            obj
            for (ns, _), obj in self.stores[kind].items()
            if ns == namespace and _matches(obj.metadata.labels, selector)
        ]

    def _delete(self, kind: str, namespace: str, name: str) -> None:
        self._record("delete", kind, namespace, name)
        if self.stores[kind].pop((namespace, name), None) is None:
            raise ClusterAPIError(f"deleting {kind}", name, status_code=404)

    def put(self, kind: str, obj) -> None:
        """Seed an object directly, bypassing call recording."""
        obj.metadata.resource_version = obj.metadata.resource_version or self._next_rv()
        obj.metadata.uid = obj.metadata.uid or str(uuid.uuid4())
        if kind == "deployment" and obj.status is None:
            self._refresh_status(obj)
        self.stores[kind][(obj.metadata.namespace, obj.metadata.name)] = obj

    def mark_ready(self) -> None:
        self.deployment_ready = True
        for deployment in self.stores["deployment"].values():
            self._refresh_status(deployment)

    def names(self, kind: str) -> List[str]:
        return sorted(name for (_, name) in self.stores[kind])

    def calls_for(self, op: str, kind: str) -> List[Tuple[str, str, str, str]]:
        return [c for c in self.calls if c[0] == op and c[1] == kind]

    # ClusterClient

    async def create_service(self, namespace, body):
        return self._create("service", namespace, body)

    async def get_service(self, namespace, name):
        return self._get("service", namespace, name)

    async def update_service(self, namespace, body):
        return self._update("service", namespace, body)

    async def list_services(self, namespace, label_selector):
        return self._list("service", namespace, label_selector)

    async def delete_service(self, namespace, name):
        self._delete("service", namespace, name)

    async def create_deployment(self, namespace, body):
        return self._create("deployment", namespace, body)

    async def get_deployment(self, namespace, name):
        return self._get("deployment", namespace, name)

    async def update_deployment(self, namespace, body):
        return self._update("deployment", namespace, body)

    async def patch_deployment(self, namespace, name, patch):
        self._record("patch", "deployment", namespace, name)
        deployment = self.stores["deployment"].get((namespace, name))
        if deployment is None:
            raise ClusterAPIError("patching deployment", name, status_code=404)
        self.patches.append((namespace, name, patch))
        replicas = patch.get("spec", {}).get("replicas")
        if replicas is not None:
            deployment.spec.replicas = replicas
            self._refresh_status(deployment)
        deployment.metadata.resource_version = self._next_rv()
        return deployment

    async def list_deployments(self, namespace, label_selector):
        return self._list("deployment", namespace, label_selector)

    async def delete_deployment(self, namespace, name):
        self._delete("deployment", namespace, name)

    async def create_hpa(self, namespace, body):
        return self._create("hpa", namespace, body)

    async def get_hpa(self, namespace, name):
        return self._get("hpa", namespace, name)

    async def update_hpa(self, namespace, body):
        return self._update("hpa", namespace, body)

    async def list_hpas(self, namespace, label_selector):
        return self._list("hpa", namespace, label_selector)

    async def delete_hpa(self, namespace, name):
        self._delete("hpa", namespace, name)

    async def get_secret(self, namespace, name):
        return self._get("secret", namespace, name)

    async def get_config_map(self, namespace, name):
        return self._get("configmap", namespace, name)


class FakeFunctionSource:
    def __init__(self):
        self.functions: Dict[Key, Function] = {}
        self.synced = True
        self.list_failures: Dict[str, BaseException] = {}

    def put(self, fn: Function) -> None:
        self.functions[(fn.metadata.namespace, fn.metadata.name)] = fn

    def remove(self, fn: Function) -> None:
        self.functions.pop((fn.metadata.namespace, fn.metadata.name), None)

    async def wait_for_sync(self) -> bool:
        return self.synced

    async def get_function(self, namespace, name):
        try:
            return self.functions[(namespace, name)]
        except KeyError:
            raise ClusterAPIError("getting function", f"{namespace}/{name}", status_code=404) from None

    async def list_functions(self, namespace):
        err = self.list_failures.get(namespace)
        if err is not None:
            raise err
        return [fn for (ns, _), fn in self.functions.items() if ns == namespace]


@pytest.fixture
def make_function():
    """Factory for Function objects in CRD dict form."""

    def _make(
        name: str = "hello",
        namespace: str = "default",
        uid: Optional[str] = None,
        resource_version: str = "1",
        executor_type: ExecutorType = ExecutorType.CONTAINER,
        min_scale: int = 0,
        max_scale: int = 3,
        target_cpu: int = 0,
        idle_timeout: Optional[int] = None,
        image: str = "registry.local/hello:1",
        secrets: Optional[List[str]] = None,
        specialization_timeout: int = 2,
        pod_spec: Optional[dict] = None,
    ) -> Function:
        spec = {
            "image": image,
            "secrets": [{"name": s, "namespace": namespace} for s in secrets or []],
            "InvokeStrategy": {
                "StrategyType": "execution",
                "ExecutionStrategy": {
                    "ExecutorType": executor_type.value,
                    "MinScale": min_scale,
                    "MaxScale": max_scale,
                    "TargetCPUPercent": target_cpu,
                    "SpecializationTimeout": specialization_timeout,
                },
            },
        }
        if idle_timeout is not None:
            spec["idletimeout"] = idle_timeout
        if pod_spec is not None:
            spec["podspec"] = pod_spec
        return Function.from_dict(
            {
                "metadata": {
                    "name": name,
                    "namespace": namespace,
                    "uid": uid or f"{name}-5a69-7887-96a5-b4c3d2e1f0a1",
                    "resourceVersion": resource_version,
                    "generation": 1,
                },
                "spec": spec,
            }
        )

    return _make


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def functions():
    return FakeFunctionSource()


@pytest.fixture
def executor_config(tmp_path):
    return ExecutorConfig(
        _env_file=None,
        EXECUTOR_INSTANCE_ID="instance-a",
        DUMP_DIR=str(tmp_path),
        DEFAULT_IDLE_POD_REAP_TIME=60.0,
    )


@pytest.fixture
def executor(cluster, functions, executor_config):
    return ContainerExecutor(cluster, functions, executor_config, readiness_poll_interval=0.01)
