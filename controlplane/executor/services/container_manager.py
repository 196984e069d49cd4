"""
ContainerExecutor - reconciliation controller for container functions.

Owns the cluster objects (Service, Deployment, HPA) backing each function of
the container executor type: create-or-get on first lookup, diff-based update,
delete, adoption on restart, orphan cleanup and idle scale-down.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set

from kubernetes import client

from controlplane.common.core.throttler import Throttler

from ..config import ExecutorConfig
from ..core.exceptions import (
    ClusterAPIError,
    ExecutorError,
    InvalidFunctionError,
    MultiError,
    NotFoundError,
    ReadinessTimeoutError,
    is_cluster_not_found,
)
from ..core.function_diff import diff_functions
from ..core.naming import (
    EXECUTOR_INSTANCEID_LABEL,
    EXECUTOR_TYPE,
    FUNCTION_RESOURCE_VERSION,
    RESOURCE_VERSION_COUNT,
    NamespaceResolver,
    get_deploy_annotations,
    get_deploy_labels,
    get_obj_name,
    label_selector,
)
from ..models.function import (
    ConfigMapReference,
    ExecutorType,
    Function,
    FunctionMeta,
    SecretReference,
)
from ..models.funcsvc import FuncSvc, ObjectReference
from .cluster_client import ClusterClient, FunctionSource
from .function_service_cache import FunctionServiceCache
from .hpa import HpaOperations, build_hpa_metrics
from .janitor import IdleObjectReaper, cleanup_orphans

logger = logging.getLogger("executor.container")


async def referenced_resources_rv_sum(
    cluster: ClusterClient,
    namespace: str,
    secrets: List[SecretReference],
    config_maps: List[ConfigMapReference],
) -> int:
    """Sum of resource versions of the Secrets and ConfigMaps a function references."""
    rv_count = 0
    for ref in secrets:
        try:
            obj = await cluster.get_secret(namespace, ref.name)
        except ClusterAPIError as e:
            if e.is_not_found():
                continue
            raise
        rv_count += int(obj.metadata.resource_version or 0)
    for ref in config_maps:
        try:
            obj = await cluster.get_config_map(namespace, ref.name)
        except ClusterAPIError as e:
            if e.is_not_found():
                continue
            raise
        rv_count += int(obj.metadata.resource_version or 0)
    return rv_count


def merge_pod_spec(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge a user pod spec into the generated one.

    Containers are merged by name (user fields win, env/ports appended);
    any other top-level field of the user spec replaces ours.
    """
    if not override:
        return base
    merged = dict(base)
    for key, value in override.items():
        if key != "containers":
            merged[key] = value
    containers = [dict(c) for c in base.get("containers", [])]
    by_name = {c["name"]: c for c in containers}
    for user_container in override.get("containers", []) or []:
        target = by_name.get(user_container.get("name"))
        if target is None:
            containers.append(dict(user_container))
            continue
        for key, value in user_container.items():
            if key in ("env", "ports", "volumeMounts") and isinstance(value, list):
                target[key] = list(target.get(key, [])) + list(value)
            else:
                target[key] = value
    merged["containers"] = containers
    return merged


def _object_ref(kind: str, obj: Any) -> ObjectReference:
    meta = obj.metadata
    return ObjectReference(
        kind=kind,
        name=meta.name,
        namespace=meta.namespace,
        api_version=getattr(obj, "api_version", "") or "",
        resource_version=meta.resource_version or "",
        uid=meta.uid or "",
    )


class ContainerExecutor:
    """
    Container executor type.

    Every function of type `container` gets one Service, one Deployment and
    one HPA, named deterministically from the function identity.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        functions: FunctionSource,
        config: ExecutorConfig,
        fs_cache: Optional[FunctionServiceCache] = None,
        throttler: Optional[Throttler] = None,
        readiness_poll_interval: float = 1.0,
    ):
        self.cluster = cluster
        self.functions = functions
        self.config = config
        self.instance_id = config.EXECUTOR_INSTANCE_ID
        self.ns_resolver = NamespaceResolver(
            default_namespace=config.DEFAULT_NAMESPACE,
            function_namespace=config.FUNCTION_NAMESPACE,
            additional_namespaces=config.additional_namespaces,
        )
        self.fs_cache = fs_cache or FunctionServiceCache(dump_dir=config.DUMP_DIR)
        self.throttler = throttler or Throttler(expiry=config.THROTTLER_EXPIRY)
        self.hpaops = HpaOperations(cluster, self.instance_id)
        self.default_idle_pod_reap_time = config.DEFAULT_IDLE_POD_REAP_TIME
        self.readiness_poll_interval = readiness_poll_interval
        self.reaper = IdleObjectReaper(self, interval=config.OBJECT_REAPER_INTERVAL)
        # Strong references to fire-and-forget tasks.
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Wait for the function source, then start the idle object reaper."""
        if not await self.functions.wait_for_sync():
            raise ExecutorError("failed to wait for caches to sync")
        await self.fs_cache.start()
        await self.reaper.start()

    async def stop(self) -> None:
        await self.reaper.stop()
        await self.fs_cache.stop()

    def get_type_name(self) -> ExecutorType:
        return ExecutorType.CONTAINER

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ------------------------------------------------------------------
    # Executor type interface
    # ------------------------------------------------------------------

    async def get_func_svc(self, fn: Function) -> Optional[FuncSvc]:
        """Return the function service, creating the backing objects if needed."""
        return await self.create_function(fn)

    def get_func_svc_from_cache(self, fn: Function) -> FuncSvc:
        return self.fs_cache.get_by_function_uid(fn.metadata.uid)

    def delete_func_svc_from_cache(self, fsvc: FuncSvc) -> None:
        self.fs_cache.delete_entry(fsvc)
        # The next lookup must create again instead of reading the cache.
        self.throttler.forget(fsvc.function.uid)

    async def tap_service(self, svc_host: str) -> None:
        await self.fs_cache.touch_by_address(svc_host)

    def get_total_available(self, fn: Function) -> int:
        # Not implemented for container functions.
        return 0

    def un_tap_service(self, fn_meta: FunctionMeta, svc_host: str) -> None:
        # Not implemented for container functions.
        pass

    def mark_specialization_failure(self, fn_meta: FunctionMeta) -> None:
        # Not implemented for container functions.
        pass

    async def is_valid(self, fsvc: FuncSvc) -> bool:
        """
        Check every object behind a cached entry still exists and the
        deployment has at least one available replica.
        """
        extra = {"function": fsvc.function.name}
        if not fsvc.address:
            logger.error("address not found in function service", extra=extra)
            return False
        if not fsvc.kubernetes_objects:
            logger.error("no kubernetes object related to function", extra=extra)
            return False
        for obj in fsvc.kubernetes_objects:
            kind = obj.kind.lower()
            try:
                if kind == "service":
                    await self.cluster.get_service(obj.namespace, obj.name)
                elif kind == "deployment":
                    deployment = await self.cluster.get_deployment(obj.namespace, obj.name)
                    available = (deployment.status and deployment.status.available_replicas) or 0
                    if available < 1:
                        return False
            except ClusterAPIError as e:
                if not e.is_not_found():
                    logger.error(f"error validating function {kind}: {e}", extra=extra)
                return False
        return True

    async def refresh_func_pods(self, fn: Function) -> None:
        """Roll the function's pods by bumping the referenced config env var."""
        labels = get_deploy_labels(fn.metadata)
        ns = self.ns_resolver.get_function_ns(fn.metadata.namespace)
        deployments = await self.cluster.list_deployments(ns, label_selector(labels))

        # Ideally a single deployment; the label selector is what guarantees it.
        for deployment in deployments:
            rv_count = await referenced_resources_rv_sum(
                self.cluster, deployment.metadata.namespace, fn.spec.secrets, fn.spec.config_maps
            )
            await self.cluster.patch_deployment(
                deployment.metadata.namespace,
                deployment.metadata.name,
                self._rv_count_patch(fn, rv_count),
            )

    @staticmethod
    def _rv_count_patch(fn: Function, rv_count: int) -> Dict[str, Any]:
        return {
            "spec": {
                "template": {
                    "spec": {
                        "containers": [
                            {
                                "name": fn.metadata.name,
                                "env": [{"name": RESOURCE_VERSION_COUNT, "value": str(rv_count)}],
                            }
                        ]
                    }
                }
            }
        }

    async def adopt_existing_resources(self) -> None:
        """Re-run creation for every container function; create-or-get makes this idempotent."""
        tasks = []
        for namespace in self.ns_resolver.resource_namespaces:
            try:
                functions = await self.functions.list_functions(namespace)
            except Exception as e:
                logger.error(f"error getting function list in {namespace}: {e}")
                continue
            for fn in functions:
                if fn.executor_type == ExecutorType.CONTAINER:
                    tasks.append(self._adopt(fn))
        await asyncio.gather(*tasks)

    async def _adopt(self, fn: Function) -> None:
        try:
            await self.fn_create(fn)
        except Exception as e:
            logger.warning(
                f"failed to adopt resources for function: {e}",
                extra={"function": fn.metadata.name, "namespace": fn.metadata.namespace},
            )
            return
        logger.info(
            "adopt resources for function",
            extra={"function": fn.metadata.name, "namespace": fn.metadata.namespace},
        )

    async def cleanup_old_executor_objects(self) -> None:
        """Delete objects of this executor type stamped by another instance."""
        logger.info(
            "Container executor starts to clean orphaned resources",
            extra={"instance_id": self.instance_id},
        )
        selector = label_selector({EXECUTOR_TYPE: ExecutorType.CONTAINER.value})
        err = await cleanup_orphans(
            self.cluster, self.ns_resolver.object_namespaces, self.instance_id, selector
        )
        if err is not None:
            # TODO: retry orphan cleanup instead of waiting for the next restart.
            logger.error(f"Failed to cleanup old executor objects: {err}")

    async def dump_debug_info(self) -> str:
        await self.fs_cache.log()
        return self.fs_cache.dump_debug_info()

    # ------------------------------------------------------------------
    # Function event handlers
    # ------------------------------------------------------------------

    async def on_function_add(self, fn: Function) -> None:
        if fn.executor_type != ExecutorType.CONTAINER:
            return
        try:
            await self.create_function(fn)
        except Exception as e:
            self.update_status(fn, e, "error creating function")

    async def on_function_update(self, old_fn: Function, new_fn: Function) -> None:
        try:
            await self.update_function(old_fn, new_fn)
        except Exception as e:
            self.update_status(new_fn, e, "error updating function")

    async def on_function_delete(self, fn: Function) -> None:
        try:
            await self.delete_function(fn)
        except Exception as e:
            self.update_status(fn, e, "error deleting function")

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_function(self, fn: Function) -> Optional[FuncSvc]:
        if fn.executor_type != ExecutorType.CONTAINER:
            return None

        try:
            fn.validate_spec()
        except (ValueError, MultiError) as e:
            raise InvalidFunctionError(f"{fn.metadata.namespace}/{fn.metadata.name}", e) from e

        uid = fn.metadata.uid

        async def _create(able_to_create: bool) -> FuncSvc:
            if able_to_create:
                return await self.fn_create(fn)
            return self.fs_cache.get_by_function_uid(uid)

        try:
            return await self.throttler.run_once(uid, _create)
        except Exception as e:
            logger.error(
                f"error creating k8s resources for function: {e}",
                extra={
                    "function_name": fn.metadata.name,
                    "function_namespace": fn.metadata.namespace,
                },
            )
            raise ExecutorError(
                f"error creating k8s resources for function "
                f"{fn.metadata.namespace}/{fn.metadata.name}: {e}"
            ) from e

    async def fn_create(self, fn: Function) -> FuncSvc:
        obj_name = get_obj_name(fn)
        labels = get_deploy_labels(fn.metadata)
        annotations = get_deploy_annotations(fn.metadata, self.instance_id)
        ns = self.ns_resolver.get_function_ns(fn.metadata.namespace)

        # The service goes first: the mesh may answer 404 for a new address
        # until routing propagates, which overlaps with the deployment wait.
        try:
            svc = await self.create_or_get_svc(fn, labels, annotations, obj_name, ns)
        except Exception as e:
            logger.error(f"error creating service: {e}", extra={"service": obj_name})
            self._cleanup_in_background(ns, obj_name)
            raise
        address = f"{svc.metadata.name}.{svc.metadata.namespace}"

        try:
            deployment = await self.create_or_get_deployment(fn, obj_name, labels, annotations, ns)
        except Exception as e:
            logger.error(f"error creating deployment: {e}", extra={"deployment": obj_name})
            self._cleanup_in_background(ns, obj_name)
            raise

        try:
            hpa = await self.hpaops.create_or_get_hpa(
                obj_name, ns, fn.execution_strategy, deployment, labels, annotations
            )
        except Exception as e:
            logger.error(f"error creating HPA: {e}", extra={"hpa": obj_name})
            self._cleanup_in_background(ns, obj_name)
            raise

        fsvc = FuncSvc(
            name=obj_name,
            function=fn.metadata.model_copy(deep=True),
            environment=fn.spec.environment,
            address=address,
            kubernetes_objects=[
                _object_ref("deployment", deployment),
                _object_ref("service", svc),
                _object_ref("horizontalpodautoscaler", hpa),
            ],
            executor=ExecutorType.CONTAINER,
        )

        existing = await self.fs_cache.add(fsvc)
        if existing is not None:
            logger.debug(
                "function service already cached",
                extra={"function": fn.metadata.name, "address": existing.address},
            )
            return existing

        logger.info(
            "cold start", extra={"function": fn.metadata.name, "namespace": fn.metadata.namespace}
        )
        return self.fs_cache.get_by_function(fsvc.function)

    def _cleanup_in_background(self, ns: str, name: str) -> None:
        async def _cleanup() -> None:
            try:
                await self.cleanup_container(ns, name)
            except Exception as e:
                logger.error(
                    f"received error while cleaning function resources: {e}",
                    extra={"namespace": ns, "function": name},
                )

        self._spawn(_cleanup())

    def _owner_references(self, fn: Function) -> Optional[List[client.V1OwnerReference]]:
        if not self.config.ENABLE_OWNER_REFERENCES:
            return None
        return [
            client.V1OwnerReference(
                api_version="fission.io/v1",
                kind="Function",
                name=fn.metadata.name,
                uid=fn.metadata.uid,
            )
        ]

    async def create_or_get_svc(
        self,
        fn: Function,
        labels: Dict[str, str],
        annotations: Dict[str, str],
        name: str,
        ns: str,
    ) -> client.V1Service:
        body = client.V1Service(
            api_version="v1",
            kind="Service",
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=ns,
                labels=labels,
                annotations=annotations,
                owner_references=self._owner_references(fn),
            ),
            spec=client.V1ServiceSpec(
                type="ClusterIP",
                selector=labels,
                ports=[
                    client.V1ServicePort(
                        name="http-env",
                        port=80,
                        target_port=self.config.FUNCTION_PORT,
                        protocol="TCP",
                    )
                ],
            ),
        )
        try:
            return await self.cluster.create_service(ns, body)
        except ClusterAPIError as e:
            if not e.is_already_exists():
                raise

        existing = await self.cluster.get_service(ns, name)
        existing_annotations = existing.metadata.annotations or {}
        if existing_annotations.get(EXECUTOR_INSTANCEID_LABEL) != self.instance_id:
            existing.metadata.annotations = {**existing_annotations, **annotations}
            logger.info(f"Adopting service {ns}/{name}")
            return await self.cluster.update_service(ns, existing)
        return existing

    async def build_deployment(
        self,
        fn: Function,
        replicas: int,
        name: str,
        ns: str,
        labels: Dict[str, str],
        annotations: Dict[str, str],
    ) -> client.V1Deployment:
        rv_count = await referenced_resources_rv_sum(
            self.cluster, ns, fn.spec.secrets, fn.spec.config_maps
        )
        pod_annotations = dict(annotations)
        if self.config.ENABLE_ISTIO:
            pod_annotations["sidecar.istio.io/inject"] = "true"

        container = {
            "name": fn.metadata.name,
            "image": fn.image,
            "imagePullPolicy": self.config.RUNTIME_IMAGE_PULL_POLICY,
            "ports": [{"name": "http-env", "containerPort": self.config.FUNCTION_PORT}],
            "env": [{"name": RESOURCE_VERSION_COUNT, "value": str(rv_count)}],
            "readinessProbe": {
                "tcpSocket": {"port": self.config.FUNCTION_PORT},
                "initialDelaySeconds": 1,
                "periodSeconds": 1,
                "failureThreshold": 30,
            },
        }
        pod_spec = merge_pod_spec(
            {"containers": [container], "terminationGracePeriodSeconds": 30},
            fn.spec.pod_spec,
        )

        # The pod template is kept API-shaped so the user's podspec merges verbatim.
        return client.V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=ns,
                labels=labels,
                annotations=annotations,
                owner_references=self._owner_references(fn),
            ),
            spec=client.V1DeploymentSpec(
                replicas=replicas,
                selector=client.V1LabelSelector(match_labels=labels),
                template={
                    "metadata": {"labels": labels, "annotations": pod_annotations},
                    "spec": pod_spec,
                },
            ),
        )

    async def create_or_get_deployment(
        self,
        fn: Function,
        name: str,
        labels: Dict[str, str],
        annotations: Dict[str, str],
        ns: str,
    ) -> client.V1Deployment:
        # At least one replica to serve the request that triggered creation.
        min_scale = max(fn.execution_strategy.min_scale, 1)

        try:
            existing = await self.cluster.get_deployment(ns, name)
        except ClusterAPIError as e:
            if not e.is_not_found():
                raise
            existing = None

        if existing is not None:
            existing_annotations = existing.metadata.annotations or {}
            stale = (
                existing_annotations.get(EXECUTOR_INSTANCEID_LABEL) != self.instance_id
                or existing_annotations.get(FUNCTION_RESOURCE_VERSION)
                != fn.metadata.resource_version
            )
            if stale or (existing.spec.replicas or 0) < min_scale:
                existing.metadata.annotations = {**existing_annotations, **annotations}
                existing.spec.replicas = max(existing.spec.replicas or 0, min_scale)
                existing = await self.cluster.update_deployment(ns, existing)
            deployment = existing
        else:
            body = await self.build_deployment(fn, min_scale, name, ns, labels, annotations)
            try:
                deployment = await self.cluster.create_deployment(ns, body)
            except ClusterAPIError as e:
                if not e.is_already_exists():
                    raise
                deployment = await self.cluster.get_deployment(ns, name)

        return await self._wait_for_deployment(
            ns, deployment, fn.execution_strategy.specialization_timeout
        )

    async def _wait_for_deployment(
        self, ns: str, deployment: client.V1Deployment, timeout: float
    ) -> client.V1Deployment:
        name = deployment.metadata.name
        deadline = time.monotonic() + timeout
        while True:
            available = (deployment.status and deployment.status.available_replicas) or 0
            if available >= 1:
                return deployment
            if time.monotonic() >= deadline:
                raise ReadinessTimeoutError(name, timeout)
            await asyncio.sleep(self.readiness_poll_interval)
            deployment = await self.cluster.get_deployment(ns, name)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_function(self, old_fn: Function, new_fn: Function) -> None:
        if old_fn.metadata.resource_version == new_fn.metadata.resource_version:
            return

        old_is_container = old_fn.executor_type == ExecutorType.CONTAINER
        new_is_container = new_fn.executor_type == ExecutorType.CONTAINER

        if not old_is_container and not new_is_container:
            return

        if old_is_container and not new_is_container:
            logger.info(
                "function does not use container executor anymore, deleting resources",
                extra={"function": new_fn.metadata.name},
            )
            # The old record is the one resident in the cache.
            await self.delete_function(old_fn)
            return

        if new_is_container and not old_is_container:
            logger.info(
                "function type changed to container, creating resources",
                extra={"function": new_fn.metadata.name},
            )
            try:
                await self.create_function(new_fn)
            except Exception as e:
                self.update_status(old_fn, e, "error changing the function's type to container")
                raise
            return

        change = diff_functions(old_fn, new_fn)

        if change.autoscaling:
            await self._update_hpa(old_fn, new_fn, change)

        if change.deployment:
            await self.update_func_deployment(new_fn)

    async def _update_hpa(self, old_fn: Function, new_fn: Function, change) -> None:
        ns = self.ns_resolver.get_function_ns(new_fn.metadata.namespace)
        try:
            fsvc = self.fs_cache.get_by_function_uid(new_fn.metadata.uid)
        except NotFoundError as e:
            raise NotFoundError(
                f"error updating function due to unable to find function service cache "
                f"{old_fn.metadata.namespace}/{old_fn.metadata.name}"
            ) from e

        try:
            hpa = await self.hpaops.get_hpa(ns, fsvc.name)
        except Exception as e:
            self.update_status(old_fn, e, "error getting HPA while updating function")
            raise

        strategy = new_fn.execution_strategy
        if change.min_scale:
            hpa.spec.min_replicas = strategy.min_scale if strategy.min_scale > 0 else 1
        if change.max_scale:
            hpa.spec.max_replicas = strategy.max_scale
        if change.metrics or change.target_cpu:
            hpa.spec.metrics = build_hpa_metrics(strategy)
        if change.behavior:
            hpa.spec.behavior = strategy.behavior

        try:
            await self.hpaops.update_hpa(hpa)
        except Exception as e:
            self.update_status(old_fn, e, "error updating HPA while updating function")
            raise

    async def update_func_deployment(self, fn: Function) -> None:
        try:
            fsvc = self.fs_cache.get_by_function_uid(fn.metadata.uid)
        except NotFoundError as e:
            raise NotFoundError(
                f"error updating function due to unable to find function service cache "
                f"{fn.metadata.namespace}/{fn.metadata.name}"
            ) from e
        name = fsvc.name
        logger.info(
            "updating deployment due to function update",
            extra={"deployment": name, "function": fn.metadata.name},
        )

        ns = self.ns_resolver.get_function_ns(fn.metadata.namespace)
        existing = await self.cluster.get_deployment(ns, name)

        # Keep the current replica count so an in-flight scale is not undone.
        try:
            deployment = await self.build_deployment(
                fn,
                existing.spec.replicas,
                name,
                ns,
                get_deploy_labels(fn.metadata),
                get_deploy_annotations(fn.metadata, self.instance_id),
            )
        except Exception as e:
            self.update_status(fn, e, "failed to get new deployment spec while updating function")
            raise

        deployment.metadata.resource_version = existing.metadata.resource_version
        try:
            await self.cluster.update_deployment(ns, deployment)
        except Exception as e:
            self.update_status(fn, e, "failed to update deployment while updating function")
            raise

    def update_status(self, fn: Function, err: BaseException, message: str) -> None:
        """Only logs for now; function status is not written back."""
        logger.error(
            f"function status update: {message}: {err}",
            extra={"function": fn.metadata.name, "namespace": fn.metadata.namespace},
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_function(self, fn: Function) -> None:
        if fn.executor_type != ExecutorType.CONTAINER:
            return
        try:
            await self.fn_delete(fn)
        except Exception as e:
            raise ExecutorError(
                f"error deleting kubernetes objects of function "
                f"{fn.metadata.namespace}/{fn.metadata.name}: {e}"
            ) from e

    async def fn_delete(self, fn: Function) -> None:
        # The resource version changes on delete; look up by UID.
        try:
            fsvc = self.fs_cache.get_by_function_uid(fn.metadata.uid)
        except NotFoundError as e:
            raise NotFoundError(
                f"fsvc not found in cache {fn.metadata.namespace}/{fn.metadata.name}"
            ) from e

        self.fs_cache.delete_old(fsvc, 0)
        self.throttler.forget(fn.metadata.uid)

        ns = self.ns_resolver.get_function_ns(fn.metadata.namespace)
        await self.cleanup_container(ns, fsvc.name)

    async def cleanup_container(self, ns: str, name: str) -> None:
        """Delete the HPA, deployment and service; report all failures together."""
        errors: List[BaseException] = []
        for delete in (
            self.hpaops.delete_hpa,
            self.cluster.delete_deployment,
            self.cluster.delete_service,
        ):
            try:
                await delete(ns, name)
            except Exception as e:
                if is_cluster_not_found(e):
                    continue
                errors.append(e)
        err = MultiError.collect(errors)
        if err is not None:
            raise err

    # ------------------------------------------------------------------
    # Idle reaping
    # ------------------------------------------------------------------

    async def scale_deployment(self, ns: str, name: str, replicas: int) -> None:
        logger.info(f"scaling deployment {ns}/{name} to {replicas}")
        await self.cluster.patch_deployment(ns, name, {"spec": {"replicas": replicas}})

    async def do_idle_object_reaper(self) -> List[asyncio.Task]:
        """
        One reaper pass: scale idle deployments down to MinScale.

        Each scale-down runs as its own task; the tasks are returned.
        """
        try:
            fsvcs = await self.fs_cache.list_old(self.config.LIST_OLD_MIN_AGE)
        except Exception as e:
            logger.error(f"error reaping idle pods: {e}")
            return []

        tasks: List[asyncio.Task] = []
        for fsvc in fsvcs:
            if fsvc.executor != ExecutorType.CONTAINER:
                continue

            try:
                fn = await self.functions.get_function(fsvc.function.namespace, fsvc.function.name)
            except Exception as e:
                # Deleted functions are cleaned up by the delete handler.
                if not is_cluster_not_found(e):
                    logger.error(
                        f"error getting function: {e}", extra={"function": fsvc.function.name}
                    )
                continue

            idle_pod_reap_time = self.default_idle_pod_reap_time
            if fn.spec.idle_timeout is not None:
                idle_pod_reap_time = fn.spec.idle_timeout

            if time.time() - fsvc.atime < idle_pod_reap_time:
                continue

            tasks.append(self._spawn(self._scale_down_idle(fsvc, fn)))
        return tasks

    async def _scale_down_idle(self, fsvc: FuncSvc, fn: Function) -> None:
        extra = {"function": fsvc.function.name}
        deploy_obj = fsvc.object_of_kind("deployment")
        if deploy_obj is None:
            logger.error("error finding function deployment", extra=extra)
            return
        try:
            current = await self.cluster.get_deployment(deploy_obj.namespace, deploy_obj.name)
        except Exception as e:
            logger.error(f"error getting function deployment: {e}", extra=extra)
            return

        min_scale = fn.execution_strategy.min_scale
        if (current.spec.replicas or 0) <= min_scale:
            return

        try:
            await self.scale_deployment(deploy_obj.namespace, deploy_obj.name, min_scale)
        except Exception as e:
            logger.error(f"error scaling down function deployment: {e}", extra=extra)
