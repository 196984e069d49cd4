"""
Where: controlplane/executor/core/naming.py
What: Deterministic object names, labels and annotations for function objects.
Why: Adoption and orphan cleanup rely on the same names/labels at every restart.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from ..models.function import ExecutorType, Function, FunctionMeta

# Labels
EXECUTOR_TYPE = "executorType"
FUNCTION_NAME = "functionName"
FUNCTION_NAMESPACE = "functionNamespace"
FUNCTION_UID = "functionUid"

# Annotations
EXECUTOR_INSTANCEID_LABEL = "executorInstanceId"
FUNCTION_RESOURCE_VERSION = "functionResourceVersion"

# Env var carrying the secret/configmap resource version sum
RESOURCE_VERSION_COUNT = "RESOURCE_VERSION_COUNT"

OBJ_NAME_PREFIX = "container"
MAX_NAME_LENGTH = 63


def get_obj_name(fn: Function) -> str:
    """
    Unique name for the cluster objects of a function.

    The same function always maps to the same name: 17 trailing characters of
    the UID plus up to 35 characters of name/namespace, within 63 characters.
    """
    meta = fn.metadata
    uid = meta.uid[-17:]
    if len(meta.name) + len(meta.namespace) < 35:
        function_metadata = f"{meta.name}-{meta.namespace}"
    else:
        function_metadata = f"{meta.name[:17]}-{meta.namespace[:17]}"
    return f"{OBJ_NAME_PREFIX}-{function_metadata}-{uid}".lower()


def get_deploy_labels(meta: FunctionMeta) -> Dict[str, str]:
    labels = dict(meta.labels)
    labels[EXECUTOR_TYPE] = ExecutorType.CONTAINER.value
    labels[FUNCTION_NAME] = meta.name
    labels[FUNCTION_NAMESPACE] = meta.namespace
    labels[FUNCTION_UID] = meta.uid
    return labels


def get_deploy_annotations(meta: FunctionMeta, instance_id: str) -> Dict[str, str]:
    annotations = dict(meta.annotations)
    annotations[EXECUTOR_INSTANCEID_LABEL] = instance_id
    annotations[FUNCTION_RESOURCE_VERSION] = meta.resource_version
    return annotations


def label_selector(labels: Dict[str, str]) -> str:
    """Equality-based selector string (k1=v1,k2=v2)."""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


@dataclass
class NamespaceResolver:
    """
    Resolve where a function's objects live.

    Functions in the default namespace keep their objects in the function
    namespace for backward compatibility; others use their own namespace.
    """

    default_namespace: str = "default"
    function_namespace: str = "fission-function"
    additional_namespaces: List[str] = field(default_factory=list)

    def get_function_ns(self, namespace: str) -> str:
        if namespace == self.default_namespace and self.function_namespace:
            return self.function_namespace
        return namespace

    @property
    def resource_namespaces(self) -> List[str]:
        """Namespaces watched for Function resources."""
        return _unique([self.default_namespace, *self.additional_namespaces])

    @property
    def object_namespaces(self) -> List[str]:
        """Namespaces that may hold objects created for functions."""
        return _unique(self.get_function_ns(ns) for ns in self.resource_namespaces)


def _unique(items: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return seen
