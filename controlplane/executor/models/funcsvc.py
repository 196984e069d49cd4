from copy import deepcopy
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import List, Optional

from .function import EnvironmentReference, ExecutorType, FunctionMeta


# =============================================================================
# Cache keys
# =============================================================================


@dataclass(frozen=True)
class CacheKeyUR:
    """Function key by UID and resource version."""

    uid: str
    resource_version: str

    @classmethod
    def from_meta(cls, meta: FunctionMeta) -> "CacheKeyUR":
        return cls(uid=meta.uid, resource_version=meta.resource_version)

    def __str__(self) -> str:
        return f"{self.uid}_{self.resource_version}"


@dataclass(frozen=True)
class CacheKeyURG:
    """Function key by UID, resource version and generation (pool cache)."""

    uid: str
    resource_version: str
    generation: int

    @classmethod
    def from_meta(cls, meta: FunctionMeta) -> "CacheKeyURG":
        return cls(
            uid=meta.uid, resource_version=meta.resource_version, generation=meta.generation
        )

    def __str__(self) -> str:
        return f"{self.uid}_{self.resource_version}_{self.generation}"


# =============================================================================
# Function service
# =============================================================================


@dataclass
class ObjectReference:
    """Reference to a cluster object owned by a function service."""

    kind: str
    name: str
    namespace: str
    api_version: str = ""
    resource_version: str = ""
    uid: str = ""


@dataclass
class FuncSvc:
    """
    A live binding of a function identity to a reachable backend.

    Mutable on purpose: the cache refreshes `atime` in place. Callers only ever
    see snapshots produced by `copy()`.
    """

    name: str  # Object name (container-{name}-{ns}-{uid})
    function: FunctionMeta
    address: str  # host.namespace
    kubernetes_objects: List[ObjectReference] = field(default_factory=list)
    executor: ExecutorType = ExecutorType.CONTAINER
    environment: Optional[EnvironmentReference] = None
    cpu_limit: Decimal = Decimal(0)
    ctime: float = 0.0  # Creation time
    atime: float = 0.0  # Last access time

    def copy(self) -> "FuncSvc":
        return replace(
            self,
            function=self.function.model_copy(deep=True),
            kubernetes_objects=deepcopy(self.kubernetes_objects),
        )

    def object_of_kind(self, kind: str) -> Optional[ObjectReference]:
        for obj in self.kubernetes_objects:
            if obj.kind.lower() == kind.lower():
                return obj
        return None
