"""
Services package.

Cluster access, caches and the container executor controller.
"""

from .cluster_client import ClusterClient, FunctionSource, KubeClusterClient, KubeFunctionSource
from .container_manager import ContainerExecutor
from .function_service_cache import FunctionServiceCache
from .function_watcher import FunctionWatcher
from .hpa import HpaOperations
from .janitor import IdleObjectReaper
from .pool_cache import PoolCache

__all__ = [
    "ClusterClient",
    "ContainerExecutor",
    "FunctionServiceCache",
    "FunctionSource",
    "FunctionWatcher",
    "HpaOperations",
    "IdleObjectReaper",
    "KubeClusterClient",
    "KubeFunctionSource",
    "PoolCache",
]
