"""
Models package.

Function custom resource models and function service cache records.
"""

from .function import (
    ConfigMapReference,
    EnvironmentReference,
    ExecutionStrategy,
    ExecutorType,
    Function,
    FunctionMeta,
    FunctionSpec,
    InvokeStrategy,
    SecretReference,
)
from .funcsvc import CacheKeyUR, CacheKeyURG, FuncSvc, ObjectReference
from .schemas import DumpResponse, ServiceAddressResponse, TapServiceRequest

__all__ = [
    "CacheKeyUR",
    "CacheKeyURG",
    "ConfigMapReference",
    "DumpResponse",
    "EnvironmentReference",
    "ExecutionStrategy",
    "ExecutorType",
    "FuncSvc",
    "Function",
    "FunctionMeta",
    "FunctionSpec",
    "InvokeStrategy",
    "ObjectReference",
    "SecretReference",
    "ServiceAddressResponse",
    "TapServiceRequest",
]
