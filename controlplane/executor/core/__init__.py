"""
Core logic package.

Provides naming helpers, change detection and exceptions shared by the executor.
"""

from .exceptions import ClusterAPIError, ConcurrencyLimitError
from .function_diff import FunctionChange, diff_functions
from .naming import NamespaceResolver, get_obj_name

__all__ = [
    "ClusterAPIError",
    "ConcurrencyLimitError",
    "FunctionChange",
    "NamespaceResolver",
    "diff_functions",
    "get_obj_name",
]
