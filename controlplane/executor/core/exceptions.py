"""
Custom exception classes.

Represent errors raised by the executor: cache misses, pool exhaustion and
cluster API failures. HTTP handlers for the debug/lookup surface live here too.
"""

import logging
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from kubernetes.client.rest import ApiException

from controlplane.common.core.exceptions import (
    ExecutorError,
    MultiError,
    NameExistsError,
    NotFoundError,
    is_name_exists,
    is_not_found,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ClusterAPIError",
    "ConcurrencyLimitError",
    "ExecutorError",
    "InvalidFunctionError",
    "MultiError",
    "NameExistsError",
    "NotFoundError",
    "ReadinessTimeoutError",
    "is_name_exists",
    "is_not_found",
]


class ConcurrencyLimitError(ExecutorError):
    """Raised when a function's pool can neither hand out nor reserve an address."""

    def __init__(self, function_key: str, concurrency: int):
        self.function_key = function_key
        self.concurrency = concurrency
        super().__init__(f"concurrency limit {concurrency} reached for {function_key}")


class ClusterAPIError(ExecutorError):
    """Cluster API call failed. Wraps the ApiException with operation context."""

    def __init__(
        self,
        operation: str,
        name: str,
        cause: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        self.operation = operation
        self.name = name
        self.cause = cause
        if status_code is None and isinstance(cause, ApiException):
            status_code = cause.status
        self.status = status_code
        reason = getattr(cause, "reason", None) or cause or f"status {status_code}"
        super().__init__(f"error {operation} {name}: {reason}")

    def is_not_found(self) -> bool:
        return self.status == 404

    def is_already_exists(self) -> bool:
        return self.status == 409


def is_cluster_not_found(err: Optional[BaseException]) -> bool:
    return isinstance(err, ClusterAPIError) and err.is_not_found()


def is_already_exists(err: Optional[BaseException]) -> bool:
    return isinstance(err, ClusterAPIError) and err.is_already_exists()


class InvalidFunctionError(ExecutorError):
    """Function spec failed validation; `cause` carries every problem found."""

    def __init__(self, name: str, cause: BaseException):
        self.name = name
        self.cause = cause
        super().__init__(f"invalid function {name}: {cause}")


class ReadinessTimeoutError(ExecutorError):
    """Raised when a deployment has no available replica before the deadline."""

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"deployment {name} not ready within {timeout}s")


# ===========================================
# Exception Handlers
# ===========================================


async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"message": str(exc)})


async def invalid_function_handler(request: Request, exc: InvalidFunctionError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid function", "detail": str(exc)},
    )


async def cluster_api_error_handler(request: Request, exc: ClusterAPIError):
    logger.error(
        f"Cluster API error: {exc}",
        extra={"path": request.url.path, "operation": exc.operation, "object": exc.name},
    )
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"message": "Cluster API Error", "detail": str(exc)},
    )


async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unhandled exceptions.
    """
    logger.error(
        f"Global exception handler caught: {exc}",
        exc_info=True,
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal Server Error", "detail": str(exc)},
    )
