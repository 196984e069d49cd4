"""
Container executor - HTTP entrypoint.

Serves function service lookups to the router and hosts the reconciliation
controller for container functions for the lifetime of the process.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List

from fastapi import FastAPI, HTTPException

from .api.deps import ExecutorDep
from .config import get_config
from .core.exceptions import (
    ClusterAPIError,
    InvalidFunctionError,
    NotFoundError,
    cluster_api_error_handler,
    global_exception_handler,
    invalid_function_handler,
    not_found_handler,
)
from .core.logging_config import setup_logging
from .lifecycle import manage_lifespan
from .models import (
    DumpResponse,
    ExecutorType,
    Function,
    ServiceAddressResponse,
    TapServiceRequest,
)

# Logger setup
setup_logging()
logger = logging.getLogger("executor.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with manage_lifespan(app, get_config()):
        yield


app = FastAPI(title="Container Executor", version="1.0.0", lifespan=lifespan)

# Register exception handlers.
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(NotFoundError, not_found_handler)
app.add_exception_handler(ClusterAPIError, cluster_api_error_handler)
app.add_exception_handler(InvalidFunctionError, invalid_function_handler)


# ===========================================
# Endpoint definitions.
# ===========================================


@app.post("/v2/getServiceForFunction", response_model=ServiceAddressResponse)
async def get_service_for_function(fn: Function, executor: ExecutorDep):
    """
    Resolve a function to a service address, creating its objects on a miss.
    """
    if fn.executor_type != ExecutorType.CONTAINER:
        raise HTTPException(
            status_code=400,
            detail=f"unsupported executor type {fn.executor_type.value}",
        )

    try:
        fsvc = executor.get_func_svc_from_cache(fn)
    except NotFoundError:
        fsvc = None

    if fsvc is not None:
        if await executor.is_valid(fsvc):
            return ServiceAddressResponse(address=fsvc.address)
        logger.info(
            "cached function service is not valid, evicting",
            extra={"function": fn.metadata.name, "address": fsvc.address},
        )
        executor.delete_func_svc_from_cache(fsvc)

    fsvc = await executor.get_func_svc(fn)
    return ServiceAddressResponse(address=fsvc.address)


@app.post("/v2/tapServices")
async def tap_services(requests: List[TapServiceRequest], executor: ExecutorDep):
    """Refresh the access time of every listed address."""
    errors = []
    for req in requests:
        try:
            await executor.tap_service(req.service_url)
        except NotFoundError as e:
            logger.debug(f"tap for unknown address {req.service_url}: {e}")
            errors.append(req.service_url)
    return {"tapped": len(requests) - len(errors), "unknown": errors}


@app.post("/v2/debug/dump", response_model=DumpResponse)
async def dump_debug_info(executor: ExecutorDep):
    path = await executor.dump_debug_info()
    return DumpResponse(path=path)


@app.get("/healthz")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    import uvicorn

    host, _, port = get_config().UVICORN_BIND_ADDR.rpartition(":")
    uvicorn.run(app, host=host or "0.0.0.0", port=int(port))
