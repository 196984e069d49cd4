"""
Dependency Injection for the executor API.

Manage request handler dependencies using FastAPI Depends.
"""

from typing import Annotated

from fastapi import Depends, Request

from ..services.container_manager import ContainerExecutor


def get_executor(request: Request) -> ContainerExecutor:
    return request.app.state.executor


ExecutorDep = Annotated[ContainerExecutor, Depends(get_executor)]
