"""
Executor configuration definition.

Loads configuration from environment variables and provides a Pydantic model.
Uses pydantic-settings for type safety and defaults.
"""

import tempfile
import uuid
from functools import lru_cache
from typing import List

from pydantic import Field

from controlplane.common.core.config import BaseAppConfig


class ExecutorConfig(BaseAppConfig):
    """
    Configuration management for the container executor.
    """

    # Server settings
    UVICORN_BIND_ADDR: str = Field(default="0.0.0.0:8888", description="Listen address")

    # Identity
    EXECUTOR_INSTANCE_ID: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        description="Instance ID stamped on owned objects (orphan cleanup)",
    )

    # Namespaces
    DEFAULT_NAMESPACE: str = Field(default="default", description="Default function namespace")
    FUNCTION_NAMESPACE: str = Field(
        default="fission-function",
        description="Namespace for objects of functions in the default namespace",
    )
    ADDITIONAL_NAMESPACES: str = Field(
        default="", description="Comma separated list of extra watched namespaces"
    )

    # Reaper
    DEFAULT_IDLE_POD_REAP_TIME: float = Field(
        default=60.0, description="Idle time before scale-down when a function sets none (seconds)"
    )
    OBJECT_REAPER_INTERVAL: float = Field(
        default=5.0, description="Idle object reaper interval (seconds)"
    )
    LIST_OLD_MIN_AGE: float = Field(
        default=5.0, description="Minimum idle age considered by the reaper (seconds)"
    )

    # Creation
    THROTTLER_EXPIRY: float = Field(
        default=60.0, description="How long a finished creation is remembered (seconds)"
    )
    RUNTIME_IMAGE_PULL_POLICY: str = Field(
        default="IfNotPresent", description="Image pull policy for function containers"
    )
    ENABLE_ISTIO: bool = Field(default=False, description="Annotate pods for istio injection")
    ENABLE_OWNER_REFERENCES: bool = Field(
        default=False, description="Set the function as owner of created objects"
    )
    FUNCTION_PORT: int = Field(default=8888, description="Port the function container serves on")

    # Debug
    DUMP_DIR: str = Field(
        default_factory=tempfile.gettempdir, description="Directory for debug dump files"
    )

    @property
    def additional_namespaces(self) -> List[str]:
        return [ns.strip() for ns in self.ADDITIONAL_NAMESPACES.split(",") if ns.strip()]


@lru_cache
def get_config() -> ExecutorConfig:
    """Load config as a singleton; pydantic-settings reads the environment here."""
    return ExecutorConfig()
