"""
Function domain models.

Defines the Function custom resource as Pydantic models. Field aliases accept
the CRD JSON returned by the cluster API.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from controlplane.common.core.exceptions import MultiError


class ExecutorType(str, Enum):
    POOLMGR = "poolmgr"
    NEWDEPLOY = "newdeploy"
    CONTAINER = "container"


class _CRDModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class FunctionMeta(_CRDModel):
    """Identity of a function (ObjectMeta subset)."""

    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


class EnvironmentReference(_CRDModel):
    name: str
    namespace: str = "default"


class SecretReference(_CRDModel):
    name: str
    namespace: str = "default"


class ConfigMapReference(_CRDModel):
    name: str
    namespace: str = "default"


class ExecutionStrategy(_CRDModel):
    executor_type: ExecutorType = Field(default=ExecutorType.POOLMGR, alias="ExecutorType")
    min_scale: int = Field(default=0, alias="MinScale")
    max_scale: int = Field(default=0, alias="MaxScale")
    target_cpu_percent: int = Field(default=0, alias="TargetCPUPercent")
    specialization_timeout: int = Field(default=120, alias="SpecializationTimeout")
    metrics: List[Dict[str, Any]] = Field(default_factory=list, alias="hpaMetrics")
    behavior: Optional[Dict[str, Any]] = Field(default=None, alias="hpaBehavior")


class InvokeStrategy(_CRDModel):
    strategy_type: str = Field(default="execution", alias="StrategyType")
    execution_strategy: ExecutionStrategy = Field(
        default_factory=ExecutionStrategy, alias="ExecutionStrategy"
    )


class FunctionSpec(_CRDModel):
    environment: Optional[EnvironmentReference] = None
    secrets: List[SecretReference] = Field(default_factory=list)
    config_maps: List[ConfigMapReference] = Field(default_factory=list)
    invoke_strategy: InvokeStrategy = Field(default_factory=InvokeStrategy, alias="InvokeStrategy")
    pod_spec: Optional[Dict[str, Any]] = Field(default=None, alias="podspec")
    image: Optional[str] = None
    idle_timeout: Optional[int] = Field(default=None, alias="idletimeout")
    requests_per_pod: int = Field(default=1, alias="requestsPerPod")
    concurrency: int = 500
    retain_pods: int = Field(default=0, alias="retainPods")


class Function(_CRDModel):
    """
    Core domain entity for a user function.
    """

    metadata: FunctionMeta
    spec: FunctionSpec = Field(default_factory=FunctionSpec)

    @property
    def executor_type(self) -> ExecutorType:
        return self.spec.invoke_strategy.execution_strategy.executor_type

    @property
    def execution_strategy(self) -> ExecutionStrategy:
        return self.spec.invoke_strategy.execution_strategy

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Function":
        """Factory to create from a custom object dict."""
        return cls.model_validate(data)

    def validate_spec(self) -> None:
        """
        Check the function spec and raise all problems together.

        Raises:
            ValueError or MultiError
        """
        problems: List[BaseException] = []
        strategy = self.execution_strategy
        if not self.metadata.name:
            problems.append(ValueError("metadata.name is required"))
        if strategy.min_scale < 0:
            problems.append(ValueError(f"MinScale must be >= 0, got {strategy.min_scale}"))
        if strategy.max_scale < 0:
            problems.append(ValueError(f"MaxScale must be >= 0, got {strategy.max_scale}"))
        if strategy.max_scale > 0 and strategy.max_scale < strategy.min_scale:
            problems.append(
                ValueError(
                    f"MaxScale ({strategy.max_scale}) must be >= MinScale ({strategy.min_scale})"
                )
            )
        if not 0 <= strategy.target_cpu_percent <= 100:
            problems.append(
                ValueError(f"TargetCPUPercent must be within [0, 100], got {strategy.target_cpu_percent}")
            )
        if self.spec.idle_timeout is not None and self.spec.idle_timeout < 0:
            problems.append(ValueError(f"idletimeout must be >= 0, got {self.spec.idle_timeout}"))
        if strategy.executor_type == ExecutorType.CONTAINER and not self.image:
            problems.append(ValueError("container function requires an image"))

        err = MultiError.collect(problems)
        if err is not None:
            raise err

    @property
    def image(self) -> Optional[str]:
        """Image of the function container, from spec.image or the pod spec."""
        if self.spec.image:
            return self.spec.image
        for container in (self.spec.pod_spec or {}).get("containers", []) or []:
            if container.get("name") == self.metadata.name and container.get("image"):
                return container["image"]
        return None
