"""
Field-by-field change detection between two revisions of a function.

The update path branches on the returned FunctionChange instead of comparing
specs ad hoc: autoscaling changes patch only the HPA, template changes roll
the deployment.
"""

from dataclasses import dataclass

from ..models.function import Function


@dataclass(frozen=True)
class FunctionChange:
    min_scale: bool = False
    max_scale: bool = False
    metrics: bool = False
    behavior: bool = False
    target_cpu: bool = False
    secrets: bool = False
    config_maps: bool = False
    pod_spec: bool = False
    image: bool = False

    @property
    def autoscaling(self) -> bool:
        return self.min_scale or self.max_scale or self.metrics or self.behavior or self.target_cpu

    @property
    def deployment(self) -> bool:
        return self.secrets or self.config_maps or self.pod_spec or self.image

    @property
    def any(self) -> bool:
        return self.autoscaling or self.deployment


def diff_functions(old: Function, new: Function) -> FunctionChange:
    old_es = old.execution_strategy
    new_es = new.execution_strategy
    return FunctionChange(
        min_scale=old_es.min_scale != new_es.min_scale,
        max_scale=old_es.max_scale != new_es.max_scale,
        metrics=old_es.metrics != new_es.metrics,
        behavior=old_es.behavior != new_es.behavior,
        target_cpu=old_es.target_cpu_percent != new_es.target_cpu_percent,
        # order matters: the env var sum is built in reference order
        secrets=old.spec.secrets != new.spec.secrets,
        config_maps=old.spec.config_maps != new.spec.config_maps,
        pod_spec=old.spec.pod_spec != new.spec.pod_spec,
        image=old.spec.image != new.spec.image,
    )
