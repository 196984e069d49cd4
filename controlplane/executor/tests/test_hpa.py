"""
Tests for HpaOperations and replica/metric helpers.
"""

import pytest
from kubernetes import client

from controlplane.executor.core.naming import EXECUTOR_INSTANCEID_LABEL
from controlplane.executor.models import ExecutionStrategy
from controlplane.executor.services.hpa import (
    HpaOperations,
    build_hpa_metrics,
    hpa_replica_bounds,
)


def _deployment(name="container-fn"):
    return client.V1Deployment(metadata=client.V1ObjectMeta(name=name, namespace="ns"))


@pytest.mark.parametrize(
    "min_scale, max_scale, expected",
    [(0, 0, (1, 1)), (2, 5, (2, 5)), (3, 1, (3, 3))],
)
def test_replica_bounds(min_scale, max_scale, expected):
    strategy = ExecutionStrategy(min_scale=min_scale, max_scale=max_scale)

    assert hpa_replica_bounds(strategy) == expected


def test_default_cpu_metric():
    [metric] = build_hpa_metrics(ExecutionStrategy(target_cpu_percent=75))

    assert metric.type == "Resource"
    assert metric.resource.name == "cpu"
    assert metric.resource.target.average_utilization == 75


def test_explicit_metrics_win():
    raw = [{"type": "Pods", "pods": {"metric": {"name": "rps"}}}]

    assert build_hpa_metrics(ExecutionStrategy(metrics=raw, target_cpu_percent=75)) == raw


def test_no_metrics():
    assert build_hpa_metrics(ExecutionStrategy()) is None


class TestHpaOperations:
    @pytest.mark.asyncio
    async def test_create(self, cluster):
        ops = HpaOperations(cluster, "instance-a")
        strategy = ExecutionStrategy(min_scale=1, max_scale=4)

        hpa = await ops.create_or_get_hpa(
            "container-fn", "ns", strategy, _deployment(), {"a": "b"}, {}
        )

        assert hpa.spec.scale_target_ref.name == "container-fn"
        assert hpa.spec.scale_target_ref.kind == "Deployment"
        assert (hpa.spec.min_replicas, hpa.spec.max_replicas) == (1, 4)

    @pytest.mark.asyncio
    async def test_existing_foreign_hpa_is_adopted(self, cluster):
        ops = HpaOperations(cluster, "instance-a")
        strategy = ExecutionStrategy(min_scale=2, max_scale=6)
        stale = ops.build_hpa(
            "container-fn", "ns", ExecutionStrategy(max_scale=1), _deployment(), {}, {}
        )
        stale.metadata.annotations = {EXECUTOR_INSTANCEID_LABEL: "instance-old"}
        cluster.put("hpa", stale)

        hpa = await ops.create_or_get_hpa(
            "container-fn",
            "ns",
            strategy,
            _deployment(),
            {"a": "b"},
            {EXECUTOR_INSTANCEID_LABEL: "instance-a"},
        )

        assert hpa.metadata.annotations[EXECUTOR_INSTANCEID_LABEL] == "instance-a"
        assert hpa.metadata.labels == {"a": "b"}
        assert hpa.spec.max_replicas == 6
        assert len(cluster.calls_for("update", "hpa")) == 1

    @pytest.mark.asyncio
    async def test_existing_own_hpa_is_returned(self, cluster):
        ops = HpaOperations(cluster, "instance-a")
        annotations = {EXECUTOR_INSTANCEID_LABEL: "instance-a"}
        strategy = ExecutionStrategy(max_scale=2)
        await ops.create_or_get_hpa("container-fn", "ns", strategy, _deployment(), {}, annotations)

        await ops.create_or_get_hpa("container-fn", "ns", strategy, _deployment(), {}, annotations)

        assert cluster.calls_for("update", "hpa") == []
