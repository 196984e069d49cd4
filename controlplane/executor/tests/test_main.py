"""
Tests for the executor HTTP API.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from controlplane.executor.api.deps import get_executor
from controlplane.executor.core.exceptions import ClusterAPIError, NotFoundError
from controlplane.executor.main import app


def _function_body(executor_type="container", image="registry.local/hello:1", **strategy):
    return {
        "metadata": {"name": "hello", "namespace": "default", "uid": "u1", "resourceVersion": "1"},
        "spec": {
            "image": image,
            "InvokeStrategy": {"ExecutionStrategy": {"ExecutorType": executor_type, **strategy}},
        },
    }


@pytest.fixture
def mock_executor():
    executor = MagicMock()
    executor.get_func_svc_from_cache = MagicMock(side_effect=NotFoundError("no entry"))
    executor.is_valid = AsyncMock(return_value=True)
    executor.get_func_svc = AsyncMock(
        return_value=SimpleNamespace(address="container-hello.default:80")
    )
    executor.tap_service = AsyncMock()
    executor.dump_debug_info = AsyncMock(return_value="/tmp/dump.json")
    return executor


@pytest.fixture
def api(mock_executor):
    app.dependency_overrides[get_executor] = lambda: mock_executor
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


class TestGetServiceForFunction:
    def test_cache_miss_creates(self, api, mock_executor):
        response = api.post("/v2/getServiceForFunction", json=_function_body())

        assert response.status_code == 200
        assert response.json() == {"address": "container-hello.default:80"}
        mock_executor.get_func_svc.assert_awaited_once()

    def test_valid_cache_entry_is_returned(self, api, mock_executor):
        mock_executor.get_func_svc_from_cache = MagicMock(
            return_value=SimpleNamespace(address="cached:80")
        )

        response = api.post("/v2/getServiceForFunction", json=_function_body())

        assert response.json() == {"address": "cached:80"}
        mock_executor.get_func_svc.assert_not_awaited()

    def test_invalid_cache_entry_is_evicted(self, api, mock_executor):
        stale = SimpleNamespace(address="stale:80")
        mock_executor.get_func_svc_from_cache = MagicMock(return_value=stale)
        mock_executor.is_valid = AsyncMock(return_value=False)

        response = api.post("/v2/getServiceForFunction", json=_function_body())

        assert response.json() == {"address": "container-hello.default:80"}
        mock_executor.delete_func_svc_from_cache.assert_called_once_with(stale)

    def test_other_executor_type_is_rejected(self, api, mock_executor):
        response = api.post("/v2/getServiceForFunction", json=_function_body("poolmgr"))

        assert response.status_code == 400
        mock_executor.get_func_svc.assert_not_awaited()

    def test_cluster_failure_maps_to_bad_gateway(self, api, mock_executor):
        mock_executor.get_func_svc = AsyncMock(
            side_effect=ClusterAPIError("creating service", "container-hello", status_code=500)
        )

        response = api.post("/v2/getServiceForFunction", json=_function_body())

        assert response.status_code == 502


def test_tap_services(api, mock_executor):
    async def tap(address):
        if address == "gone:80":
            raise NotFoundError(address)

    mock_executor.tap_service = AsyncMock(side_effect=tap)

    response = api.post(
        "/v2/tapServices",
        json=[{"serviceUrl": "a:80", "fnExecutorType": "container"}, {"serviceUrl": "gone:80"}],
    )

    assert response.status_code == 200
    assert response.json() == {"tapped": 1, "unknown": ["gone:80"]}


def test_debug_dump(api):
    response = api.post("/v2/debug/dump")

    assert response.json() == {"path": "/tmp/dump.json"}


def test_healthz(api):
    response = api.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_invalid_function_is_rejected(executor, cluster):
    app.dependency_overrides[get_executor] = lambda: executor
    try:
        response = TestClient(app).post(
            "/v2/getServiceForFunction",
            json=_function_body(image="", MinScale=3, MaxScale=1),
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 400
    assert "MaxScale" in response.json()["detail"]
    assert cluster.calls == []
