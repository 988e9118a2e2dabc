import json

import httpx
import pytest

from goldenpipe.clients.cluster import ClusterClient
from goldenpipe.metrics import metrics


class FakeClusterAPI:
    """In-memory stand-in for the Kubernetes REST API, served via MockTransport."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], dict] = {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.failures: dict[tuple[str, str], int] = {}
        self.unreachable = False

    def fail(self, method: str, plural: str, status_code: int = 500) -> None:
        self.failures[(method, plural)] = status_code

    def seed(self, plural: str, obj: dict) -> None:
        self.objects[(plural, obj["metadata"]["name"])] = obj

    def calls_for(self, method: str, plural: str) -> list[str | None]:
        return [name for m, p, name in self.calls if m == method and p == plural]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        parts = request.url.path.strip("/").split("/")
        if "namespaces" in parts:
            idx = parts.index("namespaces")
            plural = parts[idx + 2]
            name = parts[idx + 3] if len(parts) > idx + 3 else None
        else:
            plural, name = parts[-1], None
        self.calls.append((request.method, plural, name))

        status_code = self.failures.get((request.method, plural))
        if status_code:
            return httpx.Response(status_code, json={"message": "injected failure"})

        if request.method == "POST":
            body = json.loads(request.content)
            key = (plural, body["metadata"]["name"])
            if key in self.objects:
                return httpx.Response(409, json={"reason": "AlreadyExists"})
            self.objects[key] = body
            return httpx.Response(201, json=body)

        if request.method == "PUT":
            body = json.loads(request.content)
            if (plural, name) not in self.objects:
                return httpx.Response(404, json={"reason": "NotFound"})
            self.objects[(plural, name)] = body
            return httpx.Response(200, json=body)

        if request.method == "DELETE":
            if self.objects.pop((plural, name), None) is None:
                return httpx.Response(404, json={"reason": "NotFound"})
            return httpx.Response(200, json={"kind": "Status", "status": "Success"})

        if name is not None:
            obj = self.objects.get((plural, name))
            if obj is None:
                return httpx.Response(404, json={"reason": "NotFound"})
            return httpx.Response(200, json=obj)

        selector = request.url.params.get("labelSelector")
        wanted = dict(pair.split("=", 1) for pair in selector.split(",")) if selector else {}
        items = [
            obj
            for (obj_plural, _), obj in self.objects.items()
            if obj_plural == plural
            and all(
                (obj["metadata"].get("labels") or {}).get(k) == v
                for k, v in wanted.items()
            )
        ]
        return httpx.Response(200, json={"items": items})


@pytest.fixture
def cluster_api() -> FakeClusterAPI:
    return FakeClusterAPI()


@pytest.fixture
def cluster(cluster_api: FakeClusterAPI) -> ClusterClient:
    return ClusterClient(
        "https://cluster.test", transport=httpx.MockTransport(cluster_api.handler)
    )


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
