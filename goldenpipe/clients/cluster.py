from dataclasses import dataclass

import httpx

from goldenpipe.clients.http import send_request
from goldenpipe.clients.kubeconfig import ClusterConnection


@dataclass(frozen=True)
class ResourceKind:
    api_prefix: str
    plural: str
    kind: str
    api_version: str

    def collection_path(self, namespace: str | None) -> str:
        if namespace is None:
            return f"{self.api_prefix}/{self.plural}"
        return f"{self.api_prefix}/namespaces/{namespace}/{self.plural}"


PERSISTENT_VOLUME_CLAIMS = ResourceKind(
    "/api/v1", "persistentvolumeclaims", "PersistentVolumeClaim", "v1"
)
CONFIG_MAPS = ResourceKind("/api/v1", "configmaps", "ConfigMap", "v1")
NODES = ResourceKind("/api/v1", "nodes", "Node", "v1")
VIRTUAL_MACHINES = ResourceKind(
    "/apis/kubevirt.io/v1", "virtualmachines", "VirtualMachine", "kubevirt.io/v1"
)


def label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{key}={value}" for key, value in labels.items())


class ClusterClient:
    """Thin REST client for the Kubernetes API.

    One instance wraps one ``httpx.Client`` and is shared by every adapter;
    it holds no per-call state so concurrent use from worker threads is fine.
    """

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        verify=True,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url,
            headers=headers or {},
            verify=verify,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_connection(
        cls, connection: ClusterConnection, timeout: float = 10.0
    ) -> "ClusterClient":
        # Client certificates are loaded into the SSL context, so files
        # materialized from inline kubeconfig data are not needed afterwards.
        try:
            verify = connection.ssl_verify()
        finally:
            connection.discard_temp_files()
        return cls(
            connection.base_url,
            headers=connection.headers(),
            verify=verify,
            timeout=timeout,
        )

    def close(self) -> None:
        self.client.close()

    def create(self, kind: ResourceKind, namespace: str, body: dict) -> dict:
        response = send_request(
            self.client, "POST", kind.collection_path(namespace), json=body
        )
        return response.json()

    def replace(self, kind: ResourceKind, namespace: str, name: str, body: dict) -> dict:
        response = send_request(
            self.client,
            "PUT",
            f"{kind.collection_path(namespace)}/{name}",
            json=body,
        )
        return response.json()

    def get(self, kind: ResourceKind, namespace: str, name: str) -> dict:
        response = send_request(
            self.client, "GET", f"{kind.collection_path(namespace)}/{name}"
        )
        return response.json()

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None,
        labels: dict[str, str] | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        params: dict[str, str | int] = {}
        if labels:
            params["labelSelector"] = label_selector(labels)
        if limit is not None:
            params["limit"] = limit
        response = send_request(
            self.client, "GET", kind.collection_path(namespace), params=params
        )
        return response.json().get("items") or []

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> dict:
        response = send_request(
            self.client,
            "DELETE",
            f"{kind.collection_path(namespace)}/{name}",
            json={"propagationPolicy": "Foreground"},
        )
        return response.json()
