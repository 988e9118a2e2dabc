"""Resolve how to reach the Kubernetes API server.

Resolution order: explicit API URL from settings, the in-cluster service
account, then a kubeconfig file (explicit path, ``$KUBECONFIG`` or
``~/.kube/config``).
"""

import base64
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from goldenpipe.config import Settings


logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class KubeconfigError(RuntimeError):
    pass


@dataclass
class ClusterConnection:
    base_url: str
    token: str | None = None
    ca_path: str | None = None
    ca_data: str | None = None
    client_cert_path: str | None = None
    client_key_path: str | None = None
    verify_tls: bool = True
    source: str = "settings"
    temp_files: list[str] = field(default_factory=list)

    def ssl_verify(self) -> ssl.SSLContext | bool:
        if not self.verify_tls:
            if not self.client_cert_path:
                return False
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        elif self.ca_path or self.ca_data:
            context = ssl.create_default_context(
                cafile=self.ca_path, cadata=self.ca_data
            )
        elif self.client_cert_path:
            context = ssl.create_default_context()
        else:
            return True
        if self.client_cert_path:
            context.load_cert_chain(self.client_cert_path, self.client_key_path)
        return context

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def discard_temp_files(self) -> None:
        """Remove credential files written out from inline kubeconfig data."""
        for path in self.temp_files:
            Path(path).unlink(missing_ok=True)
        self.temp_files.clear()


def load_kubeconfig(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise KubeconfigError(f"expected a YAML mapping in {path}")
    return data


def _named(entries: list[dict] | None, name: str, key: str) -> dict:
    for entry in entries or []:
        if entry.get("name") == name:
            return entry.get(key) or {}
    raise KubeconfigError(f"{key} {name!r} not found in kubeconfig")


def _materialize(data_b64: str, suffix: str) -> str:
    handle = tempfile.NamedTemporaryFile(
        prefix="goldenpipe-", suffix=suffix, delete=False
    )
    with handle:
        handle.write(base64.b64decode(data_b64))
    return handle.name


def _resolve_path(value: str | None, base_dir: Path) -> str | None:
    if not value:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return str(path)


def connection_from_kubeconfig(
    config: dict[str, Any], base_dir: Path, context_name: str | None = None
) -> ClusterConnection:
    context_name = context_name or config.get("current-context")
    if not context_name:
        raise KubeconfigError("kubeconfig has no current-context")
    context = _named(config.get("contexts"), context_name, "context")
    cluster = _named(config.get("clusters"), context.get("cluster", ""), "cluster")
    user = _named(config.get("users"), context.get("user", ""), "user")

    server = cluster.get("server")
    if not server:
        raise KubeconfigError(f"cluster for context {context_name!r} has no server")

    ca_data = None
    if cluster.get("certificate-authority-data"):
        ca_data = base64.b64decode(cluster["certificate-authority-data"]).decode(
            "ascii"
        )

    token = user.get("token")
    if not token and user.get("tokenFile"):
        token = Path(_resolve_path(user["tokenFile"], base_dir)).read_text().strip()

    cert_path = _resolve_path(user.get("client-certificate"), base_dir)
    key_path = _resolve_path(user.get("client-key"), base_dir)
    temp_files: list[str] = []
    if user.get("client-certificate-data"):
        cert_path = _materialize(user["client-certificate-data"], ".crt")
        temp_files.append(cert_path)
    if user.get("client-key-data"):
        key_path = _materialize(user["client-key-data"], ".key")
        temp_files.append(key_path)

    return ClusterConnection(
        base_url=server.rstrip("/"),
        token=token,
        ca_path=_resolve_path(cluster.get("certificate-authority"), base_dir),
        ca_data=ca_data,
        client_cert_path=cert_path,
        client_key_path=key_path,
        verify_tls=not cluster.get("insecure-skip-tls-verify", False),
        source=f"kubeconfig:{context_name}",
        temp_files=temp_files,
    )


def _in_cluster_connection() -> ClusterConnection | None:
    host = os.environ.get("KUBERNETES_SERVICE_HOST")
    port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
    token_path = SERVICE_ACCOUNT_DIR / "token"
    if not host or not token_path.exists():
        return None
    ca_path = SERVICE_ACCOUNT_DIR / "ca.crt"
    if ":" in host:
        host = f"[{host}]"
    return ClusterConnection(
        base_url=f"https://{host}:{port}",
        token=token_path.read_text().strip(),
        ca_path=str(ca_path) if ca_path.exists() else None,
        source="in-cluster",
    )


def resolve_connection(settings: Settings) -> ClusterConnection:
    if settings.cluster_api_url:
        return ClusterConnection(
            base_url=settings.cluster_api_url.rstrip("/"),
            token=settings.cluster_token,
            ca_path=settings.cluster_ca_path,
            verify_tls=settings.cluster_verify_tls,
        )

    if not settings.kubeconfig_path:
        in_cluster = _in_cluster_connection()
        if in_cluster is not None:
            return in_cluster

    raw_path = settings.kubeconfig_path or os.environ.get("KUBECONFIG")
    if raw_path:
        # Only the first entry of a multi-file KUBECONFIG is read.
        path = Path(raw_path.split(os.pathsep)[0]).expanduser()
    else:
        path = Path.home() / ".kube" / "config"
    if not path.exists():
        raise KubeconfigError(f"no cluster configuration found (looked at {path})")
    logger.info("loading kubeconfig path=%s", path)
    return connection_from_kubeconfig(load_kubeconfig(path), path.parent)
