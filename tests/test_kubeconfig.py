import base64
import ssl
from pathlib import Path

import pytest
import yaml

from goldenpipe.clients.cluster import ClusterClient
from goldenpipe.clients.kubeconfig import (
    KubeconfigError,
    connection_from_kubeconfig,
    load_kubeconfig,
    resolve_connection,
)
from goldenpipe.config import Settings


def _kubeconfig(**user) -> dict:
    return {
        "current-context": "dev",
        "contexts": [
            {"name": "dev", "context": {"cluster": "dev-cluster", "user": "dev-user"}},
            {"name": "prod", "context": {"cluster": "prod-cluster", "user": "dev-user"}},
        ],
        "clusters": [
            {
                "name": "dev-cluster",
                "cluster": {
                    "server": "https://dev.example:6443/",
                    "insecure-skip-tls-verify": True,
                },
            },
            {
                "name": "prod-cluster",
                "cluster": {
                    "server": "https://prod.example:6443",
                    "certificate-authority": "ca.crt",
                },
            },
        ],
        "users": [{"name": "dev-user", "user": user or {"token": "abc"}}],
    }


def test_current_context_connection():
    conn = connection_from_kubeconfig(_kubeconfig(), Path("/etc/kube"))
    assert conn.base_url == "https://dev.example:6443"
    assert conn.headers() == {"Authorization": "Bearer abc"}
    assert conn.verify_tls is False
    assert conn.ssl_verify() is False
    assert conn.source == "kubeconfig:dev"


def test_named_context_resolves_relative_paths():
    conn = connection_from_kubeconfig(_kubeconfig(), Path("/etc/kube"), "prod")
    assert conn.base_url == "https://prod.example:6443"
    assert conn.ca_path == "/etc/kube/ca.crt"


def test_token_file(tmp_path):
    (tmp_path / "token").write_text("from-file\n")
    conn = connection_from_kubeconfig(_kubeconfig(tokenFile="token"), tmp_path)
    assert conn.token == "from-file"


def _inline_credentials_connection():
    return connection_from_kubeconfig(
        _kubeconfig(
            **{
                "client-certificate-data": base64.b64encode(b"CERT").decode(),
                "client-key-data": base64.b64encode(b"KEY").decode(),
            }
        ),
        Path("/etc/kube"),
    )


def test_client_certificate_data_is_written_out():
    conn = _inline_credentials_connection()
    try:
        assert Path(conn.client_cert_path or "").read_bytes() == b"CERT"
        assert Path(conn.client_key_path or "").read_bytes() == b"KEY"
        assert conn.temp_files == [conn.client_cert_path, conn.client_key_path]
    finally:
        conn.discard_temp_files()
    assert not Path(conn.client_cert_path or "").exists()
    assert not Path(conn.client_key_path or "").exists()


def test_cluster_client_removes_written_credentials():
    conn = _inline_credentials_connection()
    # The placeholder PEM data cannot be loaded; the files go away regardless.
    with pytest.raises(ssl.SSLError):
        ClusterClient.from_connection(conn)
    assert not Path(conn.client_cert_path or "").exists()
    assert not Path(conn.client_key_path or "").exists()
    assert conn.temp_files == []


def test_missing_context_raises():
    with pytest.raises(KubeconfigError):
        connection_from_kubeconfig(_kubeconfig(), Path("."), "staging")
    with pytest.raises(KubeconfigError):
        connection_from_kubeconfig({}, Path("."))


def test_load_kubeconfig(tmp_path):
    path = tmp_path / "config"
    path.write_text(yaml.safe_dump(_kubeconfig()))
    assert load_kubeconfig(path)["current-context"] == "dev"

    path.write_text("- just\n- a list\n")
    with pytest.raises(KubeconfigError):
        load_kubeconfig(path)


def test_resolve_prefers_explicit_url():
    conn = resolve_connection(
        Settings(cluster_api_url="https://api.example:6443/", cluster_token="t")
    )
    assert conn.base_url == "https://api.example:6443"
    assert conn.headers() == {"Authorization": "Bearer t"}
    assert conn.source == "settings"


def test_resolve_reads_kubeconfig_path(tmp_path):
    path = tmp_path / "config"
    path.write_text(yaml.safe_dump(_kubeconfig()))
    conn = resolve_connection(Settings(kubeconfig_path=str(path)))
    assert conn.base_url == "https://dev.example:6443"


def test_resolve_missing_kubeconfig(tmp_path):
    with pytest.raises(KubeconfigError):
        resolve_connection(Settings(kubeconfig_path=str(tmp_path / "absent")))
