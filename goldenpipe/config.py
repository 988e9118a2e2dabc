from dataclasses import dataclass
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class OrchestratorConfig:
    namespace: str
    storage_class: str
    max_concurrent_builds: int
    volume_poll_interval_sec: float = 5.0
    volume_bound_timeout_sec: float = 600.0
    wait_for_volume_bound: bool = False


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GOLDENPIPE_", env_file=".env", extra="ignore"
    )

    kubeconfig_path: str | None = Field(default=None)
    cluster_api_url: str | None = Field(default=None)
    cluster_token: str | None = Field(default=None)
    cluster_ca_path: str | None = Field(default=None)
    cluster_verify_tls: bool = Field(default=True)
    request_timeout_sec: float = Field(default=10.0, gt=0)

    namespace: str = Field(default="goldenpipe-system")
    storage_class: str = Field(default="rook-ceph-block")

    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080, ge=1)
    log_level: str = Field(default="info")

    max_concurrent_builds: int = Field(default=5, ge=1)
    control_plane_mode: str = Field(default="live", pattern="^(live|stub)$")

    volume_poll_interval_sec: float = Field(default=5.0, gt=0)
    volume_bound_timeout_sec: float = Field(default=600.0, gt=0)
    wait_for_volume_bound: bool = Field(default=False)

    def orchestrator_config(self) -> OrchestratorConfig:
        return OrchestratorConfig(
            namespace=self.namespace,
            storage_class=self.storage_class,
            max_concurrent_builds=self.max_concurrent_builds,
            volume_poll_interval_sec=self.volume_poll_interval_sec,
            volume_bound_timeout_sec=self.volume_bound_timeout_sec,
            wait_for_volume_bound=self.wait_for_volume_bound,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
