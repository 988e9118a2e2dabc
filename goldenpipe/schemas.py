from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class OSType(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"


class ImageStatus(str, Enum):
    PENDING = "pending"
    CREATING = "creating"
    READY = "ready"
    FAILED = "failed"
    DELETING = "deleting"


class VMStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    DELETING = "deleting"


OS_DEFAULTS: dict[str, dict[str, str | int]] = {
    OSType.LINUX.value: {"storage_size": "20Gi", "cpu": 2, "memory": "4Gi"},
    OSType.WINDOWS.value: {"storage_size": "50Gi", "cpu": 4, "memory": "8Gi"},
}


class UserConfig(BaseModel):
    name: str
    password: str | None = None
    groups: list[str] = Field(default_factory=list)
    sudo: bool = False


class ImageCustomizations(BaseModel):
    packages: list[str] = Field(default_factory=list)
    scripts: list[str] = Field(default_factory=list)
    files: dict[str, str] = Field(default_factory=dict)
    users: list[UserConfig] = Field(default_factory=list)
    ssh_keys: list[str] = Field(default_factory=list)


class CreateImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    # Kept as a plain string: the orchestrator rejects unknown values itself.
    os_type: str
    base_image_url: str = Field(
        validation_alias=AliasChoices("base_image_url", "base_iso_url")
    )
    customizations: ImageCustomizations | None = None
    storage_size: str | None = None
    cpu: int | None = None
    memory: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)

    def _default(self, key: str):
        return OS_DEFAULTS.get(self.os_type, OS_DEFAULTS[OSType.LINUX.value])[key]

    def resolved_storage_size(self) -> str:
        return self.storage_size or str(self._default("storage_size"))

    def resolved_cpu(self) -> int:
        if self.cpu and self.cpu > 0:
            return self.cpu
        return int(self._default("cpu"))

    def resolved_memory(self) -> str:
        return self.memory or str(self._default("memory"))


class GoldenImage(BaseModel):
    name: str
    os_type: OSType
    status: ImageStatus
    size: str | None = None
    created_at: datetime
    updated_at: datetime
    labels: dict[str, str] = Field(default_factory=dict)
    customizations: ImageCustomizations | None = None
    pvc_name: str | None = None
    vm_name: str | None = None


class ImageStatusResponse(BaseModel):
    name: str
    status: ImageStatus
    progress: int = Field(ge=0, le=100)
    message: str = ""
    created_at: datetime
    updated_at: datetime


class VMCondition(BaseModel):
    type: str
    status: str
    reason: str | None = None
    message: str | None = None


class VMInfo(BaseModel):
    name: str
    image_name: str | None = None
    status: VMStatus
    created: bool = False
    ready: bool = False
    conditions: list[VMCondition] = Field(default_factory=list)
    created_at: datetime | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    cpu: int | None = None
    memory: str | None = None


class ImageListResponse(BaseModel):
    images: list[GoldenImage]
    count: int


class VMListResponse(BaseModel):
    vms: list[VMInfo]
    count: int


class CreateImageResponse(BaseModel):
    message: str
    image: GoldenImage


class MessageResponse(BaseModel):
    message: str


class MetricsSnapshot(BaseModel):
    total_images: int
    active_vms: int
    failed_images: int
    storage_used: str
    last_updated: datetime
    counters: dict[str, int] = Field(default_factory=dict)
