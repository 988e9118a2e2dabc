"""Builder VM lifecycle on the VM control plane.

``LiveControlPlane`` drives KubeVirt ``VirtualMachine`` objects through the
cluster API. ``StubControlPlane`` keeps VM objects in memory so the service
can run (and be tested) without KubeVirt installed. Callers only see the
``VMControlPlane`` interface.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock

from goldenpipe.clients.cluster import VIRTUAL_MACHINES, ClusterClient
from goldenpipe.clients.http import ResourceConflict, ResourceNotFound
from goldenpipe.errors import NotFoundError
from goldenpipe.schemas import OSType, VMCondition, VMInfo, VMStatus
from goldenpipe.services.storage import APP_LABEL, IMAGE_LABEL, PURPOSE_LABEL


logger = logging.getLogger(__name__)

BUILDER_PURPOSE = "builder-vm"
FAILED_PRINTABLE_STATUSES = {
    "CrashLoopBackOff",
    "ErrorUnschedulable",
    "ErrImagePull",
    "ImagePullBackOff",
    "ErrorPvcNotFound",
    "DataVolumeError",
}


@dataclass
class BuilderVMSpec:
    name: str
    image_name: str
    os_type: str
    base_image_url: str
    pvc_name: str
    os_disk_size: str
    cpu: int
    memory: str
    user_data_b64: str
    network_data_b64: str | None = None
    storage_class: str | None = None
    labels: dict[str, str] = field(default_factory=dict)


def build_vm_manifest(spec: BuilderVMSpec, namespace: str) -> dict:
    os_disk_name = f"{spec.name}-os"
    windows = spec.os_type == OSType.WINDOWS.value

    if windows:
        os_disk = {"name": "os", "bootOrder": 2, "cdrom": {"bus": "sata"}}
        image_disk = {"name": "image", "bootOrder": 1, "disk": {"bus": "sata"}}
        config_disk = {"name": "config", "cdrom": {"bus": "sata"}}
        config_volume = {
            "name": "config",
            "cloudInitConfigDrive": {"userDataBase64": spec.user_data_b64},
        }
    else:
        os_disk = {"name": "os", "bootOrder": 1, "disk": {"bus": "virtio"}}
        image_disk = {"name": "image", "disk": {"bus": "virtio"}}
        config_disk = {"name": "config", "disk": {"bus": "virtio"}}
        no_cloud = {"userDataBase64": spec.user_data_b64}
        if spec.network_data_b64:
            no_cloud["networkDataBase64"] = spec.network_data_b64
        config_volume = {"name": "config", "cloudInitNoCloud": no_cloud}

    dv_storage: dict = {"resources": {"requests": {"storage": spec.os_disk_size}}}
    if spec.storage_class:
        dv_storage["storageClassName"] = spec.storage_class

    labels = {
        **spec.labels,
        "app": APP_LABEL,
        PURPOSE_LABEL: BUILDER_PURPOSE,
        IMAGE_LABEL: spec.image_name,
    }
    return {
        "apiVersion": VIRTUAL_MACHINES.api_version,
        "kind": VIRTUAL_MACHINES.kind,
        "metadata": {"name": spec.name, "namespace": namespace, "labels": labels},
        "spec": {
            "runStrategy": "RerunOnFailure",
            "dataVolumeTemplates": [
                {
                    "metadata": {"name": os_disk_name},
                    "spec": {
                        "source": {"http": {"url": spec.base_image_url}},
                        "storage": dv_storage,
                    },
                }
            ],
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "domain": {
                        "cpu": {"cores": spec.cpu},
                        "resources": {"requests": {"memory": spec.memory}},
                        "devices": {
                            "disks": [os_disk, image_disk, config_disk],
                            "interfaces": [{"name": "default", "masquerade": {}}],
                        },
                    },
                    "networks": [{"name": "default", "pod": {}}],
                    "volumes": [
                        {"name": "os", "dataVolume": {"name": os_disk_name}},
                        {
                            "name": "image",
                            "persistentVolumeClaim": {"claimName": spec.pvc_name},
                        },
                        config_volume,
                    ],
                },
            },
        },
    }


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def vm_info_from_object(obj: dict) -> VMInfo:
    meta = obj.get("metadata") or {}
    status = obj.get("status") or {}
    domain = (
        ((obj.get("spec") or {}).get("template") or {}).get("spec") or {}
    ).get("domain") or {}
    labels = meta.get("labels") or {}

    conditions = [
        VMCondition(
            type=c.get("type", ""),
            status=str(c.get("status", "")),
            reason=c.get("reason"),
            message=c.get("message"),
        )
        for c in status.get("conditions") or []
    ]
    created = bool(status.get("created"))
    ready = bool(status.get("ready"))
    printable = status.get("printableStatus")
    failed = any(c.type == "Failure" and c.status == "True" for c in conditions)

    if meta.get("deletionTimestamp") or printable == "Terminating":
        vm_status = VMStatus.DELETING
    elif failed or printable in FAILED_PRINTABLE_STATUSES:
        vm_status = VMStatus.FAILED
    elif ready or printable == "Running":
        vm_status = VMStatus.RUNNING
    elif printable in {"Stopped", "Succeeded"}:
        vm_status = VMStatus.STOPPED
    else:
        vm_status = VMStatus.PENDING

    return VMInfo(
        name=meta.get("name", ""),
        image_name=labels.get(IMAGE_LABEL),
        status=vm_status,
        created=created,
        ready=ready,
        conditions=conditions,
        created_at=_parse_timestamp(meta.get("creationTimestamp")),
        labels=labels,
        cpu=(domain.get("cpu") or {}).get("cores"),
        memory=((domain.get("resources") or {}).get("requests") or {}).get("memory"),
    )


class VMControlPlane(ABC):
    @abstractmethod
    def create_vm(self, spec: BuilderVMSpec) -> VMInfo: ...

    @abstractmethod
    def get_vm(self, name: str) -> VMInfo: ...

    @abstractmethod
    def list_vms(self) -> list[VMInfo]: ...

    @abstractmethod
    def delete_vm(self, name: str) -> None: ...

    @abstractmethod
    def health_check(self) -> bool: ...


class LiveControlPlane(VMControlPlane):
    def __init__(self, cluster: ClusterClient, namespace: str):
        self.cluster = cluster
        self.namespace = namespace

    def create_vm(self, spec: BuilderVMSpec) -> VMInfo:
        manifest = build_vm_manifest(spec, self.namespace)
        created = self.cluster.create(VIRTUAL_MACHINES, self.namespace, manifest)
        logger.info(
            "submitted builder vm name=%s image=%s cpu=%s memory=%s",
            spec.name,
            spec.image_name,
            spec.cpu,
            spec.memory,
        )
        return vm_info_from_object(created)

    def get_vm(self, name: str) -> VMInfo:
        try:
            obj = self.cluster.get(VIRTUAL_MACHINES, self.namespace, name)
        except ResourceNotFound as exc:
            raise NotFoundError("vm", name) from exc
        return vm_info_from_object(obj)

    def list_vms(self) -> list[VMInfo]:
        objs = self.cluster.list(
            VIRTUAL_MACHINES, self.namespace, labels={"app": APP_LABEL}
        )
        return [vm_info_from_object(obj) for obj in objs]

    def delete_vm(self, name: str) -> None:
        try:
            self.cluster.delete(VIRTUAL_MACHINES, self.namespace, name)
        except ResourceNotFound as exc:
            raise NotFoundError("vm", name) from exc
        logger.info("deleted builder vm name=%s", name)

    def health_check(self) -> bool:
        self.cluster.list(VIRTUAL_MACHINES, self.namespace, limit=1)
        return True


class StubControlPlane(VMControlPlane):
    """In-memory control plane.

    Submitted VMs are reported as created but not ready until ``mark_ready``
    or ``mark_failed`` is called.
    """

    def __init__(self, namespace: str = "default"):
        self.namespace = namespace
        self._lock = Lock()
        self._vms: dict[str, dict] = {}

    def create_vm(self, spec: BuilderVMSpec) -> VMInfo:
        manifest = build_vm_manifest(spec, self.namespace)
        manifest["metadata"]["creationTimestamp"] = (
            datetime.now(UTC).isoformat().replace("+00:00", "Z")
        )
        manifest["status"] = {
            "created": True,
            "ready": False,
            "printableStatus": "Provisioning",
            "conditions": [],
        }
        with self._lock:
            if spec.name in self._vms:
                raise ResourceConflict(
                    method="POST",
                    url=f"stub://virtualmachines/{spec.name}",
                    error_type="AlreadyExists",
                    detail=f"virtual machine {spec.name} already exists",
                    status_code=409,
                )
            self._vms[spec.name] = manifest
        logger.info("stub accepted builder vm name=%s", spec.name)
        return vm_info_from_object(copy.deepcopy(manifest))

    def manifest(self, name: str) -> dict:
        with self._lock:
            if name not in self._vms:
                raise NotFoundError("vm", name)
            return copy.deepcopy(self._vms[name])

    def get_vm(self, name: str) -> VMInfo:
        return vm_info_from_object(self.manifest(name))

    def list_vms(self) -> list[VMInfo]:
        with self._lock:
            objs = [copy.deepcopy(obj) for obj in self._vms.values()]
        return [vm_info_from_object(obj) for obj in objs]

    def delete_vm(self, name: str) -> None:
        with self._lock:
            if self._vms.pop(name, None) is None:
                raise NotFoundError("vm", name)
        logger.info("stub deleted builder vm name=%s", name)

    def health_check(self) -> bool:
        return True

    def _update_status(self, name: str, **changes) -> None:
        with self._lock:
            if name not in self._vms:
                raise NotFoundError("vm", name)
            self._vms[name]["status"].update(changes)

    def mark_ready(self, name: str) -> None:
        self._update_status(name, created=True, ready=True, printableStatus="Running")

    def mark_stopped(self, name: str) -> None:
        self._update_status(name, ready=False, printableStatus="Stopped")

    def mark_failed(self, name: str, message: str, reason: str = "Failed") -> None:
        condition = {
            "type": "Failure",
            "status": "True",
            "reason": reason,
            "message": message,
        }
        with self._lock:
            if name not in self._vms:
                raise NotFoundError("vm", name)
            self._vms[name]["status"].setdefault("conditions", []).append(condition)


def build_control_plane(
    mode: str, cluster: ClusterClient | None, namespace: str
) -> VMControlPlane:
    if mode == "stub":
        logger.warning("using stub vm control plane; builder vms will not boot")
        return StubControlPlane(namespace)
    if cluster is None:
        raise ValueError("live control plane requires a cluster client")
    return LiveControlPlane(cluster, namespace)
