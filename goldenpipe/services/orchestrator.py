import logging
import re
import uuid
from datetime import UTC, datetime

from goldenpipe.admission import AdmissionController
from goldenpipe.clients.cluster import NODES, ClusterClient
from goldenpipe.clients.http import RequestFailure
from goldenpipe.config import OrchestratorConfig
from goldenpipe.context import CallContext
from goldenpipe.errors import (
    ExternalUnavailable,
    GoldenPipeError,
    OperationCancelled,
    OperationTimeout,
    ProvisioningError,
    RecordUnreadable,
    ValidationError,
)
from goldenpipe.metrics import metrics
from goldenpipe.schemas import (
    CreateImageRequest,
    GoldenImage,
    ImageStatus,
    ImageStatusResponse,
    MetricsSnapshot,
    OSType,
    VMInfo,
    VMStatus,
)
from goldenpipe.services.cloud_config import (
    generate_linux_config,
    generate_windows_config,
)
from goldenpipe.services.control_plane import BuilderVMSpec, VMControlPlane
from goldenpipe.services.metadata import MetadataStore
from goldenpipe.services.status import StatusProjector
from goldenpipe.services.storage import StorageProvisioner
from goldenpipe.state_machine import IN_FLIGHT_STATES


logger = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[a-z0-9-]{1,253}$")
RESOURCE_PREFIX = "golden-image-"
CLEANUP_ERRORS = (GoldenPipeError, RequestFailure)


def validate_request(req: CreateImageRequest) -> None:
    if not req.name:
        raise ValidationError("name is required")
    if req.os_type not in {OSType.LINUX.value, OSType.WINDOWS.value}:
        raise ValidationError("os_type must be 'linux' or 'windows'")
    if not req.base_image_url:
        raise ValidationError("base_image_url is required")
    if not req.base_image_url.startswith(("http://", "https://")):
        raise ValidationError("base_image_url must be a valid HTTP/HTTPS URL")
    if not NAME_RE.match(req.name):
        raise ValidationError(
            "name must be a valid Kubernetes resource name (lowercase alphanumeric and hyphens only)"
        )


def volume_name(image_name: str) -> str:
    return f"{RESOURCE_PREFIX}{image_name}"


def builder_vm_name(image_name: str) -> str:
    return f"{RESOURCE_PREFIX}{image_name}-{uuid.uuid4().hex[:8]}"


class BuildOrchestrator:
    """Create/status/delete saga for golden image builds.

    Every call goes to the metadata store; nothing about a build is cached
    between calls except the admission slots.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        storage: StorageProvisioner,
        metadata: MetadataStore,
        control_plane: VMControlPlane,
        cluster: ClusterClient | None = None,
        admission: AdmissionController | None = None,
    ):
        self.config = config
        self.storage = storage
        self.metadata = metadata
        self.control_plane = control_plane
        self.cluster = cluster
        self.admission = admission or AdmissionController(config.max_concurrent_builds)
        self.projector = StatusProjector(metadata, control_plane, self.admission)

    def seed_admission(self) -> int:
        """Count builds left in flight by a previous process against the limit."""
        names = [
            image.name
            for image in self.metadata.list()
            if image.status.value in IN_FLIGHT_STATES
        ]
        self.admission.seed(names)
        logger.info("admission seeded in_flight=%s", len(names))
        return len(names)

    def create(
        self, req: CreateImageRequest, ctx: CallContext | None = None
    ) -> GoldenImage:
        ctx = ctx or CallContext()
        metrics.inc("builds_requested_total")
        validate_request(req)
        ctx.check(f"create image {req.name}")
        try:
            reserved = self.admission.acquire(req.name)
        except GoldenPipeError:
            metrics.inc("builds_rejected_total")
            raise

        try:
            image = self._run_create(req, ctx)
        except Exception:
            # A slot already held by a running build of this name stays with it.
            if reserved:
                self.admission.release(req.name)
            raise
        metrics.inc("builds_accepted_total")
        return image

    def _run_create(self, req: CreateImageRequest, ctx: CallContext) -> GoldenImage:
        vm_name = builder_vm_name(req.name)
        pvc_name = volume_name(req.name)
        size = req.resolved_storage_size()
        logger.info(
            "creating golden image name=%s os_type=%s vm=%s pvc=%s size=%s",
            req.name,
            req.os_type,
            vm_name,
            pvc_name,
            size,
        )

        try:
            self.storage.create_volume(pvc_name, size)
        except (RequestFailure, ExternalUnavailable, ValueError) as exc:
            metrics.inc("provisioning_failures_total")
            raise ProvisioningError(
                image=req.name, stage="storage", resource=pvc_name, detail=str(exc)
            ) from exc

        try:
            ctx.check(f"create image {req.name}")
            if self.config.wait_for_volume_bound:
                self.storage.wait_for_volume_bound(
                    pvc_name, ctx, timeout_sec=self.config.volume_bound_timeout_sec
                )
            spec = self._builder_spec(req, vm_name, pvc_name)
            self.control_plane.create_vm(spec)
        except (GoldenPipeError, RequestFailure) as exc:
            metrics.inc("provisioning_failures_total")
            self._rollback_volume(req.name, pvc_name)
            if isinstance(exc, (OperationTimeout, OperationCancelled)):
                raise
            raise ProvisioningError(
                image=req.name, stage="vm", resource=vm_name, detail=str(exc)
            ) from exc

        now = datetime.now(UTC)
        image = GoldenImage(
            name=req.name,
            os_type=OSType(req.os_type),
            status=ImageStatus.CREATING,
            size=size,
            created_at=now,
            updated_at=now,
            labels=req.labels,
            customizations=req.customizations,
            pvc_name=pvc_name,
            vm_name=vm_name,
        )
        try:
            self.metadata.store(image)
        except CLEANUP_ERRORS as exc:
            metrics.inc("metadata_write_failures_total")
            logger.error("failed to store image metadata image=%s: %s", req.name, exc)
        return image

    def _builder_spec(
        self, req: CreateImageRequest, vm_name: str, pvc_name: str
    ) -> BuilderVMSpec:
        if req.os_type == OSType.WINDOWS.value:
            user_data, network_data = generate_windows_config(req), None
        else:
            user_data, network_data = generate_linux_config(req)
        return BuilderVMSpec(
            name=vm_name,
            image_name=req.name,
            os_type=req.os_type,
            base_image_url=req.base_image_url,
            pvc_name=pvc_name,
            os_disk_size=req.resolved_storage_size(),
            cpu=req.resolved_cpu(),
            memory=req.resolved_memory(),
            user_data_b64=user_data,
            network_data_b64=network_data,
            storage_class=self.config.storage_class,
            labels=req.labels,
        )

    def _rollback_volume(self, image_name: str, pvc_name: str) -> None:
        metrics.inc("rollbacks_total")
        try:
            self.storage.delete_volume(pvc_name)
        except CLEANUP_ERRORS as exc:
            metrics.inc("cleanup_failures_total")
            logger.warning(
                "rollback failed to delete volume image=%s pvc=%s: %s",
                image_name,
                pvc_name,
                exc,
            )

    def get_status(
        self, name: str, ctx: CallContext | None = None
    ) -> ImageStatusResponse:
        (ctx or CallContext()).check(f"status of image {name}")
        return self.projector.get_status(name)

    def delete(self, name: str, ctx: CallContext | None = None) -> None:
        (ctx or CallContext()).check(f"delete image {name}")
        try:
            image = self.metadata.get(name)
        except RecordUnreadable as exc:
            logger.warning(
                "image record unreadable, deleting by derived names image=%s: %s",
                name,
                exc.detail,
            )
            vm_names = self._builder_vms_for(name)
            pvc_name: str | None = volume_name(name)
        else:
            vm_names = [image.vm_name] if image.vm_name else []
            pvc_name = image.pvc_name
        logger.info("deleting golden image name=%s", name)

        for vm_name in vm_names:
            try:
                self.control_plane.delete_vm(vm_name)
            except CLEANUP_ERRORS as exc:
                metrics.inc("cleanup_failures_total")
                logger.warning(
                    "failed to delete builder vm image=%s vm=%s: %s",
                    name,
                    vm_name,
                    exc,
                )

        if pvc_name:
            try:
                self.storage.delete_volume(pvc_name)
            except CLEANUP_ERRORS as exc:
                metrics.inc("cleanup_failures_total")
                logger.warning(
                    "failed to delete volume image=%s pvc=%s: %s",
                    name,
                    pvc_name,
                    exc,
                )

        try:
            self.metadata.delete(name)
        except CLEANUP_ERRORS as exc:
            metrics.inc("cleanup_failures_total")
            logger.warning("failed to delete image metadata image=%s: %s", name, exc)

        self.admission.release(name)
        metrics.inc("images_deleted_total")

    def _builder_vms_for(self, name: str) -> list[str]:
        try:
            vms = self.control_plane.list_vms()
        except CLEANUP_ERRORS as exc:
            metrics.inc("cleanup_failures_total")
            logger.warning("failed to list builder vms image=%s: %s", name, exc)
            return []
        return [vm.name for vm in vms if vm.image_name == name]

    def list_images(self) -> list[GoldenImage]:
        return self.metadata.list()

    def get_image(self, name: str) -> GoldenImage:
        return self.metadata.get(name)

    def list_vms(self) -> list[VMInfo]:
        return self.control_plane.list_vms()

    def get_vm(self, name: str) -> VMInfo:
        return self.control_plane.get_vm(name)

    def delete_vm(self, name: str) -> None:
        self.control_plane.delete_vm(name)

    def health(self) -> bool:
        """Cluster reachable and the VM control plane present; raises otherwise."""
        if self.cluster is not None:
            self.cluster.list(NODES, None, limit=1)
        return self.control_plane.health_check()

    def metrics(self) -> MetricsSnapshot:
        images = self.metadata.list()
        vms = self.control_plane.list_vms()
        usage = self.storage.storage_usage()
        return MetricsSnapshot(
            total_images=len(images),
            active_vms=sum(1 for vm in vms if vm.status == VMStatus.RUNNING),
            failed_images=sum(
                1 for image in images if image.status == ImageStatus.FAILED
            ),
            storage_used=usage["total_used"],
            last_updated=datetime.now(UTC),
            counters=metrics.snapshot(),
        )
