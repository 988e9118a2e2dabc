import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from goldenpipe.admission import AdmissionController
from goldenpipe.clients.http import RequestFailure
from goldenpipe.errors import ExternalUnavailable, GoldenPipeError, NotFoundError
from goldenpipe.schemas import (
    GoldenImage,
    ImageStatus,
    ImageStatusResponse,
    VMCondition,
    VMInfo,
)
from goldenpipe.services.control_plane import VMControlPlane
from goldenpipe.services.metadata import MetadataStore
from goldenpipe.state_machine import can_transition, is_terminal


logger = logging.getLogger(__name__)

FATAL_CONDITION_TYPES = {"Failure"}

MESSAGES = {
    ImageStatus.READY: "Golden image is ready",
    ImageStatus.CREATING: "Builder VM is preparing the image",
    ImageStatus.PENDING: "Waiting for builder VM to be created",
}


@dataclass
class Projection:
    status: ImageStatus
    progress: int
    message: str


def fatal_condition(vm: VMInfo) -> VMCondition | None:
    for condition in vm.conditions:
        if condition.type in FATAL_CONDITION_TYPES and condition.status == "True":
            return condition
    return None


def project_vm(vm: VMInfo) -> Projection:
    if vm.ready:
        projection = Projection(ImageStatus.READY, 100, MESSAGES[ImageStatus.READY])
    elif vm.created:
        projection = Projection(
            ImageStatus.CREATING, 50, MESSAGES[ImageStatus.CREATING]
        )
    else:
        projection = Projection(ImageStatus.PENDING, 0, MESSAGES[ImageStatus.PENDING])

    # A fatal condition wins over ready/created, progress is left as mapped.
    condition = fatal_condition(vm)
    if condition is not None:
        projection.status = ImageStatus.FAILED
        projection.message = condition.message or condition.reason or "builder VM failed"
    return projection


class StatusProjector:
    def __init__(
        self,
        metadata: MetadataStore,
        control_plane: VMControlPlane,
        admission: AdmissionController | None = None,
    ):
        self.metadata = metadata
        self.control_plane = control_plane
        self.admission = admission

    def get_status(self, name: str) -> ImageStatusResponse:
        image = self.metadata.get(name)
        if not image.vm_name:
            raise NotFoundError("vm", f"builder for image {name}")
        try:
            vm = self.control_plane.get_vm(image.vm_name)
        except RequestFailure as exc:
            raise ExternalUnavailable(
                f"lookup of builder vm {image.vm_name} for image {name} failed: {exc}"
            ) from exc
        projection = project_vm(vm)
        now = datetime.now(UTC)
        self._record_transition(image, projection.status, now)
        return ImageStatusResponse(
            name=name,
            status=projection.status,
            progress=projection.progress,
            message=projection.message,
            created_at=image.created_at,
            updated_at=now,
        )

    def _record_transition(
        self, image: GoldenImage, target: ImageStatus, now: datetime
    ) -> None:
        current = image.status.value
        if current == target.value or not can_transition(current, target.value):
            return
        updated = image.model_copy(update={"status": target, "updated_at": now})
        try:
            self.metadata.store(updated)
        except (GoldenPipeError, RequestFailure) as exc:
            logger.warning(
                "failed to persist status image=%s %s->%s: %s",
                image.name,
                current,
                target.value,
                exc,
            )
        else:
            logger.info(
                "image status changed image=%s %s->%s", image.name, current, target.value
            )
        if is_terminal(target.value) and self.admission is not None:
            self.admission.release(image.name)
