from datetime import UTC, datetime
from typing import Any, cast

import pytest

from goldenpipe.admission import AdmissionController
from goldenpipe.clients.http import RequestFailure
from goldenpipe.errors import ExternalUnavailable, NotFoundError
from goldenpipe.schemas import GoldenImage, ImageStatus, OSType, VMCondition, VMInfo, VMStatus
from goldenpipe.services.status import StatusProjector, project_vm


class FakeMetadata:
    def __init__(self, *images: GoldenImage):
        self.images = {image.name: image for image in images}
        self.stored: list[GoldenImage] = []
        self.fail_store = False

    def get(self, name: str) -> GoldenImage:
        if name not in self.images:
            raise NotFoundError("image", name)
        return self.images[name]

    def store(self, image: GoldenImage) -> None:
        if self.fail_store:
            raise RequestFailure(
                method="PUT", url="configmaps", error_type="HTTPStatusError", detail="HTTP 500"
            )
        self.stored.append(image)
        self.images[image.name] = image


class FakeControlPlane:
    def __init__(self, vm: VMInfo | None = None, fail: bool = False):
        self.vm = vm
        self.fail = fail

    def get_vm(self, name: str) -> VMInfo:
        if self.fail:
            raise RequestFailure(
                method="GET", url=name, error_type="HTTPStatusError", detail="HTTP 500"
            )
        assert self.vm is not None
        return self.vm


def _image(status: ImageStatus = ImageStatus.CREATING, vm_name: str | None = "vm-1") -> GoldenImage:
    now = datetime(2026, 3, 1, tzinfo=UTC)
    return GoldenImage(
        name="web01",
        os_type=OSType.LINUX,
        status=status,
        created_at=now,
        updated_at=now,
        vm_name=vm_name,
    )


def _vm(created=False, ready=False, conditions=None) -> VMInfo:
    return VMInfo(
        name="vm-1",
        status=VMStatus.PENDING,
        created=created,
        ready=ready,
        conditions=conditions or [],
    )


FAILURE = VMCondition(type="Failure", status="True", reason="Crash", message="disk error")


def test_projection_priority():
    assert (project_vm(_vm()).status, project_vm(_vm()).progress) == (ImageStatus.PENDING, 0)
    created = project_vm(_vm(created=True))
    assert (created.status, created.progress) == (ImageStatus.CREATING, 50)
    ready = project_vm(_vm(created=True, ready=True))
    assert (ready.status, ready.progress) == (ImageStatus.READY, 100)


def test_fatal_condition_overrides_created_and_ready():
    failed = project_vm(_vm(created=True, conditions=[FAILURE]))
    assert failed.status == ImageStatus.FAILED
    assert failed.message == "disk error"
    assert project_vm(_vm(created=True, ready=True, conditions=[FAILURE])).status == ImageStatus.FAILED


def test_non_true_failure_condition_is_ignored():
    condition = VMCondition(type="Failure", status="False")
    assert project_vm(_vm(created=True, conditions=[condition])).status == ImageStatus.CREATING


def test_get_status_persists_terminal_transition_and_releases_slot():
    metadata = FakeMetadata(_image())
    admission = AdmissionController(1)
    admission.acquire("web01")
    projector = StatusProjector(
        cast(Any, metadata), cast(Any, FakeControlPlane(_vm(created=True, ready=True))), admission
    )

    response = projector.get_status("web01")

    assert response.status == ImageStatus.READY
    assert response.progress == 100
    assert response.created_at == metadata.stored[0].created_at
    assert metadata.images["web01"].status == ImageStatus.READY
    assert admission.in_flight == 0


def test_get_status_without_change_does_not_write():
    metadata = FakeMetadata(_image())
    projector = StatusProjector(
        cast(Any, metadata), cast(Any, FakeControlPlane(_vm(created=True)))
    )
    assert projector.get_status("web01").status == ImageStatus.CREATING
    assert metadata.stored == []


def test_get_status_never_moves_back_from_terminal():
    metadata = FakeMetadata(_image(ImageStatus.READY))
    projector = StatusProjector(
        cast(Any, metadata), cast(Any, FakeControlPlane(_vm(created=True)))
    )
    # The live projection is reported, the stored record keeps its terminal state.
    assert projector.get_status("web01").status == ImageStatus.CREATING
    assert metadata.stored == []


def test_get_status_store_failure_still_answers():
    metadata = FakeMetadata(_image())
    metadata.fail_store = True
    admission = AdmissionController(1)
    admission.acquire("web01")
    projector = StatusProjector(
        cast(Any, metadata),
        cast(Any, FakeControlPlane(_vm(created=True, conditions=[FAILURE]))),
        admission,
    )
    assert projector.get_status("web01").status == ImageStatus.FAILED
    assert admission.in_flight == 0


def test_get_status_missing_record_or_vm_reference():
    projector = StatusProjector(cast(Any, FakeMetadata()), cast(Any, FakeControlPlane()))
    with pytest.raises(NotFoundError):
        projector.get_status("web01")

    projector = StatusProjector(
        cast(Any, FakeMetadata(_image(vm_name=None))), cast(Any, FakeControlPlane())
    )
    with pytest.raises(NotFoundError):
        projector.get_status("web01")


def test_get_status_control_plane_error_is_unavailable():
    projector = StatusProjector(
        cast(Any, FakeMetadata(_image())), cast(Any, FakeControlPlane(fail=True))
    )
    with pytest.raises(ExternalUnavailable):
        projector.get_status("web01")
