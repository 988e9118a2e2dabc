import logging

from goldenpipe.clients.cluster import PERSISTENT_VOLUME_CLAIMS, ClusterClient
from goldenpipe.clients.http import RequestFailure, ResourceNotFound
from goldenpipe.context import CallContext
from goldenpipe.errors import NotFoundError
from goldenpipe.quantity import format_gibibytes, parse_quantity


logger = logging.getLogger(__name__)

APP_LABEL = "goldenpipe"
PURPOSE_LABEL = "goldenpipe.io/purpose"
IMAGE_LABEL = "goldenpipe.io/image"
CLAIM_BOUND = "Bound"


def build_claim_manifest(
    name: str, size: str, storage_class: str, namespace: str
) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {
                "app": APP_LABEL,
                PURPOSE_LABEL: "golden-image",
                IMAGE_LABEL: name,
            },
        },
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": size}},
            "storageClassName": storage_class,
        },
    }


class StorageProvisioner:
    def __init__(
        self,
        cluster: ClusterClient,
        namespace: str,
        storage_class: str,
        poll_interval_sec: float = 5.0,
    ):
        self.cluster = cluster
        self.namespace = namespace
        self.storage_class = storage_class
        self.poll_interval_sec = poll_interval_sec

    def create_volume(self, name: str, size: str) -> dict:
        parse_quantity(size)
        manifest = build_claim_manifest(
            name, size, self.storage_class, self.namespace
        )
        claim = self.cluster.create(PERSISTENT_VOLUME_CLAIMS, self.namespace, manifest)
        logger.info("created volume claim name=%s size=%s", name, size)
        return claim

    def get_volume(self, name: str) -> dict:
        try:
            return self.cluster.get(PERSISTENT_VOLUME_CLAIMS, self.namespace, name)
        except ResourceNotFound as exc:
            raise NotFoundError("volume", name) from exc

    def delete_volume(self, name: str) -> None:
        self.cluster.delete(PERSISTENT_VOLUME_CLAIMS, self.namespace, name)
        logger.info("deleted volume claim name=%s", name)

    def wait_for_volume_bound(
        self, name: str, ctx: CallContext, timeout_sec: float | None = None
    ) -> dict:
        """Poll until the claim is Bound.

        Read errors are logged and polled through; only the deadline
        (``OperationTimeout``) or the cancel event (``OperationCancelled``)
        ends the wait early.
        """
        if timeout_sec is not None:
            local = CallContext.with_timeout(timeout_sec, ctx.cancel_event)
            if ctx.deadline is not None and ctx.deadline < local.deadline:
                local.deadline = ctx.deadline
            ctx = local
        while True:
            ctx.check(f"wait for volume {name}")
            try:
                claim = self.cluster.get(PERSISTENT_VOLUME_CLAIMS, self.namespace, name)
            except RequestFailure as exc:
                logger.error("failed to read volume claim name=%s: %s", name, exc)
            else:
                phase = (claim.get("status") or {}).get("phase")
                if phase == CLAIM_BOUND:
                    logger.info("volume claim bound name=%s", name)
                    return claim
                logger.info("volume claim name=%s phase=%s", name, phase)
            ctx.sleep(self.poll_interval_sec)

    def storage_usage(self) -> dict[str, str]:
        claims = self.cluster.list(
            PERSISTENT_VOLUME_CLAIMS,
            self.namespace,
            labels={"app": APP_LABEL, PURPOSE_LABEL: "golden-image"},
        )
        allocated = 0
        used = 0
        for claim in claims:
            status = claim.get("status") or {}
            capacity = (status.get("capacity") or {}).get("storage")
            if capacity:
                allocated += parse_quantity(capacity)
            if status.get("phase") == CLAIM_BOUND:
                requested = (
                    ((claim.get("spec") or {}).get("resources") or {}).get("requests")
                    or {}
                ).get("storage")
                if requested:
                    used += parse_quantity(requested)
        return {
            "total_allocated": format_gibibytes(allocated),
            "total_used": format_gibibytes(used),
            "pvc_count": str(len(claims)),
        }
