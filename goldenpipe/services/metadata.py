import logging

from pydantic import ValidationError as ModelValidationError

from goldenpipe.clients.cluster import CONFIG_MAPS, ClusterClient
from goldenpipe.clients.http import ResourceConflict, ResourceNotFound
from goldenpipe.errors import NotFoundError, RecordUnreadable
from goldenpipe.schemas import GoldenImage
from goldenpipe.services.storage import APP_LABEL, IMAGE_LABEL, PURPOSE_LABEL


logger = logging.getLogger(__name__)

METADATA_KEY = "metadata"
METADATA_PURPOSE = "image-metadata"


def record_name(image_name: str) -> str:
    return f"golden-image-{image_name}"


def build_record_manifest(image: GoldenImage, namespace: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": record_name(image.name),
            "namespace": namespace,
            "labels": {
                "app": APP_LABEL,
                PURPOSE_LABEL: METADATA_PURPOSE,
                IMAGE_LABEL: image.name,
            },
        },
        "data": {METADATA_KEY: image.model_dump_json()},
    }


def parse_record(config_map: dict) -> GoldenImage:
    meta = config_map.get("metadata") or {}
    name = (meta.get("labels") or {}).get(IMAGE_LABEL) or meta.get("name", "")
    raw = (config_map.get("data") or {}).get(METADATA_KEY)
    if raw is None:
        raise RecordUnreadable(name, f"{METADATA_KEY!r} key missing")
    try:
        return GoldenImage.model_validate_json(raw)
    except ModelValidationError as exc:
        raise RecordUnreadable(name, str(exc)) from exc


class MetadataStore:
    """Golden image records persisted as labelled ConfigMaps, one per image."""

    def __init__(self, cluster: ClusterClient, namespace: str):
        self.cluster = cluster
        self.namespace = namespace

    def store(self, image: GoldenImage) -> None:
        manifest = build_record_manifest(image, self.namespace)
        try:
            self.cluster.create(CONFIG_MAPS, self.namespace, manifest)
        except ResourceConflict:
            self.cluster.replace(
                CONFIG_MAPS, self.namespace, record_name(image.name), manifest
            )
        logger.info("stored metadata image=%s status=%s", image.name, image.status.value)

    def get(self, image_name: str) -> GoldenImage:
        try:
            config_map = self.cluster.get(
                CONFIG_MAPS, self.namespace, record_name(image_name)
            )
        except ResourceNotFound as exc:
            raise NotFoundError("image", image_name) from exc
        return parse_record(config_map)

    def delete(self, image_name: str) -> None:
        self.cluster.delete(CONFIG_MAPS, self.namespace, record_name(image_name))
        logger.info("deleted metadata image=%s", image_name)

    def list(self) -> list[GoldenImage]:
        config_maps = self.cluster.list(
            CONFIG_MAPS,
            self.namespace,
            labels={"app": APP_LABEL, PURPOSE_LABEL: METADATA_PURPOSE},
        )
        images: list[GoldenImage] = []
        for config_map in config_maps:
            try:
                images.append(parse_record(config_map))
            except RecordUnreadable as exc:
                logger.error(
                    "skipping unreadable image metadata image=%s: %s", exc.name, exc.detail
                )
        return images
