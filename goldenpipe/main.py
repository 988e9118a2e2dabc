import logging

from fastapi import FastAPI

from goldenpipe.api import router
from goldenpipe.clients.cluster import ClusterClient
from goldenpipe.clients.kubeconfig import resolve_connection
from goldenpipe.config import Settings, get_settings
from goldenpipe.logging_config import configure_logging
from goldenpipe.services.control_plane import build_control_plane
from goldenpipe.services.metadata import MetadataStore
from goldenpipe.services.orchestrator import BuildOrchestrator
from goldenpipe.services.storage import StorageProvisioner


logger = logging.getLogger(__name__)


app = FastAPI(title="GoldenPipe Golden Image Service")
app.include_router(router)


def build_orchestrator(settings: Settings) -> BuildOrchestrator:
    connection = resolve_connection(settings)
    cluster = ClusterClient.from_connection(
        connection, timeout=settings.request_timeout_sec
    )
    config = settings.orchestrator_config()
    logger.info(
        "cluster client ready source=%s server=%s namespace=%s",
        connection.source,
        connection.base_url,
        config.namespace,
    )
    return BuildOrchestrator(
        config=config,
        storage=StorageProvisioner(
            cluster,
            config.namespace,
            config.storage_class,
            poll_interval_sec=config.volume_poll_interval_sec,
        ),
        metadata=MetadataStore(cluster, config.namespace),
        control_plane=build_control_plane(
            settings.control_plane_mode, cluster, config.namespace
        ),
        cluster=cluster,
    )


@app.on_event("startup")
def startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator(settings)
    try:
        app.state.orchestrator.seed_admission()
    except Exception as exc:  # noqa: BLE001
        logger.warning("could not seed admission from stored images: %s", exc)
    logger.info(
        "goldenpipe startup complete namespace=%s max_concurrent_builds=%s",
        settings.namespace,
        settings.max_concurrent_builds,
    )


@app.on_event("shutdown")
def shutdown() -> None:
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None and orchestrator.cluster is not None:
        orchestrator.cluster.close()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
