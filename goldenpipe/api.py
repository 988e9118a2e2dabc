import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from goldenpipe.clients.http import RequestFailure
from goldenpipe.errors import (
    CapacityError,
    ExternalUnavailable,
    GoldenPipeError,
    NotFoundError,
    ProvisioningError,
    ValidationError,
)
from goldenpipe.logging_config import audit_log
from goldenpipe.schemas import (
    CreateImageRequest,
    CreateImageResponse,
    GoldenImage,
    ImageListResponse,
    ImageStatusResponse,
    MessageResponse,
    MetricsSnapshot,
    VMInfo,
    VMListResponse,
)
from goldenpipe.services.orchestrator import BuildOrchestrator


router = APIRouter(prefix="/api/v1")
logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> BuildOrchestrator:
    return request.app.state.orchestrator


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _status_code_for(exc: Exception) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, CapacityError):
        return 429
    if isinstance(exc, ExternalUnavailable):
        return 503
    return 500


@router.post("/images", status_code=202, response_model=CreateImageResponse)
def create_image(
    req: CreateImageRequest,
    request: Request,
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> CreateImageResponse:
    source_ip = _client_ip(request)
    audit_log("image_creation_started", "user_request", source_ip, req.name)
    logger.info(
        "create image requested name=%s os_type=%s base_image_url=%s",
        req.name,
        req.os_type,
        req.base_image_url,
    )
    try:
        image = orchestrator.create(req)
    except ValidationError as exc:
        audit_log("image_creation_failed", "validation_error", source_ip, str(exc))
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (GoldenPipeError, RequestFailure) as exc:
        audit_log("image_creation_failed", "system_error", source_ip, str(exc))
        if isinstance(exc, ProvisioningError):
            logger.error("failed to create golden image name=%s: %s", req.name, exc)
        raise HTTPException(status_code=_status_code_for(exc), detail=str(exc)) from exc
    audit_log("image_creation_success", "user_request", source_ip, image.name)
    return CreateImageResponse(message="Golden image creation started", image=image)


@router.get("/images", response_model=ImageListResponse)
def list_images(
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> ImageListResponse:
    try:
        images = orchestrator.list_images()
    except (GoldenPipeError, RequestFailure) as exc:
        logger.error("failed to list images: %s", exc)
        raise HTTPException(status_code=_status_code_for(exc), detail=str(exc)) from exc
    return ImageListResponse(images=images, count=len(images))


@router.get("/images/{name}", response_model=GoldenImage)
def get_image(
    name: str, orchestrator: BuildOrchestrator = Depends(get_orchestrator)
) -> GoldenImage:
    try:
        return orchestrator.get_image(name)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Image not found") from exc
    except (GoldenPipeError, RequestFailure) as exc:
        logger.error("failed to get image name=%s: %s", name, exc)
        raise HTTPException(status_code=_status_code_for(exc), detail=str(exc)) from exc


@router.get("/images/{name}/status", response_model=ImageStatusResponse)
def get_image_status(
    name: str, orchestrator: BuildOrchestrator = Depends(get_orchestrator)
) -> ImageStatusResponse:
    try:
        return orchestrator.get_status(name)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (GoldenPipeError, RequestFailure) as exc:
        logger.error("failed to get image status name=%s: %s", name, exc)
        raise HTTPException(status_code=_status_code_for(exc), detail=str(exc)) from exc


@router.delete("/images/{name}", response_model=MessageResponse)
def delete_image(
    name: str,
    request: Request,
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    audit_log("image_deletion_started", "user_request", _client_ip(request), name)
    try:
        orchestrator.delete(name)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Image not found") from exc
    except (GoldenPipeError, RequestFailure) as exc:
        logger.error("failed to delete image name=%s: %s", name, exc)
        raise HTTPException(status_code=_status_code_for(exc), detail=str(exc)) from exc
    return MessageResponse(message="Image deletion started")


@router.get("/vms", response_model=VMListResponse)
def list_vms(
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> VMListResponse:
    try:
        vms = orchestrator.list_vms()
    except (GoldenPipeError, RequestFailure) as exc:
        logger.error("failed to list vms: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return VMListResponse(vms=vms, count=len(vms))


@router.get("/vms/{name}", response_model=VMInfo)
def get_vm(
    name: str, orchestrator: BuildOrchestrator = Depends(get_orchestrator)
) -> VMInfo:
    try:
        return orchestrator.get_vm(name)
    except (GoldenPipeError, RequestFailure) as exc:
        logger.error("failed to get vm name=%s: %s", name, exc)
        raise HTTPException(status_code=404, detail="VM not found") from exc


@router.delete("/vms/{name}", response_model=MessageResponse)
def delete_vm(
    name: str,
    request: Request,
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    audit_log("vm_deletion_started", "user_request", _client_ip(request), name)
    try:
        orchestrator.delete_vm(name)
    except (GoldenPipeError, RequestFailure) as exc:
        logger.error("failed to delete vm name=%s: %s", name, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return MessageResponse(message="VM deletion started")


@router.get("/health")
def health(orchestrator: BuildOrchestrator = Depends(get_orchestrator)) -> JSONResponse:
    try:
        healthy = orchestrator.health()
    except (GoldenPipeError, RequestFailure) as exc:
        logger.error("health check failed: %s", exc)
        return JSONResponse(
            status_code=503, content={"status": "unhealthy", "error": str(exc)}
        )
    if not healthy:
        return JSONResponse(status_code=503, content={"status": "unhealthy"})
    return JSONResponse(status_code=200, content={"status": "healthy"})


@router.get("/metrics", response_model=MetricsSnapshot)
def metrics_endpoint(
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> MetricsSnapshot:
    try:
        return orchestrator.metrics()
    except (GoldenPipeError, RequestFailure) as exc:
        logger.error("failed to collect metrics: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
