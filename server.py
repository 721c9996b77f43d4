from fastapi import (
    FastAPI,
    HTTPException,
    Depends,
    File,
    Form,
    Header,
    Request,
    Response,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from console_service import ConsoleSession, create_session
from models import DiskAction, IsoFile
from utils import (
    logger,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    log_request,
    get_metrics,
    health_check,
    ConsoleException,
    ValidationException,
)
from validation import field_errors
from dotenv import load_dotenv
import os
import asyncio
import time

from typing import Any, Dict, Optional
from prometheus_client import CONTENT_TYPE_LATEST

load_dotenv()

MUTATION_LIMIT = os.getenv("MUTATION_RATE_LIMIT", "60/minute")

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="Host Console",
    description="Operator console for virtual disks, virtual machines and Docker",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=os.getenv("ALLOWED_HOSTS", "*").split(","),
)

session: Optional[ConsoleSession] = None


def get_session() -> ConsoleSession:
    global session
    if session is None:
        session = create_session()
    return session


# Authentication dependency
async def verify_console_token(authorization: Optional[str] = Header(None)):
    """Verify that the request carries the console token"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    expected_token = os.getenv("CONSOLE_TOKEN", "default-console-token")
    if authorization != f"Bearer {expected_token}":
        raise HTTPException(status_code=403, detail="Invalid console token")

    return True


# Request bodies


class SelectDisk(BaseModel):
    name: Optional[str] = None


class SelectAction(BaseModel):
    action: DiskAction


class ConvertInput(BaseModel):
    newFormat: str


class ResizeInput(BaseModel):
    newSize: Any


class RunDialogOpen(BaseModel):
    imageId: str
    imageName: str = ""


class FieldUpdate(BaseModel):
    field: str
    value: str


class ContainerName(BaseModel):
    containerName: str = ""


class DockerfileInput(BaseModel):
    content: Optional[str] = None
    path: Optional[str] = None


class BuildInput(BaseModel):
    dockerfilePath: Optional[str] = None
    imageName: Optional[str] = None


class SearchInput(BaseModel):
    term: str = ""
    page: int = 1


class PullInput(BaseModel):
    imageName: str


# Request/Response middleware for logging and metrics
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    response_time = time.time() - start_time
    log_request(request, response_time, response.status_code)

    REQUEST_COUNT.labels(
        method=request.method, endpoint=request.url.path, status=response.status_code
    ).inc()
    REQUEST_LATENCY.observe(response_time)

    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error("Validation error", errors=exc.errors())
    return JSONResponse(
        status_code=422,
        content={"detail": "Validation error", "errors": exc.errors()},
    )


@app.exception_handler(ValidationException)
async def form_exception_handler(request: Request, exc: ValidationException):
    logger.warning("Form rejected", errors=exc.errors)
    return JSONResponse(
        status_code=422,
        content={"detail": exc.message, "error_code": exc.error_code, "errors": exc.errors},
    )


@app.exception_handler(ConsoleException)
async def console_exception_handler(request: Request, exc: ConsoleException):
    logger.error(
        "Console exception",
        error_code=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unexpected error", error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_code": "INTERNAL_ERROR"},
    )


# Virtual disks


@app.get("/console/disks")
async def get_disks(
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    """Disk list, creation form and action panel"""
    return console.disks.view()


@app.post("/console/disks/refresh")
async def refresh_disks(
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return await console.disks.refresh()


@app.post("/console/disks")
@limiter.limit(MUTATION_LIMIT)
async def create_disk(
    values: Dict[str, Any],
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    """Validate and submit the disk creation form"""
    logger.info("Create disk requested", values=values)
    return await console.disks.create_disk(values)


@app.get("/console/disks/panel")
async def get_disk_panel(
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return console.disks.panel.view()


@app.post("/console/disks/select")
async def select_disk(
    body: SelectDisk,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    await console.disks.select_disk(body.name)
    return console.disks.panel.view()


@app.post("/console/disks/action")
async def select_disk_action(
    body: SelectAction,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    await console.disks.select_action(body.action)
    return console.disks.panel.view()


@app.put("/console/disks/convert")
async def edit_convert(
    body: ConvertInput,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    console.disks.set_new_format(body.newFormat)
    return console.disks.panel.view()


@app.put("/console/disks/resize")
async def edit_resize(
    body: ResizeInput,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    console.disks.set_new_size(body.newSize)
    return console.disks.panel.view()


@app.post("/console/disks/convert")
@limiter.limit(MUTATION_LIMIT)
async def convert_disk(
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return await console.disks.convert()


@app.post("/console/disks/resize")
@limiter.limit(MUTATION_LIMIT)
async def resize_disk(
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return await console.disks.resize()


# Virtual machines


@app.get("/console/vms")
async def get_vm_form(
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return console.vms.view()


@app.post("/console/vms")
@limiter.limit(MUTATION_LIMIT)
async def create_vm(
    request: Request,
    name: str = Form(""),
    cpu: str = Form("2"),
    memory: str = Form("4"),
    diskName: str = Form(""),
    isoFile: Optional[UploadFile] = File(None),
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    """Create a VM from the multipart form the browser posts"""
    if isoFile is not None and isoFile.filename:
        console.vms.set_iso(
            IsoFile(
                filename=isoFile.filename,
                content=await isoFile.read(),
                content_type=isoFile.content_type or "application/octet-stream",
            )
        )
    return await console.vms.create_vm(
        {"name": name, "cpu": cpu, "memory": memory, "diskName": diskName}
    )


# Docker images


@app.get("/console/images")
async def get_images(
    term: str = "",
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return console.docker.visible_images(term)


@app.post("/console/images/refresh")
async def refresh_images(
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return await console.docker.refresh_images()


@app.delete("/console/images/{image_id}")
@limiter.limit(MUTATION_LIMIT)
async def delete_image(
    image_id: str,
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    logger.info("Deleting image", image_id=image_id)
    return await console.docker.delete_image(image_id)


# Docker containers


@app.get("/console/containers")
async def get_containers(
    term: str = "",
    running: bool = False,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return console.docker.visible_containers(term, running)


@app.post("/console/containers/refresh")
async def refresh_containers(
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return await console.docker.refresh_containers()


@app.post("/console/containers/{container_id}/start")
@limiter.limit(MUTATION_LIMIT)
async def start_container(
    container_id: str,
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    logger.info("Starting container", container_id=container_id)
    return await console.docker.start_container(container_id)


@app.post("/console/containers/{container_id}/stop")
@limiter.limit(MUTATION_LIMIT)
async def stop_container(
    container_id: str,
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    logger.info("Stopping container", container_id=container_id)
    return await console.docker.stop_container(container_id)


@app.delete("/console/containers/{container_id}")
@limiter.limit(MUTATION_LIMIT)
async def delete_container(
    container_id: str,
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    logger.info("Removing container", container_id=container_id)
    return await console.docker.delete_container(container_id)


# Run-container dialog


@app.get("/console/run-dialog")
async def get_run_dialog(
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return console.docker.dialog.view()


@app.post("/console/run-dialog/open")
async def open_run_dialog(
    body: RunDialogOpen,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    console.docker.open_run_dialog(body.imageId, body.imageName)
    return console.docker.dialog.view()


@app.put("/console/run-dialog/name")
async def set_container_name(
    body: ContainerName,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    console.docker.dialog.container_name = body.containerName
    return console.docker.dialog.view()


@app.post("/console/run-dialog/{group}/append")
async def append_row(
    group: str,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    console.docker.dialog.group(group).append()
    return console.docker.dialog.view()


@app.put("/console/run-dialog/{group}/{index}")
async def update_row(
    group: str,
    index: int,
    body: FieldUpdate,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    rows = console.docker.dialog.group(group)
    try:
        rows.update(index, body.field, body.value)
    except KeyError:
        raise ValidationException({"field": [f"Unknown field '{body.field}'"]})
    except ValidationError as e:
        raise ValidationException(field_errors(e))
    return console.docker.dialog.view()


@app.post("/console/run-dialog/submit")
@limiter.limit(MUTATION_LIMIT)
async def submit_run_dialog(
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return await console.docker.run_container()


# Dockerfiles and builds


@app.get("/console/folders")
async def get_folders(
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return console.docker.folders.items


@app.post("/console/dockerfile")
@limiter.limit(MUTATION_LIMIT)
async def save_dockerfile(
    body: DockerfileInput,
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    return await console.docker.save_dockerfile(body.content, body.path)


@app.post("/console/build")
@limiter.limit(MUTATION_LIMIT)
async def build_image(
    body: BuildInput,
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    logger.info("Build requested", dockerfile=body.dockerfilePath, image=body.imageName)
    return await console.docker.build_image(body.dockerfilePath, body.imageName)


# Docker Hub


@app.post("/console/hub/search")
async def search_hub(
    body: SearchInput,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    outcome = await console.docker.search_hub(body.term, body.page)
    return {
        "outcome": outcome,
        "results": console.docker.hub_results.items,
        "pulling": console.docker.pulling(),
    }


@app.post("/console/hub/pull")
@limiter.limit(MUTATION_LIMIT)
async def pull_image(
    body: PullInput,
    request: Request,
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    logger.info("Pulling image", image=body.imageName)
    return await console.docker.pull_image(body.imageName)


# Notifications and snapshots


@app.get("/console/notifications")
async def get_notifications(
    console: ConsoleSession = Depends(get_session),
    _: bool = Depends(verify_console_token),
):
    """Drain pending notifications"""
    return console.notifier.drain()


@app.websocket("/ws/snapshots")
async def snapshot_websocket(websocket: WebSocket):
    """Push every collection snapshot replacement to the presentation layer"""
    token = websocket.query_params.get("token")
    if token != os.getenv("CONSOLE_TOKEN", "default-console-token"):
        await websocket.close(code=1008)
        return

    await websocket.accept()
    console = get_session()
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribers = [
        store.subscribe(queue.put_nowait) for store in console.stores.values()
    ]
    logger.info("Snapshot subscriber connected")

    async def forward():
        while True:
            snapshot = await queue.get()
            await websocket.send_json(snapshot.model_dump(mode="json"))

    for store in console.stores.values():
        await websocket.send_json(store.snapshot.model_dump(mode="json"))
    sender = asyncio.create_task(forward())

    try:
        while True:
            # Client messages are ignored; receiving only detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Snapshot subscriber disconnected")
    finally:
        sender.cancel()
        for unsubscribe in unsubscribers:
            unsubscribe()


@app.get("/health", status_code=200)
async def health_endpoint():
    return health_check()


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": "Host Console",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


@app.on_event("startup")
async def startup_tasks():
    logger.info("Starting Host Console")
    await get_session().load()
    logger.info("Host Console started")


@app.on_event("shutdown")
async def shutdown_tasks():
    global session
    logger.info("Shutting down Host Console")
    if session is not None:
        await session.close()
        session = None
    logger.info("Host Console shutdown complete")
