"""
Engine Client Module

Async HTTP client for the remote host engine (virtual disks, VMs, Docker).
Every call either returns decoded JSON or raises one of:

- TransportException: the engine could not be reached
- EngineException: the engine answered with a non-2xx status; carries the
  server's ``message``/``error`` text and the raw payload (e.g. build ``logs``)
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from models import (
    ContainerRunRequest,
    DiskConvertRequest,
    DiskCreateRequest,
    DiskInfo,
    DiskResizeRequest,
    DockerContainer,
    DockerfileFolder,
    DockerImage,
    HubImage,
    IsoFile,
    VmCreateRequest,
)
from utils import ENGINE_TIMEOUT, ENGINE_URL, EngineException, TransportException, logger


def error_message(payload: Any) -> Optional[str]:
    """Pull a human-readable message out of an engine error body"""
    if not isinstance(payload, dict):
        return None
    for field in ("message", "error", "detail"):
        value = payload.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def segment(value) -> str:
    """Escape one path segment so names like `a#b` or `x/y` stay whole"""
    return quote(str(value), safe="")


def parse_item(model, data):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning("Unexpected engine payload", model=model.__name__, error=str(e))
        raise EngineException("Unexpected response from engine", 502)


def parse_items(model, data) -> list:
    if not isinstance(data, list):
        raise EngineException("Unexpected response from engine", 502)
    return [parse_item(model, item) for item in data]


class EngineClient:
    """Thin async wrapper over the engine's REST API"""

    def __init__(
        self,
        base_url: str = ENGINE_URL,
        timeout: float = ENGINE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(
                "Engine unreachable", method=method, path=path, error=str(e)
            )
            raise TransportException()

        payload = self._decode(response)
        if response.is_error:
            message = error_message(payload)
            logger.warning(
                "Engine request failed",
                method=method,
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise EngineException(
                message,
                response.status_code,
                payload if isinstance(payload, dict) else None,
            )
        return payload

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    # Virtual disks

    async def list_disks(self) -> List[str]:
        data = await self.request("GET", "/api/virtual-disk") or []
        if not isinstance(data, list):
            raise EngineException("Unexpected response from engine", 502)
        return [str(name) for name in data]

    async def disk_info(self, name: str) -> DiskInfo:
        data = await self.request("GET", f"/api/virtual-disk/info/{segment(name)}") or {}
        return parse_item(DiskInfo, data)

    async def create_disk(self, request: DiskCreateRequest):
        return await self.request("POST", "/api/virtual-disk", json=request.to_payload())

    async def convert_disk(self, name: str, request: DiskConvertRequest):
        return await self.request(
            "POST", f"/api/virtual-disk/convert/{segment(name)}", json=request.to_payload()
        )

    async def resize_disk(self, name: str, request: DiskResizeRequest):
        return await self.request(
            "POST", f"/api/virtual-disk/resize/{segment(name)}", json=request.to_payload()
        )

    # Virtual machines

    async def create_vm(
        self, request: VmCreateRequest, iso_file: Optional[IsoFile] = None
    ) -> Dict[str, Any]:
        # (None, value) parts keep the body multipart even without an upload
        files = {field: (None, value) for field, value in request.to_form().items()}
        if iso_file is not None:
            files["isoFile"] = (
                iso_file.filename,
                iso_file.content,
                iso_file.content_type,
            )
        return await self.request("POST", "/api/vms", files=files) or {}

    # Docker images

    async def list_images(self) -> List[DockerImage]:
        data = await self.request("GET", "/api/docker/images") or []
        return parse_items(DockerImage, data)

    async def delete_image(self, image_id: str):
        return await self.request("DELETE", f"/api/docker/images/{segment(image_id)}")

    # Docker containers

    async def list_containers(self) -> List[DockerContainer]:
        data = await self.request("GET", "/api/docker/containers") or []
        return parse_items(DockerContainer, data)

    async def run_container(self, request: ContainerRunRequest):
        return await self.request(
            "POST", "/api/docker/containers", json=request.to_payload()
        )

    async def start_container(self, container_id: str):
        return await self.request("POST", f"/api/docker/containers/{segment(container_id)}/start")

    async def stop_container(self, container_id: str):
        return await self.request("POST", f"/api/docker/containers/{segment(container_id)}/stop")

    async def delete_container(self, container_id: str):
        return await self.request("DELETE", f"/api/docker/containers/{segment(container_id)}")

    # Dockerfiles and builds

    async def list_folders(self) -> List[DockerfileFolder]:
        data = await self.request("GET", "/api/docker/folders") or []
        return parse_items(DockerfileFolder, data)

    async def save_dockerfile(self, content: str, path: str):
        return await self.request(
            "POST", "/api/dockerfile", json={"content": content, "path": path}
        )

    async def build_image(self, dockerfile_path: str, image_name: str):
        return await self.request(
            "POST",
            "/api/docker/build",
            json={"dockerfilePath": dockerfile_path, "imageName": image_name},
        )

    # Docker Hub

    async def search_hub(self, term: str, limit: int, page: int = 1) -> List[HubImage]:
        data = await self.request(
            "GET",
            "/api/docker/search",
            params={"term": term, "limit": limit, "page": page},
        ) or {}
        if not isinstance(data, dict):
            raise EngineException("Unexpected response from engine", 502)
        return parse_items(HubImage, data.get("results") or [])

    async def pull_image(self, image_name: str):
        return await self.request(
            "POST", "/api/docker/pull", json={"imageName": image_name}
        )
