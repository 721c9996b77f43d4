"""
Docker Console Module

Docker images, containers, Dockerfiles, builds and Docker Hub.

Every write is scoped to one resource key (container id, image id, image
name) so a pending start on one row never blocks another row. Images and
containers are never patched locally: each successful mutation is followed by
a wholesale re-fetch of the affected list.
"""

from typing import Any, Dict, Optional

from engine_client import EngineClient
from field_array import FieldArray, env_array, port_array, volume_array
from models import ContainerRunRequest, Outcome
from mutation_pipeline import MutationPipeline, ViewContext
from stores import CollectionStore, filter_containers, filter_images
from utils import (
    HUB_SEARCH_LIMIT,
    EngineException,
    ValidationException,
    logger,
    tail,
)
from validation import validate_build, validate_dockerfile, validate_search_term

DEFAULT_DOCKERFILE = (
    "FROM node:18-alpine\nWORKDIR /app\nCOPY . .\nRUN npm install\nCMD [\"npm\", \"start\"]"
)
DEFAULT_DOCKERFILE_PATH = "/path/to/Dockerfile"


def container_key(container_id: str) -> str:
    return f"container:{container_id}"


def image_key(image_id: str) -> str:
    return f"image:{image_id}"


def pull_key(image_name: str) -> str:
    return f"pull:{image_name}"


def build_log_detail(error) -> Optional[str]:
    """Last part of the build log the engine sent back, if any"""
    if isinstance(error, EngineException):
        return tail(error.logs)
    return None


class RunContainerDialog:
    """Optional settings for running a container from an image"""

    def __init__(self):
        self.is_open = False
        self.image_id: Optional[str] = None
        self.image_name = ""
        self.container_name = ""
        self.groups: Dict[str, FieldArray] = {}
        self._reset_groups()

    def _reset_groups(self):
        self.groups = {
            "ports": port_array(),
            "volumes": volume_array(),
            "envVars": env_array(),
        }

    def open(self, image_id: str, image_name: str = ""):
        self.is_open = True
        self.image_id = image_id
        self.image_name = image_name or image_id
        self.container_name = ""
        self._reset_groups()

    def close(self):
        self.is_open = False

    def group(self, name: str) -> FieldArray:
        if name not in self.groups:
            raise ValidationException({"group": [f"Unknown field group '{name}'"]})
        return self.groups[name]

    def build_request(self) -> ContainerRunRequest:
        if not self.image_id:
            raise ValidationException({"imageId": ["Please select an image to run"]})
        return ContainerRunRequest(
            image_id=self.image_id,
            container_name=self.container_name or None,
            ports=self.groups["ports"].to_submission(),
            volumes=self.groups["volumes"].to_submission(),
            env_vars=self.groups["envVars"].to_submission(),
        )

    def view(self) -> Dict[str, Any]:
        return {
            "open": self.is_open,
            "imageId": self.image_id,
            "imageName": self.image_name,
            "containerName": self.container_name,
            "ports": [r.to_payload() for r in self.groups["ports"].records],
            "volumes": [r.to_payload() for r in self.groups["volumes"].records],
            "envVars": [r.to_payload() for r in self.groups["envVars"].records],
        }


class DockerConsole:
    def __init__(self, client: EngineClient, pipeline: MutationPipeline):
        self.client = client
        self.pipeline = pipeline
        self.images = CollectionStore("images")
        self.containers = CollectionStore("containers")
        self.folders = CollectionStore("folders")
        self.hub_results = CollectionStore("hub")
        self.context = ViewContext("docker")
        self.dialog = RunContainerDialog()
        self.dockerfile_content = DEFAULT_DOCKERFILE
        self.dockerfile_path = DEFAULT_DOCKERFILE_PATH
        self.build_form = {"dockerfilePath": "", "imageName": ""}
        self.search_term = ""

    # Images

    async def refresh_images(self, announce: bool = True) -> Outcome:
        return await self.pipeline.read(
            "refresh_images",
            self.images,
            self.client.list_images,
            key="images",
            success_message="Docker images refreshed" if announce else None,
            failure_message="Failed to fetch Docker images",
            context=self.context,
        )

    async def _reload_images(self):
        await self.pipeline.read(
            "reload_images",
            self.images,
            self.client.list_images,
            failure_message="Failed to fetch Docker images",
            context=self.context,
        )

    async def delete_image(self, image_id: str) -> Outcome:
        return await self.pipeline.run(
            "delete_image",
            image_key(image_id),
            lambda: self.client.delete_image(image_id),
            on_success=lambda _: self._reload_images(),
            success_message="Image deleted successfully",
            failure_message="Failed to delete image",
            context=self.context,
        )

    def visible_images(self, term: str = ""):
        return filter_images(self.images.items, term)

    # Containers

    async def refresh_containers(self, announce: bool = True) -> Outcome:
        return await self.pipeline.read(
            "refresh_containers",
            self.containers,
            self.client.list_containers,
            key="containers",
            success_message="Container list refreshed" if announce else None,
            failure_message="Failed to fetch Docker containers",
            context=self.context,
        )

    async def _reload_containers(self):
        await self.pipeline.read(
            "reload_containers",
            self.containers,
            self.client.list_containers,
            failure_message="Failed to fetch Docker containers",
            context=self.context,
        )

    async def start_container(self, container_id: str) -> Outcome:
        return await self.pipeline.run(
            "start_container",
            container_key(container_id),
            lambda: self.client.start_container(container_id),
            on_success=lambda _: self._reload_containers(),
            success_message="Container started",
            failure_message="Failed to start container",
            context=self.context,
        )

    async def stop_container(self, container_id: str) -> Outcome:
        return await self.pipeline.run(
            "stop_container",
            container_key(container_id),
            lambda: self.client.stop_container(container_id),
            on_success=lambda _: self._reload_containers(),
            success_message="Container stopped",
            failure_message="Failed to stop container",
            context=self.context,
        )

    async def delete_container(self, container_id: str) -> Outcome:
        return await self.pipeline.run(
            "delete_container",
            container_key(container_id),
            lambda: self.client.delete_container(container_id),
            on_success=lambda _: self._reload_containers(),
            success_message="Container removed",
            failure_message="Failed to remove container",
            context=self.context,
        )

    def visible_containers(self, term: str = "", only_running: bool = False):
        return filter_containers(self.containers.items, term, only_running)

    # Run dialog

    def open_run_dialog(self, image_id: str, image_name: str = ""):
        self.dialog.open(image_id, image_name)

    async def run_container(self) -> Outcome:
        try:
            request = self.dialog.build_request()
        except ValidationException as e:
            return self.pipeline.invalid("run_container", "run:", e)

        logger.info("Running container", request=request.to_payload())

        async def created(_):
            self.dialog.close()
            await self._reload_containers()

        return await self.pipeline.run(
            "run_container",
            f"run:{request.image_id}",
            lambda: self.client.run_container(request),
            on_success=created,
            success_message="Container created successfully",
            failure_message="Failed to create container",
            context=self.context,
        )

    # Dockerfiles and builds

    async def refresh_folders(self) -> Outcome:
        return await self.pipeline.read(
            "refresh_folders",
            self.folders,
            self.client.list_folders,
            key="folders",
            failure_message="Failed to load Dockerfile folders",
            context=self.context,
        )

    async def save_dockerfile(
        self, content: Optional[str] = None, path: Optional[str] = None
    ) -> Outcome:
        if content is not None:
            self.dockerfile_content = content
        if path is not None:
            self.dockerfile_path = path

        content, path = self.dockerfile_content, self.dockerfile_path
        try:
            validate_dockerfile(content, path)
        except ValidationException as e:
            return self.pipeline.invalid("save_dockerfile", f"dockerfile:{path}", e)

        return await self.pipeline.run(
            "save_dockerfile",
            f"dockerfile:{path}",
            lambda: self.client.save_dockerfile(content, path),
            on_success=lambda _: self.pipeline.read(
                "reload_folders",
                self.folders,
                self.client.list_folders,
                failure_message="Failed to load Dockerfile folders",
                context=self.context,
            ),
            success_message="Dockerfile saved successfully",
            failure_message="Failed to save Dockerfile",
            context=self.context,
        )

    async def build_image(
        self, dockerfile_path: Optional[str] = None, image_name: Optional[str] = None
    ) -> Outcome:
        if dockerfile_path is not None:
            self.build_form["dockerfilePath"] = dockerfile_path
        if image_name is not None:
            self.build_form["imageName"] = image_name

        dockerfile_path = self.build_form["dockerfilePath"]
        image_name = self.build_form["imageName"]
        try:
            validate_build(dockerfile_path, image_name)
        except ValidationException as e:
            return self.pipeline.invalid("build_image", f"build:{image_name}", e)

        def built(result) -> str:
            if isinstance(result, dict) and result.get("message"):
                return result["message"]
            return f"Image {image_name} built successfully"

        return await self.pipeline.run(
            "build_image",
            f"build:{image_name}",
            lambda: self.client.build_image(dockerfile_path, image_name),
            on_success=lambda _: self._reload_images(),
            success_message=built,
            failure_message="Failed to build Docker image",
            failure_detail=build_log_detail,
            context=self.context,
        )

    def is_building(self, image_name: str) -> bool:
        return self.pipeline.is_busy(f"build:{image_name}")

    # Docker Hub

    async def search_hub(self, term: Optional[str] = None, page: int = 1) -> Outcome:
        if term is not None:
            self.search_term = term
        try:
            term = validate_search_term(self.search_term)
        except ValidationException as e:
            return self.pipeline.invalid("search_hub", "hub:search", e)

        return await self.pipeline.read(
            "search_hub",
            self.hub_results,
            lambda: self.client.search_hub(term, HUB_SEARCH_LIMIT, page),
            key="hub:search",
            failure_message="Failed to search Docker Hub",
            context=self.context,
        )

    @property
    def is_searching(self) -> bool:
        return self.pipeline.is_busy("hub:search")

    async def pull_image(self, image_name: str) -> Outcome:
        return await self.pipeline.run(
            "pull_image",
            pull_key(image_name),
            lambda: self.client.pull_image(image_name),
            on_success=lambda _: self._reload_images(),
            success_message=f"Successfully pulled {image_name}",
            failure_message=f"Failed to pull {image_name}",
            context=self.context,
        )

    def is_pulling(self, image_name: str) -> bool:
        return self.pipeline.is_busy(pull_key(image_name))

    def pulling(self) -> Dict[str, bool]:
        return {
            hit.name: self.is_pulling(hit.name) for hit in self.hub_results.items
        }
