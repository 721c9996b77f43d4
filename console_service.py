"""
Console Service Module - Main Interface

Wires one operator session together: engine client, notifier, mutation
pipeline, stores and the per-area consoles. Server routes only talk to a
ConsoleSession.

Structure:
- engine_client.py: HTTP access to the remote engine
- mutation_pipeline.py: busy flags, outcomes, authoritative re-fetches
- stores.py: snapshot stores per collection
- disk_console.py / disk_actions.py: virtual disks
- vm_console.py: virtual machines
- docker_console.py / field_array.py: Docker images, containers, builds, Hub
"""

import asyncio
from typing import Dict, List, Optional

from disk_console import DiskConsole
from docker_console import DockerConsole
from engine_client import EngineClient
from mutation_pipeline import MutationPipeline
from notifications import Notifier
from stores import CollectionStore
from utils import logger
from vm_console import VmConsole


class ConsoleSession:
    """Everything one operator's console holds between requests"""

    def __init__(self, client: Optional[EngineClient] = None):
        self.client = client or EngineClient()
        self.notifier = Notifier()
        self.pipeline = MutationPipeline(self.notifier)
        self.disks = DiskConsole(self.client, self.pipeline)
        self.vms = VmConsole(self.client, self.pipeline, self.notifier, self.disks.store)
        self.docker = DockerConsole(self.client, self.pipeline)

    @property
    def stores(self) -> Dict[str, CollectionStore]:
        return {
            store.collection: store
            for store in (
                self.disks.store,
                self.docker.images,
                self.docker.containers,
                self.docker.folders,
                self.docker.hub_results,
            )
        }

    async def load(self) -> List:
        """Initial fetch of every list the console shows"""
        logger.info("Loading console state", engine_url=self.client.base_url)
        return await asyncio.gather(
            self.disks.refresh(),
            self.docker.refresh_folders(),
            self.docker.refresh_images(announce=False),
            self.docker.refresh_containers(announce=False),
        )

    async def close(self):
        for context in (self.disks.context, self.vms.context, self.docker.context):
            context.unmount()
        await self.client.aclose()
        logger.info("Console session closed")


def create_session(client: Optional[EngineClient] = None) -> ConsoleSession:
    return ConsoleSession(client)


__all__ = [
    "ConsoleSession",
    "create_session",
    "EngineClient",
    "MutationPipeline",
    "Notifier",
    "DiskConsole",
    "DockerConsole",
    "VmConsole",
]
