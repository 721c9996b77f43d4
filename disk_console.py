"""
Disk Console Module

Virtual disk operations: list, create, inspect, convert and resize.
Writes always go through the mutation pipeline keyed by disk name and are
followed by an authoritative re-fetch of the disk list.
"""

from typing import Any, Dict, Optional

from disk_actions import DiskActionPanel
from engine_client import EngineClient
from models import Outcome
from mutation_pipeline import MutationPipeline, ViewContext
from stores import CollectionStore
from utils import ValidationException, logger
from validation import validate_convert, validate_new_disk, validate_resize

DEFAULT_DISK_FORM = {"name": "", "size": 20, "type": "dynamic", "format": "qcow2"}


def disk_key(name: str) -> str:
    return f"disk:{name}"


class DiskConsole:
    """Disk creation form, disk list and the per-disk action panel"""

    def __init__(
        self,
        client: EngineClient,
        pipeline: MutationPipeline,
        store: Optional[CollectionStore] = None,
    ):
        self.client = client
        self.pipeline = pipeline
        self.store = store or CollectionStore("disks")
        self.panel = DiskActionPanel()
        self.context = ViewContext("disks")
        self.form: Dict[str, Any] = dict(DEFAULT_DISK_FORM)

    @property
    def disks(self):
        return self.store.items

    async def refresh(self) -> Outcome:
        """Operator-triggered reload of the disk list"""
        outcome = await self.pipeline.read(
            "refresh_disks",
            self.store,
            self.client.list_disks,
            key="disks",
            failure_message="Failed to load available disks",
            context=self.context,
        )
        if outcome.ok:
            self.panel.reconcile(self.store.items)
        return outcome

    async def _reload(self):
        outcome = await self.pipeline.read(
            "reload_disks",
            self.store,
            self.client.list_disks,
            failure_message="Failed to load available disks",
            context=self.context,
        )
        if outcome.ok:
            self.panel.reconcile(self.store.items)

    # Create

    def update_form(self, **fields):
        self.form.update(fields)

    def reset_form(self):
        self.form = dict(DEFAULT_DISK_FORM)

    async def create_disk(self, values: Optional[Dict[str, Any]] = None) -> Outcome:
        """Validate the creation form and submit it

        The form buffer keeps whatever the operator typed until the engine
        accepts it, so a failed attempt can be retried as-is.
        """
        if values:
            self.update_form(**values)

        try:
            request = validate_new_disk(self.form, self.store.items)
        except ValidationException as e:
            return self.pipeline.invalid("create_disk", disk_key(self.form.get("name") or ""), e)

        logger.info("Creating virtual disk", disk=request.to_payload())

        async def created(_):
            self.reset_form()
            await self._reload()

        return await self.pipeline.run(
            "create_disk",
            disk_key(request.name),
            lambda: self.client.create_disk(request),
            on_success=created,
            success_message="Virtual disk created successfully!",
            failure_message="Error creating virtual disk",
            context=self.context,
        )

    # Action panel

    async def select_disk(self, name: Optional[str]) -> Optional[Outcome]:
        if name and self.store.loaded and name not in self.store.items:
            raise ValidationException({"disk": [f"Unknown disk '{name}'"]})
        if self.panel.select_disk(name):
            return await self.load_info()
        return None

    async def select_action(self, action: str) -> Optional[Outcome]:
        if self.panel.select_action(action):
            return await self.load_info()
        return None

    async def load_info(self) -> Outcome:
        name = self.panel.selected
        token = self.panel.begin_load()
        return await self.pipeline.run(
            "disk_info",
            None,
            lambda: self.client.disk_info(name),
            on_success=lambda info: self.panel.accept_info(token, info),
            failure_message="Failed to fetch disk info",
            context=self.context,
        )

    def set_new_format(self, value: str):
        self.panel.set_new_format(value)

    def set_new_size(self, value):
        self.panel.set_new_size(value)

    async def convert(self) -> Outcome:
        name = self.panel.selected
        if name is None:
            return Outcome(action="convert_disk", key="disk:", state="rejected")

        try:
            request = validate_convert(self.panel.edits(name).new_format)
        except ValidationException as e:
            return self.pipeline.invalid("convert_disk", disk_key(name), e)

        return await self.pipeline.run(
            "convert_disk",
            disk_key(name),
            lambda: self.client.convert_disk(name, request),
            on_success=lambda _: self._changed(name),
            success_message="Disk format converted successfully!",
            failure_message="Error converting disk format",
            context=self.context,
        )

    async def resize(self) -> Outcome:
        name = self.panel.selected
        if name is None:
            return Outcome(action="resize_disk", key="disk:", state="rejected")

        try:
            request = validate_resize(self.panel.edits(name).new_size)
        except ValidationException as e:
            return self.pipeline.invalid("resize_disk", disk_key(name), e)

        return await self.pipeline.run(
            "resize_disk",
            disk_key(name),
            lambda: self.client.resize_disk(name, request),
            on_success=lambda _: self._changed(name),
            success_message="Disk resized successfully!",
            failure_message="Error resizing disk",
            context=self.context,
        )

    async def _changed(self, name: str):
        self.panel.invalidate_info(name)
        await self._reload()
        if self.panel.selected == name and self.panel.should_load:
            await self.load_info()

    def view(self) -> Dict[str, Any]:
        return {
            "disks": list(self.store.items),
            "form": dict(self.form),
            "panel": self.panel.view(),
        }
