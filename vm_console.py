"""
VM Console Module

Virtual machine provisioning form: CPU, memory, boot disk and an optional ISO
upload, submitted to the engine as multipart form data.
"""

from typing import Any, Dict, Optional

from engine_client import EngineClient
from models import IsoFile, Outcome
from mutation_pipeline import MutationPipeline, ViewContext
from notifications import Notifier
from stores import CollectionStore
from utils import ValidationException, logger
from validation import validate_vm

DEFAULT_VM_FORM = {"name": "", "cpu": 2, "memory": 4, "diskName": ""}


class VmConsole:
    def __init__(
        self,
        client: EngineClient,
        pipeline: MutationPipeline,
        notifier: Notifier,
        disks: CollectionStore,
    ):
        self.client = client
        self.pipeline = pipeline
        self.notifier = notifier
        self.disks = disks
        self.context = ViewContext("vms")
        self.form: Dict[str, Any] = dict(DEFAULT_VM_FORM)
        self.iso_file: Optional[IsoFile] = None

    @property
    def can_submit(self) -> bool:
        """A VM needs at least one disk to boot from"""
        return bool(self.disks.items)

    def update_form(self, **fields):
        self.form.update(fields)

    def set_iso(self, iso_file: IsoFile):
        self.iso_file = iso_file
        self.notifier.success(f"ISO file selected: {iso_file.filename}")

    def clear_iso(self):
        self.iso_file = None

    def reset(self):
        self.form = dict(DEFAULT_VM_FORM)
        self.iso_file = None

    async def create_vm(self, values: Optional[Dict[str, Any]] = None) -> Outcome:
        if values:
            self.update_form(**values)

        try:
            request = validate_vm(self.form)
            if self.disks.loaded and request.disk_name not in self.disks.items:
                raise ValidationException(
                    {"diskName": ["Please select a disk for the virtual machine"]}
                )
        except ValidationException as e:
            return self.pipeline.invalid("create_vm", f"vm:{self.form.get('name', '')}", e)

        logger.info(
            "Creating virtual machine",
            vm=request.to_form(),
            iso=self.iso_file.filename if self.iso_file else None,
        )
        iso_file = self.iso_file

        return await self.pipeline.run(
            "create_vm",
            f"vm:{request.name}",
            lambda: self.client.create_vm(request, iso_file),
            on_success=lambda _: self.reset(),
            success_message="Virtual machine created successfully!",
            failure_message="An error occurred while creating or registering the VM",
            context=self.context,
        )

    def view(self) -> Dict[str, Any]:
        return {
            "form": dict(self.form),
            "isoFile": self.iso_file.filename if self.iso_file else None,
            "disks": list(self.disks.items),
            "canSubmit": self.can_submit,
        }
