"""
Disk Actions Module

Action panel for the currently selected virtual disk. Exactly one of the
``info``, ``convert`` and ``resize`` tabs is active at a time:

- selecting a disk (or switching to ``info``) while ``info`` is active asks for
  an info load; ``convert`` and ``resize`` never load anything on their own
- pending convert/resize inputs are kept per disk and survive tab switches
- the cached DiskInfo belongs to one (disk, tab) pairing; any change of either
  drops it, and a load started for an older pairing can no longer land
"""

from typing import Any, Dict, Optional

from models import DISK_ACTIONS, DiskInfo
from utils import ValidationException

DEFAULT_NEW_FORMAT = "qcow2"
DEFAULT_NEW_SIZE = 20


class PendingEdits:
    """Convert/resize inputs the operator has typed for one disk"""

    def __init__(self, new_format: str = DEFAULT_NEW_FORMAT, new_size: Any = DEFAULT_NEW_SIZE):
        self.new_format = new_format
        self.new_size = new_size

    def as_dict(self) -> Dict[str, Any]:
        return {"newFormat": self.new_format, "newSize": self.new_size}


class DiskActionPanel:
    """State machine behind the disk management card"""

    def __init__(self):
        self.selected: Optional[str] = None
        self.action = "info"
        self.info: Optional[DiskInfo] = None
        self._generation = 0
        self._edits: Dict[str, PendingEdits] = {}

    @property
    def tabs(self):
        return list(DISK_ACTIONS) if self.selected else []

    @property
    def should_load(self) -> bool:
        return self.selected is not None and self.action == "info"

    def select_disk(self, name: Optional[str]) -> bool:
        """Select ``name`` (or nothing); returns True when info must be loaded"""
        name = name or None
        if name != self.selected:
            self.selected = name
            self._invalidate()
        return self.should_load and self.info is None

    def select_action(self, action: str) -> bool:
        """Switch tabs; returns True when info must be loaded"""
        if action not in DISK_ACTIONS:
            raise ValidationException(
                {"action": [f"Unknown disk action '{action}'"]}
            )
        if self.selected is None:
            raise ValidationException({"disk": ["Please select a disk"]})
        if action != self.action:
            self.action = action
            self._invalidate()
        return self.should_load and self.info is None

    def begin_load(self) -> int:
        """Token identifying the (disk, tab) pairing an info load belongs to"""
        return self._generation

    def accept_info(self, token: int, info: DiskInfo) -> bool:
        """Cache ``info`` unless the selection moved on since the load began"""
        if token != self._generation or not self.should_load:
            return False
        self.info = info
        return True

    def invalidate_info(self, name: str):
        if name == self.selected:
            self._invalidate()

    def reconcile(self, disks):
        """Drop the selection if the disk is no longer listed"""
        if self.selected is not None and self.selected not in disks:
            self.select_disk(None)

    def edits(self, name: Optional[str] = None) -> PendingEdits:
        name = name or self.selected
        if name is None:
            raise ValidationException({"disk": ["Please select a disk"]})
        if name not in self._edits:
            self._edits[name] = PendingEdits()
        return self._edits[name]

    def set_new_format(self, value: str):
        self.edits().new_format = value

    def set_new_size(self, value):
        self.edits().new_size = value

    def view(self) -> Dict[str, Any]:
        if self.selected is None:
            return {"selected": None, "action": None, "tabs": [], "info": None}
        return {
            "selected": self.selected,
            "action": self.action,
            "tabs": self.tabs,
            "info": self.info.model_dump(by_alias=True) if self.info is not None else None,
            "pending": self.edits().as_dict(),
        }

    def _invalidate(self):
        self.info = None
        self._generation += 1
