from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple

DISK_TYPES = ("fixed", "dynamic")
DISK_FORMATS = ("raw", "qcow2", "vmdk", "vdi", "qed", "qcow", "luks", "vpc", "VHDX")
CONTAINER_STATUSES = ("running", "stopped", "exited")
DISK_ACTIONS = ("info", "convert", "resize")

Protocol = Literal["tcp", "udp"]
DiskType = Literal["fixed", "dynamic"]
DiskFormat = Literal["raw", "qcow2", "vmdk", "vdi", "qed", "qcow", "luks", "vpc", "VHDX"]
ContainerStatus = Literal["running", "stopped", "exited"]
DiskAction = Literal["info", "convert", "resize"]


def coerce_number(value: Any) -> Any:
    """Accept numeric strings from form inputs; reject anything non-numeric."""
    if isinstance(value, bool):
        raise ValueError("must be a number")
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise ValueError("must be a number")
        return int(number) if number.is_integer() else number
    return value


def _plain_number(value: float):
    return int(value) if float(value).is_integer() else value


FormNumber = Annotated[float, BeforeValidator(coerce_number)]


class WireModel(BaseModel):
    """Immutable record exchanged with the engine, camelCase on the wire"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# Field-array records


class PortMapping(WireModel):
    # "" lets the daemon pick the host port, "0" asks for a random one
    host_port: str = Field("", alias="hostPort")
    container_port: str = Field("", alias="containerPort")
    protocol: Protocol = "tcp"

    def is_present(self) -> bool:
        return bool(self.host_port or self.container_port)


class VolumeMapping(WireModel):
    host_path: str = Field("", alias="hostPath")
    container_path: str = Field("", alias="containerPath")

    def is_present(self) -> bool:
        return bool(self.host_path and self.container_path)


class EnvVariable(WireModel):
    name: str = ""
    value: str = ""

    def is_present(self) -> bool:
        return bool(self.name and self.value)


class ContainerRunRequest(WireModel):
    image_id: str = Field(alias="imageId", min_length=1)
    container_name: Optional[str] = Field(None, alias="containerName")
    ports: Optional[Tuple[PortMapping, ...]] = None
    volumes: Optional[Tuple[VolumeMapping, ...]] = None
    env_vars: Optional[Tuple[EnvVariable, ...]] = Field(None, alias="envVars")


# Virtual disks


class DiskCreateRequest(WireModel):
    name: str = Field(min_length=1)
    size: FormNumber = Field(ge=1, allow_inf_nan=False)
    type: DiskType = "dynamic"
    format: DiskFormat = "qcow2"

    @field_serializer("size")
    def _serialize_size(self, size: float):
        return _plain_number(size)


class DiskConvertRequest(WireModel):
    new_format: DiskFormat = Field("qcow2", alias="newFormat")


class DiskResizeRequest(WireModel):
    new_size: FormNumber = Field(20, alias="newSize", ge=1, allow_inf_nan=False)

    @field_serializer("new_size")
    def _serialize_size(self, size: float):
        return _plain_number(size)


class DiskInfo(BaseModel):
    """Read-only projection of the engine's disk report"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    image: str = ""
    file_format: str = Field(
        "",
        validation_alias=AliasChoices("file_format", "fileFormat"),
        serialization_alias="fileFormat",
    )
    virtual_size: str = Field(
        "",
        validation_alias=AliasChoices("virtual_size", "virtualSize"),
        serialization_alias="virtualSize",
    )
    disk_size: str = Field(
        "",
        validation_alias=AliasChoices("disk_size", "diskSize"),
        serialization_alias="diskSize",
    )

    @field_validator("*", mode="before")
    @classmethod
    def _as_text(cls, value):
        return "" if value is None else str(value)


# Virtual machines


class VmCreateRequest(WireModel):
    name: str = Field(min_length=1)
    cpu: Annotated[int, BeforeValidator(coerce_number)] = Field(2, ge=1, le=4)
    memory: FormNumber = Field(4, ge=1, le=10)
    disk_name: str = Field(alias="diskName", min_length=1)

    def to_form(self) -> dict:
        return {
            "name": self.name,
            "cpu": str(self.cpu),
            "memory": str(_plain_number(self.memory)),
            "diskName": self.disk_name,
        }


class IsoFile(BaseModel):
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


# Docker


class DockerImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    repository: str = ""
    tag: str = ""
    created: str = ""
    size: str = ""


class DockerContainer(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    image: str = ""
    status: ContainerStatus
    created: str = ""
    ports: Any = ""


class DockerfileFolder(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    path: str


class HubImage(BaseModel):
    """Docker Hub search hit, renamed from the engine's search result fields"""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    stars: int = Field(0, validation_alias=AliasChoices("star_count", "stars"))
    official: bool = Field(
        False, validation_alias=AliasChoices("is_official", "official")
    )
    pulls: Any = Field(0, validation_alias=AliasChoices("pull_count", "pulls"))

    @field_validator("description", mode="before")
    @classmethod
    def _empty_description(cls, value):
        return value or ""


# Console surface


class Notification(BaseModel):
    level: Literal["success", "error", "info"]
    message: str
    detail: Optional[str] = None


class Outcome(BaseModel):
    """Result of one pipeline invocation"""

    action: str
    key: str
    state: Literal["succeeded", "failed", "rejected"]
    notification: Optional[Notification] = None
    result: Any = None
    errors: Optional[Dict[str, List[str]]] = None

    @property
    def ok(self) -> bool:
        return self.state == "succeeded"


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    collection: str
    version: int
    items: Tuple[Any, ...] = ()
