"""
Validation Module

Schema checks for every form before it is allowed to reach the engine.
Failures are collected per field and raised as ValidationException, so callers
can surface them without a network round-trip.
"""

from typing import Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from models import (
    DiskConvertRequest,
    DiskCreateRequest,
    DiskResizeRequest,
    VmCreateRequest,
)
from utils import ValidationException

M = TypeVar("M", bound=BaseModel)

DUPLICATE_DISK = "A disk with this name already exists."

# (field, pydantic error type) -> operator-facing message
MESSAGES = {
    ("name", "missing"): "Disk name is required",
    ("name", "string_too_short"): "Disk name is required",
    ("size", "missing"): "Size is required",
    ("size", "value_error"): "Size must be a number",
    ("size", "float_parsing"): "Size must be a number",
    ("size", "float_type"): "Size must be a number",
    ("size", "finite_number"): "Size must be a number",
    ("size", "greater_than_equal"): "Size must be at least 1 GB",
    ("type", "literal_error"): "Disk type must be fixed or dynamic",
    ("format", "literal_error"): "Unsupported disk format",
    ("newFormat", "literal_error"): "Unsupported disk format",
    ("newSize", "value_error"): "Size must be a number",
    ("newSize", "float_parsing"): "Size must be a number",
    ("newSize", "float_type"): "Size must be a number",
    ("newSize", "finite_number"): "Size must be a number",
    ("newSize", "greater_than_equal"): "Size must be at least 1 GB",
}

VM_MESSAGES = {
    ("name", "missing"): "Please enter a name for the virtual machine",
    ("name", "string_too_short"): "Please enter a name for the virtual machine",
    ("diskName", "missing"): "Please select a disk for the virtual machine",
    ("diskName", "string_too_short"): "Please select a disk for the virtual machine",
    ("cpu", "greater_than_equal"): "CPU cores must be between 1 and 4",
    ("cpu", "less_than_equal"): "CPU cores must be between 1 and 4",
    ("cpu", "value_error"): "CPU cores must be a number",
    ("cpu", "int_type"): "CPU cores must be a number",
    ("cpu", "int_parsing"): "CPU cores must be a number",
    ("cpu", "int_from_float"): "CPU cores must be a whole number",
    ("memory", "greater_than_equal"): "Memory must be between 1 and 10 GB",
    ("memory", "less_than_equal"): "Memory must be between 1 and 10 GB",
    ("memory", "value_error"): "Memory must be a number",
    ("memory", "float_type"): "Memory must be a number",
    ("memory", "float_parsing"): "Memory must be a number",
    ("memory", "finite_number"): "Memory must be a number",
}


def field_errors(
    exc: ValidationError, messages: Optional[Dict] = None
) -> Dict[str, List[str]]:
    """Group pydantic errors by top-level field with friendly messages"""
    messages = messages or {}
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else "__root__"
        message = messages.get((field, error["type"]), error["msg"])
        errors.setdefault(field, [])
        if message not in errors[field]:
            errors[field].append(message)
    return errors


def parse(model: Type[M], values: dict, messages: Optional[Dict] = None) -> M:
    """Validate ``values`` against ``model`` or raise ValidationException"""
    try:
        return model.model_validate(values)
    except ValidationError as e:
        raise ValidationException(field_errors(e, messages))


def validate_disk(values: dict) -> DiskCreateRequest:
    """Schema-only check of a disk creation descriptor"""
    return parse(DiskCreateRequest, values, MESSAGES)


def ensure_unique_disk(request: DiskCreateRequest, known_disks: Iterable[str]):
    """Business rule layered on top of the schema: names never collide"""
    if request.name in set(known_disks):
        raise ValidationException({"name": [DUPLICATE_DISK]})


def validate_new_disk(values: dict, known_disks: Iterable[str]) -> DiskCreateRequest:
    request = validate_disk(values)
    ensure_unique_disk(request, known_disks)
    return request


def validate_convert(new_format) -> DiskConvertRequest:
    return parse(DiskConvertRequest, {"newFormat": new_format}, MESSAGES)


def validate_resize(new_size) -> DiskResizeRequest:
    return parse(DiskResizeRequest, {"newSize": new_size}, MESSAGES)


def validate_vm(values: dict) -> VmCreateRequest:
    values = dict(values)
    # whitespace-only names count as empty
    if isinstance(values.get("name"), str):
        values["name"] = values["name"].strip()
    return parse(VmCreateRequest, values, VM_MESSAGES)


def validate_build(dockerfile_path: str, image_name: str):
    if not dockerfile_path:
        raise ValidationException({"dockerfilePath": ["Please select a Dockerfile"]})
    if not image_name:
        raise ValidationException({"imageName": ["Please enter an image name"]})


def validate_dockerfile(content: str, path: str):
    errors = {}
    if not path or not path.strip():
        errors["path"] = ["Please enter a file path"]
    if not content or not content.strip():
        errors["content"] = ["Dockerfile content is empty"]
    if errors:
        raise ValidationException(errors)


def validate_search_term(term: str) -> str:
    term = (term or "").strip()
    if not term:
        raise ValidationException({"term": ["Please enter a search term"]})
    return term
