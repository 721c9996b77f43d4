import pytest

from models import DiskCreateRequest
from utils import ValidationException
from validation import (
    DUPLICATE_DISK,
    ensure_unique_disk,
    validate_build,
    validate_convert,
    validate_disk,
    validate_dockerfile,
    validate_new_disk,
    validate_resize,
    validate_search_term,
    validate_vm,
)


class TestDiskValidation:
    """Schema checks for the disk creation form"""

    def test_valid_disk(self):
        request = validate_disk({"name": "data", "size": 20, "type": "fixed", "format": "raw"})
        assert request.to_payload() == {
            "name": "data",
            "size": 20,
            "type": "fixed",
            "format": "raw",
        }

    def test_numeric_string_size_is_accepted(self):
        request = validate_disk({"name": "data", "size": "40"})
        assert request.to_payload()["size"] == 40

    def test_fractional_size_is_kept(self):
        request = validate_disk({"name": "data", "size": "1.5"})
        assert request.to_payload()["size"] == 1.5

    def test_defaults_are_dynamic_qcow2(self):
        request = validate_disk({"name": "data", "size": 10})
        assert request.type == "dynamic"
        assert request.format == "qcow2"

    def test_empty_name(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_disk({"name": "", "size": 20})
        assert exc_info.value.errors == {"name": ["Disk name is required"]}
        assert exc_info.value.message == "Disk name is required"

    @pytest.mark.parametrize("size", ["abc", "", None, True])
    def test_non_numeric_size(self, size):
        with pytest.raises(ValidationException) as exc_info:
            validate_disk({"name": "data", "size": size})
        assert exc_info.value.errors["size"] == ["Size must be a number"]

    @pytest.mark.parametrize("size", [0, "0.5", -3])
    def test_size_below_one(self, size):
        with pytest.raises(ValidationException) as exc_info:
            validate_disk({"name": "data", "size": size})
        assert exc_info.value.errors["size"] == ["Size must be at least 1 GB"]

    def test_unknown_format(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_disk({"name": "data", "size": 20, "format": "iso"})
        assert exc_info.value.errors == {"format": ["Unsupported disk format"]}

    def test_errors_reported_for_every_field(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_disk({"name": "", "size": "x", "type": "sparse"})
        assert set(exc_info.value.errors) == {"name", "size", "type"}


class TestDiskUniqueness:
    """Name collisions are checked after the schema"""

    def test_duplicate_name(self):
        request = DiskCreateRequest(name="alpha", size=20)
        with pytest.raises(ValidationException) as exc_info:
            ensure_unique_disk(request, ["alpha", "beta"])
        assert exc_info.value.errors == {"name": [DUPLICATE_DISK]}

    def test_unique_name(self):
        request = validate_new_disk({"name": "gamma", "size": 20}, ["alpha"])
        assert request.name == "gamma"

    def test_schema_error_wins_over_duplicate(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_new_disk({"name": "alpha", "size": 0}, ["alpha"])
        assert "size" in exc_info.value.errors


class TestDiskActionValidation:
    def test_convert_format(self):
        assert validate_convert("vmdk").to_payload() == {"newFormat": "vmdk"}

    def test_convert_unknown_format(self):
        with pytest.raises(ValidationException):
            validate_convert("zip")

    def test_resize_from_text(self):
        assert validate_resize("64").to_payload() == {"newSize": 64}

    def test_resize_too_small(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_resize(0)
        assert exc_info.value.errors == {"newSize": ["Size must be at least 1 GB"]}


class TestVmValidation:
    def test_valid_vm(self):
        request = validate_vm({"name": " web ", "cpu": "2", "memory": "4", "diskName": "alpha.qcow2"})
        assert request.name == "web"
        assert request.to_form() == {
            "name": "web",
            "cpu": "2",
            "memory": "4",
            "diskName": "alpha.qcow2",
        }

    def test_blank_name(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_vm({"name": "   ", "cpu": 2, "memory": 4, "diskName": "alpha.qcow2"})
        assert exc_info.value.errors == {
            "name": ["Please enter a name for the virtual machine"]
        }

    def test_missing_disk(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_vm({"name": "web", "cpu": 2, "memory": 4, "diskName": ""})
        assert "diskName" in exc_info.value.errors

    @pytest.mark.parametrize("cpu", [0, 5])
    def test_cpu_range(self, cpu):
        with pytest.raises(ValidationException) as exc_info:
            validate_vm({"name": "web", "cpu": cpu, "memory": 4, "diskName": "d"})
        assert exc_info.value.errors == {"cpu": ["CPU cores must be between 1 and 4"]}

    @pytest.mark.parametrize("memory", [0, 11])
    def test_memory_range(self, memory):
        with pytest.raises(ValidationException) as exc_info:
            validate_vm({"name": "web", "cpu": 1, "memory": memory, "diskName": "d"})
        assert exc_info.value.errors == {"memory": ["Memory must be between 1 and 10 GB"]}

    @pytest.mark.parametrize(
        "values, errors",
        [
            ({"cpu": "abc"}, {"cpu": ["CPU cores must be a number"]}),
            ({"cpu": "2.5"}, {"cpu": ["CPU cores must be a whole number"]}),
            ({"cpu": None}, {"cpu": ["CPU cores must be a number"]}),
            ({"memory": "abc"}, {"memory": ["Memory must be a number"]}),
            ({"memory": True}, {"memory": ["Memory must be a number"]}),
        ],
    )
    def test_non_numeric_resources(self, values, errors):
        form = {"name": "web", "cpu": 2, "memory": 4, "diskName": "d"}
        form.update(values)
        with pytest.raises(ValidationException) as exc_info:
            validate_vm(form)
        assert exc_info.value.errors == errors


class TestDockerValidation:
    def test_build_requires_dockerfile(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_build("", "app:1")
        assert exc_info.value.message == "Please select a Dockerfile"

    def test_build_requires_image_name(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_build("/srv/Dockerfile", "")
        assert exc_info.value.message == "Please enter an image name"

    def test_dockerfile_requires_path_and_content(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_dockerfile("  ", "")
        assert set(exc_info.value.errors) == {"path", "content"}

    def test_search_term_is_trimmed(self):
        assert validate_search_term("  nginx ") == "nginx"

    def test_blank_search_term(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_search_term("   ")
        assert exc_info.value.message == "Please enter a search term"
