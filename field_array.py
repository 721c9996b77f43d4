"""
Field Array Module

Ordered, user-editable lists of structured records (ports, volumes,
environment variables) backing the repeatable rows of the run-container form.
Pure state transformation: nothing here touches the network or the stores.
"""

from typing import Generic, Iterator, List, Optional, Tuple, Type, TypeVar

from models import EnvVariable, PortMapping, VolumeMapping, WireModel

R = TypeVar("R", bound=WireModel)


class FieldArray(Generic[R]):
    """Edit buffer for one group of records sharing a single shape"""

    def __init__(self, record_type: Type[R], initial: Tuple[R, ...] = ()):
        self.record_type = record_type
        self._initial = tuple(initial)
        self._records: List[R] = list(self._initial)

    def __len__(self):
        return len(self._records)

    def __getitem__(self, index: int) -> R:
        return self._records[index]

    def entries(self) -> Iterator[Tuple[int, R]]:
        """Yield (index, record) pairs; indices passed to update() come from here"""
        return iter(list(enumerate(self._records)))

    @property
    def records(self) -> Tuple[R, ...]:
        return tuple(self._records)

    def append(self, record: Optional[R] = None) -> R:
        """Append a record built from caller-supplied defaults"""
        if record is None:
            record = self.record_type()
        self._records.append(record)
        return record

    def update(self, index: int, field: str, value) -> Optional[R]:
        """Replace one field of the record at ``index``

        Out-of-range indices are ignored. ``field`` may be given by its wire
        name (``hostPort``) or its attribute name (``host_port``).
        """
        if not 0 <= index < len(self._records):
            return None

        name = self._field_name(field)
        current = self._records[index]
        values = current.model_dump()
        values[name] = value
        updated = self.record_type.model_validate(values)
        self._records[index] = updated
        return updated

    def to_submission(self) -> Optional[Tuple[R, ...]]:
        """Present records in original order, or None when none qualify"""
        present = tuple(record for record in self._records if record.is_present())
        return present or None

    def reset(self):
        self._records = list(self._initial)

    def _field_name(self, field: str) -> str:
        fields = self.record_type.model_fields
        if field in fields:
            return field
        for name, info in fields.items():
            if info.alias == field:
                return name
        raise KeyError(f"{self.record_type.__name__} has no field '{field}'")


def port_array() -> FieldArray[PortMapping]:
    return FieldArray(PortMapping, (PortMapping(container_port="8000"),))


def volume_array() -> FieldArray[VolumeMapping]:
    return FieldArray(VolumeMapping, (VolumeMapping(),))


def env_array() -> FieldArray[EnvVariable]:
    return FieldArray(EnvVariable, (EnvVariable(),))
