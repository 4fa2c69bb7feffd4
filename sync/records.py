"""Build typed mirror records from raw Acumatica payloads."""

from typing import Any, Dict, Type, TypeVar

from core.mapping.engine import FieldMappingTable
from core.models.mirror import MirrorRecord

R = TypeVar("R", bound=MirrorRecord)


def map_record(record_class: Type[R], table: FieldMappingTable, data: Dict[str, Any]) -> R:
    """Apply ``table`` to ``data`` and wrap the result in ``record_class``.

    The untransformed payload is kept as ``raw_data``.

    Raises:
        ValueError: coercion failed or the business key is missing
            (pydantic.ValidationError is a ValueError)
    """
    values = table.apply(data)
    return record_class(raw_data=dict(data), **values)
