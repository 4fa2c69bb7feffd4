"""Data-driven field mapping from Acumatica records to mirror columns.

Acumatica's contract-based REST API returns every field wrapped as
``{"FieldName": {"value": ...}}``. A ``FieldMappingTable`` is an immutable
list of ``FieldRule`` entries (ERP field path -> local column -> coercion)
that turns such a record into a flat dict of typed column values.

Adding a column is a new rule in ``core.mapping.tables``, not new code.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import re
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple


REFERENCE_WIDTH = 6

_FRACTION = re.compile(r"\.(\d+)")


class Coercion(str, Enum):
    """How a raw ERP value is converted before it reaches the mirror."""
    STRING = "STRING"
    REFERENCE = "REFERENCE"  # string, zero-padded when short and numeric
    DECIMAL = "DECIMAL"
    INTEGER = "INTEGER"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    DATETIME = "DATETIME"


# =============================================================================
# Value helpers
# =============================================================================

def unwrap(value: Any) -> Any:
    """Return ``value["value"]`` for Acumatica-wrapped fields, else ``value``."""
    if isinstance(value, Mapping) and "value" in value:
        return value["value"]
    return value


def get_path(record: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted field path (``MainContact.Email``) and unwrap it."""
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
        if current is None:
            return None
    return unwrap(current)


def normalize_reference(value: Any, width: int = REFERENCE_WIDTH) -> Optional[str]:
    """Left-pad short numeric reference numbers with zeros.

    Acumatica reference numbers are fixed-width strings ("001234"); callers
    often pass "1234". Non-numeric references are returned unchanged.
    """
    if value is None:
        return None
    text = str(value).strip()
    if text.isdigit() and len(text) < width:
        return text.zfill(width)
    return text


def _to_string(value):
    if value is None:
        return None
    text = str(value)
    return text if text != "" else None


def _to_decimal(value):
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert boolean {value!r} to decimal")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    try:
        return Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        raise ValueError(f"Invalid decimal value: {value!r}")


def _to_int(value):
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    return int(float(str(value).replace(",", "")))


def _to_bool(value):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in ("true", "1", "yes", "y")


def parse_erp_datetime(value) -> Optional[datetime]:
    """Parse an Acumatica timestamp ("2024-05-01T10:20:30.123+00:00")."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Acumatica emits up to 7 fractional digits
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
    return datetime.fromisoformat(text)


def _to_date(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_erp_datetime(value).date()


_COERCERS: Dict[Coercion, Callable[[Any], Any]] = {
    Coercion.STRING: _to_string,
    Coercion.REFERENCE: normalize_reference,
    Coercion.DECIMAL: _to_decimal,
    Coercion.INTEGER: _to_int,
    Coercion.BOOLEAN: _to_bool,
    Coercion.DATE: _to_date,
    Coercion.DATETIME: parse_erp_datetime,
}


# =============================================================================
# Rules and tables
# =============================================================================

@dataclass(frozen=True)
class FieldRule:
    """One ERP field (or ordered fallbacks) mapped to one local column."""
    local_field: str
    erp_fields: Tuple[str, ...]
    coercion: Coercion = Coercion.STRING
    default: Any = None

    def extract(self, record: Mapping[str, Any]) -> Any:
        """Take the first non-empty ERP field and coerce it."""
        for path in self.erp_fields:
            raw = get_path(record, path)
            if raw is not None and raw != "":
                return _COERCERS[self.coercion](raw)
        return self.default


def rule(local_field: str, *erp_fields: str, coercion: Coercion = Coercion.STRING, default: Any = None) -> FieldRule:
    return FieldRule(local_field=local_field, erp_fields=tuple(erp_fields), coercion=coercion, default=default)


@dataclass(frozen=True)
class FieldMappingTable:
    """Immutable mapping for one entity type.

    Tables are built explicitly and passed into the sync engines, so a
    tenant on a different endpoint version can use its own table.
    """
    name: str
    rules: Tuple[FieldRule, ...]
    key_fields: Tuple[str, ...] = field(default_factory=tuple)

    def apply(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Map one ERP record to local column values.

        Raises:
            ValueError: a value could not be coerced, or a key field is empty
        """
        mapped: Dict[str, Any] = {}
        for r in self.rules:
            try:
                mapped[r.local_field] = r.extract(record)
            except (ValueError, TypeError) as e:
                raise ValueError(f"{self.name}.{r.local_field}: {e}") from e

        missing = [k for k in self.key_fields if not mapped.get(k)]
        if missing:
            raise ValueError(f"{self.name}: missing business key field(s) {', '.join(missing)}")
        return mapped

    def extend(self, *extra: FieldRule) -> "FieldMappingTable":
        """Return a new table with additional or overriding rules."""
        overridden = {r.local_field for r in extra}
        rules = tuple(r for r in self.rules if r.local_field not in overridden) + tuple(extra)
        return FieldMappingTable(name=self.name, rules=rules, key_fields=self.key_fields)

    @property
    def local_fields(self) -> Tuple[str, ...]:
        return tuple(r.local_field for r in self.rules)
