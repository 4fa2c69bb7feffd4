"""Field mapping between Acumatica records and mirror columns.

Mapping tables are plain immutable data; the sync engines receive them
explicitly instead of reading module globals.
"""

from core.mapping.engine import (
    Coercion,
    FieldRule,
    FieldMappingTable,
    get_path,
    normalize_reference,
    parse_erp_datetime,
    rule,
    unwrap,
)
from core.mapping.tables import (
    APPLICATION_TABLE,
    CUSTOMER_TABLE,
    DEFAULT_TABLES,
    INVOICE_TABLE,
    PAYMENT_TABLE,
    MappingTables,
)

__all__ = [
    "Coercion",
    "FieldRule",
    "FieldMappingTable",
    "get_path",
    "normalize_reference",
    "parse_erp_datetime",
    "rule",
    "unwrap",
    "APPLICATION_TABLE",
    "CUSTOMER_TABLE",
    "DEFAULT_TABLES",
    "INVOICE_TABLE",
    "PAYMENT_TABLE",
    "MappingTables",
]
