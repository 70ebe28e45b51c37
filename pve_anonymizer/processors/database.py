from __future__ import annotations

import re
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from ..rules import is_sensitive_key
from .base import BaseProcessor, FieldRun

PII_FIELDS = frozenset({
    "hostname",
    "name",
    "node",
    "server",
    "host",
    "ip",
    "ipv4",
    "ipv6",
    "email",
    "user",
    "username",
    "owner",
    "description",
    "notes",
    "comment",
    "path",
    "location",
    "directory",
    "mac",
    "uuid",
    "id",
})

# names that contain a PII keyword by accident ("width" has "id")
_NOT_PII_FIELDS = frozenset({"width", "video", "valid", "invalid", "paid", "zip"})


def normalize_field(name: str) -> str:
    """Lowercase with separators dropped: ``vm_Host-Name`` -> ``vmhostname``."""
    return re.sub(r"[^a-z0-9]+", "", name.lower())


def is_pii_field(name: Any) -> bool:
    """True if the column name contains any PII keyword, e.g. ``hostip``."""
    if not isinstance(name, str):
        return False
    normalized = normalize_field(name)
    if normalized in _NOT_PII_FIELDS:
        return False
    return any(keyword in normalized for keyword in PII_FIELDS)


def _is_record(value: Any) -> bool:
    return isinstance(value, Mapping)


def is_table_dump(data: Any) -> bool:
    """A mapping of table name to a list of records (or a single record)."""
    if not isinstance(data, Mapping) or not data:
        return False
    has_table = False
    for records in data.values():
        if isinstance(records, list):
            if not all(_is_record(item) for item in records):
                return False
            has_table = True
        elif not _is_record(records):
            return False
    return has_table


def _restore_number(original: int | float | Decimal, anonymized: Any) -> Any:
    if not isinstance(anonymized, str):
        return anonymized
    try:
        if isinstance(original, int):
            return int(anonymized)
        if isinstance(original, Decimal):
            return Decimal(anonymized)
        return float(anonymized)
    except (ValueError, ArithmeticError):
        return anonymized


class DatabaseDataProcessor(BaseProcessor):
    """Table dumps keyed by table name. Only columns whose name looks like
    PII are anonymized; everything else is copied as-is."""

    def get_processor_type(self) -> str:
        return "DatabaseDataProcessor"

    def _matches(self, data: Any) -> bool:
        return is_table_dump(data)

    async def _process(self, data: Mapping[str, Any], run: FieldRun) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for table, records in data.items():
            if isinstance(records, list):
                result[table] = [await self._record(record, run) for record in records]
            elif _is_record(records):
                result[table] = await self._record(records, run)
            else:
                result[table] = records
        return result

    async def _record(self, record: Any, run: FieldRun) -> Any:
        if not _is_record(record):
            return record
        out: dict[str, Any] = {}
        for column, value in record.items():
            if value is None or isinstance(value, bool):
                out[column] = value
            elif is_sensitive_key(column):
                out[column] = run.redact()
            elif is_pii_field(column):
                out[column] = await self._column(value, run)
            else:
                out[column] = value
        return out

    @staticmethod
    async def _column(value: Any, run: FieldRun) -> Any:
        if isinstance(value, (int, float, Decimal)):
            anonymized = await run.field(str(value))
            if anonymized == str(value):
                return value
            return _restore_number(value, anonymized)
        return await run.field(value)
