from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..rules import is_sensitive_key
from .base import BaseProcessor, FieldRun

_REQUIRED_STRING_FIELDS = ("timestamp", "correlationId", "operation", "phase", "level", "message")
_PRESERVED_CONTEXT_FIELDS = frozenset({"resourcesAffected", "duration"})
_ERROR_TEXT_FIELDS = ("message", "stack")


def is_operation_log(entry: Any) -> bool:
    if not isinstance(entry, Mapping):
        return False
    if not all(isinstance(entry.get(name), str) for name in _REQUIRED_STRING_FIELDS):
        return False
    context = entry.get("context")
    return isinstance(context, Mapping) and isinstance(context.get("resourcesAffected"), list)


def is_log_batch(data: Any) -> bool:
    return isinstance(data, list) and len(data) > 0 and all(is_operation_log(e) for e in data)


class LogDataProcessor(BaseProcessor):
    """Operation logs: message, context, error and metadata are anonymized;
    resourcesAffected and duration are kept verbatim."""

    def get_processor_type(self) -> str:
        return "LogDataProcessor"

    def _matches(self, data: Any) -> bool:
        return is_log_batch(data)

    async def _process(self, data: list[Mapping[str, Any]], run: FieldRun) -> list[dict[str, Any]]:
        return [await self.process_entry(entry, run) for entry in data]

    async def process_entry(self, entry: Mapping[str, Any], run: FieldRun) -> dict[str, Any]:
        result = dict(entry)

        if isinstance(entry.get("message"), str):
            result["message"] = await run.field(entry["message"])

        context = entry.get("context")
        if isinstance(context, Mapping):
            result["context"] = await self._context(context, run)

        error = entry.get("error")
        if isinstance(error, Mapping):
            result["error"] = await self._error(error, run)
        elif isinstance(error, str):
            result["error"] = await run.field(error)

        metadata = entry.get("metadata")
        if metadata is not None:
            result["metadata"] = await run.field(metadata)

        return result

    async def _context(self, context: Mapping[str, Any], run: FieldRun) -> dict[str, Any]:
        # workspace, proxmoxServer, userId and sessionId are plain strings and
        # fall under the generic branch below.
        result = dict(context)
        for key, value in context.items():
            if key in _PRESERVED_CONTEXT_FIELDS or value is None or isinstance(value, bool):
                continue
            if is_sensitive_key(key):
                result[key] = run.redact()
            elif isinstance(value, (str, Mapping, list, tuple)):
                result[key] = await run.field(value)
        return result

    async def _error(self, error: Mapping[str, Any], run: FieldRun) -> dict[str, Any]:
        result = dict(error)
        for key in _ERROR_TEXT_FIELDS:
            if isinstance(error.get(key), str):
                result[key] = await run.field(error[key])
        if isinstance(error.get("recoveryActions"), list):
            result["recoveryActions"] = await run.field(error["recoveryActions"])
        return result
