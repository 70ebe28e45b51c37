from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..engine import free_key
from ..rules import is_sensitive_key
from .base import BaseProcessor, FieldRun

_CONFIG_KEYWORDS = (
    "server",
    "database",
    "api",
    "auth",
    "connection",
    "config",
    "settings",
    "options",
    "credentials",
    "endpoint",
    "url",
    "host",
    "port",
    "username",
    "workspace",
    "proxmox",
)


def is_config(data: Any) -> bool:
    if not isinstance(data, Mapping):
        return False
    return any(
        keyword in str(key).lower() for key in data for keyword in _CONFIG_KEYWORDS
    )


class ConfigDataProcessor(BaseProcessor):
    """Configuration objects. Sensitive keys are always redacted, whatever the
    pseudonym setting; remaining strings go through the engine."""

    def get_processor_type(self) -> str:
        return "ConfigDataProcessor"

    def _matches(self, data: Any) -> bool:
        return is_config(data)

    async def _process(self, data: Mapping[str, Any], run: FieldRun) -> dict[str, Any]:
        return await self._object(data, run, set())

    async def _object(
        self, obj: Mapping[str, Any], run: FieldRun, ancestors: set[int]
    ) -> dict[str, Any]:
        ancestors.add(id(obj))
        try:
            result: dict[str, Any] = {}
            for key, value in obj.items():
                new_key = free_key(result, await run.key(key))
                result[new_key] = await self._value(key, value, run, ancestors)
            return result
        finally:
            ancestors.discard(id(obj))

    async def _items(
        self, items: list[Any] | tuple[Any, ...], run: FieldRun, ancestors: set[int]
    ) -> list[Any]:
        ancestors.add(id(items))
        try:
            return [await self._value(None, item, run, ancestors) for item in items]
        finally:
            ancestors.discard(id(items))

    async def _value(self, key: Any, value: Any, run: FieldRun, ancestors: set[int]) -> Any:
        if value is None or isinstance(value, bool):
            return value
        if is_sensitive_key(key) and not isinstance(value, (Mapping, list, tuple)):
            return run.redact()
        if isinstance(value, str):
            return await run.field(value)
        if isinstance(value, (Mapping, list, tuple)):
            if id(value) in ancestors:
                return run.cycle()
            if is_sensitive_key(key):
                return await self._sensitive(key, value, run)
            if isinstance(value, Mapping):
                return await self._object(value, run, ancestors)
            return await self._items(value, run, ancestors)
        return value

    @staticmethod
    async def _sensitive(key: Any, value: Any, run: FieldRun) -> Any:
        # a nested block under a credential key: the engine redacts every leaf
        wrapped = await run.field({key: value}, structured=True)
        return next(iter(wrapped.values()))
