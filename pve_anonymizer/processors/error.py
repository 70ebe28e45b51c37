from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..engine import AnonymizationEngine, exception_to_dict
from .base import BaseProcessor, FieldRun
from .log import LogDataProcessor

_SNAPSHOT_LISTS = ("logs", "metrics", "healthStatus")


def is_error_like(data: Any) -> bool:
    if isinstance(data, BaseException):
        return True
    if not isinstance(data, Mapping):
        return False
    return isinstance(data.get("message"), str) or isinstance(data.get("stack"), str)


def is_diagnostic_snapshot(data: Any) -> bool:
    if not isinstance(data, Mapping):
        return False
    if not (isinstance(data.get("id"), str) and isinstance(data.get("timestamp"), str)):
        return False
    if not all(isinstance(data.get(name), list) for name in _SNAPSHOT_LISTS):
        return False
    return isinstance(data.get("systemInfo"), Mapping)


class ErrorDataProcessor(BaseProcessor):
    """Exceptions, error-like dicts and full diagnostic snapshots.

    Snapshot id, timestamps, operation, metric values and systemInfo are
    copied verbatim. Log entries get the same treatment as LogDataProcessor.
    """

    def __init__(self, engine: AnonymizationEngine | None = None) -> None:
        super().__init__(engine)
        self._logs = LogDataProcessor(self.engine)

    def get_processor_type(self) -> str:
        return "ErrorDataProcessor"

    def _matches(self, data: Any) -> bool:
        return is_error_like(data) or is_diagnostic_snapshot(data)

    async def _process(self, data: Any, run: FieldRun) -> Any:
        if is_diagnostic_snapshot(data):
            return await self._snapshot(data, run)
        if is_error_like(data):
            return await self._error(data, run)
        return await run.field(data)

    async def _snapshot(self, snapshot: Mapping[str, Any], run: FieldRun) -> dict[str, Any]:
        result = dict(snapshot)

        if isinstance(snapshot.get("workspace"), str):
            result["workspace"] = await run.field(snapshot["workspace"])
        if snapshot.get("error") is not None:
            result["error"] = await self._error(snapshot["error"], run)

        result["logs"] = [await self._log(entry, run) for entry in snapshot["logs"]]
        result["metrics"] = [await self._metric(metric, run) for metric in snapshot["metrics"]]
        result["healthStatus"] = [
            await self._health(status, run) for status in snapshot["healthStatus"]
        ]

        info = snapshot.get("workspaceInfo")
        if isinstance(info, Mapping):
            result["workspaceInfo"] = await self._workspace_info(info, run)
        return result

    async def _error(self, error: Any, run: FieldRun) -> Any:
        if isinstance(error, BaseException):
            view = exception_to_dict(error)
            return {
                "name": view["name"],
                "message": await run.field(view["message"]),
                "stack": await run.field(view["stack"]),
            }
        if isinstance(error, (str, Mapping, list, tuple)):
            return await run.field(error)
        return error

    async def _log(self, entry: Any, run: FieldRun) -> Any:
        if isinstance(entry, Mapping):
            return await self._logs.process_entry(entry, run)
        return await run.field(entry)

    @staticmethod
    async def _metric(metric: Any, run: FieldRun) -> Any:
        if not isinstance(metric, Mapping):
            return await run.field(metric)
        result = dict(metric)
        if isinstance(metric.get("tags"), Mapping):
            result["tags"] = await run.field(metric["tags"])
        return result

    @staticmethod
    async def _health(status: Any, run: FieldRun) -> Any:
        if not isinstance(status, Mapping):
            return await run.field(status)
        result = dict(status)
        if isinstance(status.get("message"), str):
            result["message"] = await run.field(status["message"])
        if isinstance(status.get("details"), (Mapping, list)):
            result["details"] = await run.field(status["details"])
        return result

    @staticmethod
    async def _workspace_info(info: Mapping[str, Any], run: FieldRun) -> dict[str, Any]:
        result = dict(info)
        for key in ("path", "error"):
            if isinstance(info.get(key), str):
                result[key] = await run.field(info[key])
        if info.get("config") is not None:
            result["config"] = await run.field(info["config"])
        return result
