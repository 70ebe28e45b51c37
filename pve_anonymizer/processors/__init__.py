"""Shape-specific processors and the dispatch table that picks one."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from ..engine import AnonymizationEngine
from ..logger import Log
from ..models import AnonymizationOptions, AnonymizedData
from .base import BaseProcessor, FieldRun
from .config import ConfigDataProcessor, is_config
from .database import DatabaseDataProcessor, is_table_dump
from .error import ErrorDataProcessor, is_diagnostic_snapshot, is_error_like
from .log import LogDataProcessor, is_log_batch


class DataShape(str, Enum):
    LOG = "log"
    DIAGNOSTIC = "diagnostic"
    ERROR = "error"
    DATABASE = "database"
    CONFIG = "config"
    GENERIC = "generic"


# Check order matters: a diagnostic snapshot also looks config-ish, and an
# error dict may carry table-like lists.
_SHAPE_CHECKS: tuple[tuple[DataShape, Callable[[Any], bool]], ...] = (
    (DataShape.LOG, is_log_batch),
    (DataShape.DIAGNOSTIC, is_diagnostic_snapshot),
    (DataShape.ERROR, is_error_like),
    (DataShape.DATABASE, is_table_dump),
    (DataShape.CONFIG, is_config),
)

_PROCESSORS: dict[DataShape, type[BaseProcessor]] = {
    DataShape.LOG: LogDataProcessor,
    DataShape.DIAGNOSTIC: ErrorDataProcessor,
    DataShape.ERROR: ErrorDataProcessor,
    DataShape.DATABASE: DatabaseDataProcessor,
    DataShape.CONFIG: ConfigDataProcessor,
}


def classify(data: Any) -> DataShape:
    for shape, matches in _SHAPE_CHECKS:
        try:
            if matches(data):
                return shape
        except Exception as exc:
            Log.warning(f"{shape.value} shape check failed: {type(exc).__name__}")
    return DataShape.GENERIC


def create_processor(
    kind: DataShape | str, engine: AnonymizationEngine | None = None
) -> BaseProcessor:
    """Build the processor for a data shape; GENERIC data has none."""
    try:
        shape = DataShape(kind)
    except ValueError:
        raise ValueError(f"Unknown processor type: {kind!r}") from None
    if shape not in _PROCESSORS:
        raise ValueError(f"No processor for {shape.value!r} data")
    return _PROCESSORS[shape](engine)


async def anonymize_any(
    data: Any,
    options: AnonymizationOptions | None = None,
    engine: AnonymizationEngine | None = None,
) -> tuple[DataShape, AnonymizedData[Any]]:
    """Route data to the processor for its shape, or straight to the engine."""
    engine = engine if engine is not None else AnonymizationEngine.get_instance()
    shape = classify(data)
    if shape is DataShape.GENERIC:
        return shape, await engine.anonymize(data, options)
    return shape, await create_processor(shape, engine).process(data, options)


__all__ = [
    "BaseProcessor",
    "ConfigDataProcessor",
    "DataShape",
    "DatabaseDataProcessor",
    "ErrorDataProcessor",
    "FieldRun",
    "LogDataProcessor",
    "anonymize_any",
    "classify",
    "create_processor",
]
