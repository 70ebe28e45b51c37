from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

from ..engine import AnonymizationEngine
from ..logger import Log
from ..models import (
    CYCLE_MARKER,
    DEFAULT_OPTIONS,
    REDACTED,
    AnonymizationMetadata,
    AnonymizationOptions,
    AnonymizedData,
    RuleType,
)


class FieldRun:
    """Per-call bookkeeping for a processor.

    Each field goes through the engine with whatever is left of the caller's
    time budget; metadata from every field is folded into one result, and the
    whole run is counted as a single call in the engine stats.
    """

    def __init__(self, engine: AnonymizationEngine, options: AnonymizationOptions) -> None:
        self.engine = engine
        self.options = options
        self._started = time.monotonic()
        self._metadata = AnonymizationMetadata(preserved_structure=options.preserve_structure)

    def _remaining_options(self) -> AnonymizationOptions:
        budget = self.options.max_processing_time
        if budget is None:
            return self.options
        elapsed_ms = (time.monotonic() - self._started) * 1000
        return self.options.with_overrides(max_processing_time=max(int(budget - elapsed_ms), 0))

    async def field(self, value: Any, structured: bool = False) -> Any:
        """Anonymize one field. structured=True keeps containers as containers
        even when the caller asked for flattened output."""
        options = self._remaining_options()
        if structured:
            options = options.with_overrides(preserve_structure=True)
        result = await self.engine.anonymize_part(value, options)
        self._metadata = self._metadata.merge(result.metadata)
        return result.data

    async def key(self, key: Any) -> Any:
        """A mapping key, scanned the way the engine scans keys."""
        if not isinstance(key, str):
            return key
        wrapped = await self.field({key: None}, structured=True)
        return next(iter(wrapped))

    def redact(self) -> str:
        """Hard redaction for a sensitive key, independent of pseudonym settings."""
        self._metadata = self._metadata.merge(
            AnonymizationMetadata(rules_applied=frozenset({RuleType.PASSWORD.value}))
        )
        return REDACTED

    def cycle(self) -> str:
        """Marker for a container that contains itself; counts as a node error."""
        self._metadata = self._metadata.merge(AnonymizationMetadata(errors=1))
        return CYCLE_MARKER

    def finish(self, data: Any) -> AnonymizedData[Any]:
        elapsed_ms = (time.monotonic() - self._started) * 1000
        merged = self._metadata
        metadata = AnonymizationMetadata(
            rules_applied=merged.rules_applied,
            pseudonyms_used=merged.pseudonyms_used,
            processing_time_ms=int(round(elapsed_ms)),
            is_anonymized=bool(merged.rules_applied) and not merged.timed_out,
            preserved_structure=self.options.preserve_structure,
            errors=merged.errors,
            timed_out=merged.timed_out,
        )
        self.engine.record_call(metadata)
        return AnonymizedData(data=data, metadata=metadata)


class BaseProcessor(ABC):
    """Shape-specific field targeting on top of the engine."""

    def __init__(self, engine: AnonymizationEngine | None = None) -> None:
        self.engine = engine if engine is not None else AnonymizationEngine.get_instance()

    def can_process(self, data: Any) -> bool:
        """Cheap structural check; never raises."""
        try:
            return self._matches(data)
        except Exception as exc:
            Log.warning(f"{self.get_processor_type()} shape check failed: {type(exc).__name__}")
            return False

    async def process(
        self, data: Any, options: AnonymizationOptions | None = None
    ) -> AnonymizedData[Any]:
        run = FieldRun(self.engine, options or DEFAULT_OPTIONS)
        return run.finish(await self._process(data, run))

    @abstractmethod
    def get_processor_type(self) -> str:
        ...

    @abstractmethod
    def _matches(self, data: Any) -> bool:
        ...

    @abstractmethod
    async def _process(self, data: Any, run: FieldRun) -> Any:
        ...
