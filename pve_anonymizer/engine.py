"""Anonymization engine: rule application and safe recursive traversal.

One engine owns one pseudonym table and one set of counters. Build it once at
process start and hand it to processors and services; get_instance() returns
the process-wide default for callers that do not wire their own.
"""

from __future__ import annotations

import dataclasses
import json
import threading
import time
import traceback
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from datetime import time as dt_time
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from .logger import Log
from .models import (
    CYCLE_MARKER,
    DEFAULT_OPTIONS,
    ERROR_MARKER,
    REDACTED,
    AnonymizationMetadata,
    AnonymizationOptions,
    AnonymizationRule,
    AnonymizedData,
    EngineStats,
    PiiDetectionResult,
    PiiLocation,
    Replacement,
    RuleMatch,
    RuleType,
    type_name,
)
from .pseudonyms import PseudonymManager
from .rules import BUILTIN_RULES, is_sensitive_key, key_rules, scan, sort_rules
from .stats import StatsTracker

T = TypeVar("T")

DEPTH_MARKER = "[Max Depth Exceeded]"
_MAX_DEPTH = 256

_PASSTHROUGH = (bool, int, float, Decimal, datetime, date, dt_time, Enum)
_SEQUENCES = (list, tuple, set, frozenset)


@dataclass(frozen=True)
class _Visit:
    """Outcome of visiting one node: the replacement value and its error count."""

    value: Any
    errors: int = 0


@dataclass
class _CallState:
    options: AnonymizationOptions
    rules: list[AnonymizationRule]
    key_rules: list[AnonymizationRule]
    deadline: float | None
    scan_strings: bool = True
    timed_out: bool = False
    rules_applied: set[str] = field(default_factory=set)
    pseudonymized: set[str] = field(default_factory=set)


def exception_to_dict(exc: BaseException) -> dict[str, Any]:
    """Error-like view of an exception: name, message and formatted stack."""
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {"name": type(exc).__name__, "message": str(exc), "stack": stack}


def _shallow_fields(node: Any) -> dict[str, Any]:
    return {f.name: getattr(node, f.name) for f in dataclasses.fields(node)}


def free_key(out: Mapping[Any, Any], key: Any) -> Any:
    """key, or key#N when two originals collapse onto the same replacement."""
    if key not in out:
        return key
    n = 2
    while f"{key}#{n}" in out:
        n += 1
    return f"{key}#{n}"


class AnonymizationEngine:
    _instance: AnonymizationEngine | None = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        rules: Iterable[AnonymizationRule] | None = None,
        pseudonyms: PseudonymManager | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rules = tuple(sort_rules(BUILTIN_RULES if rules is None else rules))
        self._pseudonyms = pseudonyms if pseudonyms is not None else PseudonymManager()
        self._stats = StatsTracker()
        self._clock = clock

    @classmethod
    def get_instance(cls) -> AnonymizationEngine:
        """The process-wide shared engine."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @property
    def pseudonyms(self) -> PseudonymManager:
        return self._pseudonyms

    @property
    def rules(self) -> tuple[AnonymizationRule, ...]:
        return self._rules

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def anonymize(
        self, data: T, options: AnonymizationOptions | None = None
    ) -> AnonymizedData[Any]:
        """Return a structurally mirrored copy of data with PII replaced.

        Never raises for bad nodes or an exhausted time budget; both are
        reported through metadata.errors / metadata.timed_out and the stats.
        """
        result = await self.anonymize_part(data, options)
        self.record_call(result.metadata)
        return result

    async def anonymize_part(
        self, data: T, options: AnonymizationOptions | None = None
    ) -> AnonymizedData[Any]:
        """anonymize() without touching the call counters.

        For callers that split one logical call into several parts and report
        it once through record_call().
        """
        options = options or DEFAULT_OPTIONS
        started = self._clock()
        state = self._begin(options, started)

        if not options.preserve_structure and isinstance(data, (Mapping, *_SEQUENCES)):
            visit = self._flatten(data, state)
        else:
            visit = self._visit(data, state, set(), 0)

        elapsed_ms = (self._clock() - started) * 1000
        errors = visit.errors + (1 if state.timed_out else 0)

        Log.debug(
            f"Anonymized {type(data).__name__} in {elapsed_ms:.1f}ms "
            f"(rules={sorted(state.rules_applied)}, errors={errors})"
        )
        return AnonymizedData(
            data=visit.value,
            metadata=AnonymizationMetadata(
                rules_applied=frozenset(state.rules_applied),
                pseudonyms_used=len(state.pseudonymized),
                processing_time_ms=int(round(elapsed_ms)),
                is_anonymized=bool(state.rules_applied) and not state.timed_out,
                preserved_structure=options.preserve_structure,
                errors=errors,
                timed_out=state.timed_out,
            ),
        )

    async def detect_pii(
        self, data: Any, options: AnonymizationOptions | None = None
    ) -> PiiDetectionResult:
        """Report what would be anonymized, without touching the mapping table."""
        rules = self._active_rules(options or DEFAULT_OPTIONS)
        rules_by_kind = {"value": rules, "key": key_rules(rules)}
        locations: list[PiiLocation] = []

        for path, text, kind in self._iter_strings(data, "root", set(), 0):
            if kind == "sensitive":
                locations.append(PiiLocation(
                    type=RuleType.PASSWORD.value, path=path, value=text,
                    start=0, end=len(text),
                ))
                continue
            for match in scan(text, rules_by_kind[kind]):
                locations.append(PiiLocation(
                    type=type_name(match.rule.type), path=path, value=match.text,
                    start=match.start, end=match.end,
                ))

        detected = list(dict.fromkeys(location.type for location in locations))
        return PiiDetectionResult(
            has_pii=bool(locations),
            detected_types=detected,
            confidence=min(len(locations) * 0.5, 1.0),
            locations=locations,
        )

    def record_call(self, metadata: AnonymizationMetadata) -> None:
        """Count one finished call in the stats."""
        self._stats.record(
            metadata.processing_time_ms,
            metadata.rules_applied,
            failed=metadata.errors > 0 or metadata.timed_out,
        )

    def get_stats(self) -> EngineStats:
        return self._stats.snapshot(total_pseudonyms=len(self._pseudonyms))

    def reset_stats(self) -> None:
        self._stats.reset()

    def clear_mappings(self) -> None:
        self._pseudonyms.clear_mappings()

    def reset(self) -> None:
        """Drop all mappings and counters, e.g. between independent sessions."""
        self.clear_mappings()
        self.reset_stats()

    def export_mappings(self) -> list[dict[str, str]]:
        return self._pseudonyms.export_mappings()

    def import_mappings(self, records: Iterable[Any]) -> int:
        return self._pseudonyms.import_mappings(records)

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _begin(self, options: AnonymizationOptions, started: float) -> _CallState:
        deadline = None
        if options.max_processing_time is not None:
            deadline = started + max(options.max_processing_time, 0) / 1000
        rules = self._active_rules(options)
        return _CallState(
            options=options, rules=rules, key_rules=key_rules(rules), deadline=deadline
        )

    def _active_rules(self, options: AnonymizationOptions) -> list[AnonymizationRule]:
        rules: Iterable[AnonymizationRule] = (*self._rules, *options.custom_rules)
        if options.enabled_rules is not None:
            rules = [rule for rule in rules if rule.type in options.enabled_rules]
        return sort_rules(rules)

    def _expired(self, state: _CallState) -> bool:
        if state.timed_out:
            return True
        if state.deadline is not None and self._clock() >= state.deadline:
            state.timed_out = True
            Log.warning(
                "Anonymization time budget exhausted, redacting remaining values",
                budget_ms=state.options.max_processing_time,
            )
        return state.timed_out

    def _visit(
        self,
        node: Any,
        state: _CallState,
        ancestors: set[int],
        depth: int,
        redact_all: bool = False,
    ) -> _Visit:
        try:
            if node is None or isinstance(node, _PASSTHROUGH):
                if redact_all and isinstance(node, (int, float, Decimal)) and not isinstance(node, bool):
                    return _Visit(REDACTED)
                return _Visit(node)
            if isinstance(node, str):
                if redact_all:
                    return _Visit(REDACTED)
                return _Visit(self._visit_text(node, state))
            if isinstance(node, uuid.UUID):
                return self._visit(str(node), state, ancestors, depth, redact_all)
            if isinstance(node, BaseException):
                return self._visit(exception_to_dict(node), state, ancestors, depth, redact_all)
            if isinstance(node, (Mapping, *_SEQUENCES)):
                return self._visit_container(node, state, ancestors, depth, redact_all)
            if dataclasses.is_dataclass(node) and not isinstance(node, type):
                return self._visit_container(node, state, ancestors, depth, redact_all)
            return _Visit(f"[Unsupported: {type(node).__name__}]", errors=1)
        except Exception as exc:
            Log.warning(
                f"Failed to anonymize {type(node).__name__} node: {type(exc).__name__}",
                depth=depth,
            )
            return _Visit(ERROR_MARKER, errors=1)

    def _visit_container(
        self,
        node: Any,
        state: _CallState,
        ancestors: set[int],
        depth: int,
        redact_all: bool,
    ) -> _Visit:
        marker = id(node)
        if marker in ancestors:
            Log.warning("Reference cycle replaced with marker", depth=depth)
            return _Visit(CYCLE_MARKER, errors=1)
        if depth >= _MAX_DEPTH:
            return _Visit(DEPTH_MARKER, errors=1)

        ancestors.add(marker)
        try:
            errors = 0
            if isinstance(node, Mapping) or dataclasses.is_dataclass(node):
                items = node.items() if isinstance(node, Mapping) else _shallow_fields(node).items()
                out: dict[Any, Any] = {}
                for key, value in items:
                    sensitive = redact_all or is_sensitive_key(key)
                    if sensitive and not redact_all and self._is_redactable(value):
                        state.rules_applied.add(RuleType.PASSWORD.value)
                    child = self._visit(value, state, ancestors, depth + 1, sensitive)
                    errors += child.errors
                    out[free_key(out, self._visit_key(key, state))] = child.value
                return _Visit(out, errors)

            values = []
            for item in node:
                child = self._visit(item, state, ancestors, depth + 1, redact_all)
                errors += child.errors
                values.append(child.value)
            if isinstance(node, list):
                return _Visit(values, errors)
            if isinstance(node, tuple) and hasattr(node, "_fields"):
                return _Visit(type(node)(*values), errors)
            return _Visit(type(node)(values), errors)
        finally:
            ancestors.discard(marker)

    def _visit_key(self, key: Any, state: _CallState) -> Any:
        # keys are scanned even after the budget runs out so the shape survives
        if not isinstance(key, str) or not state.scan_strings:
            return key
        return self._rewrite(key, state.key_rules, state)

    @staticmethod
    def _is_redactable(value: Any) -> bool:
        return value is not None and not isinstance(value, bool)

    def _visit_text(self, text: str, state: _CallState) -> str:
        if self._expired(state):
            return REDACTED if text else text
        if not state.scan_strings:
            return text
        return self._rewrite(text, state.rules, state)

    def _rewrite(self, text: str, rules: list[AnonymizationRule], state: _CallState) -> str:
        matches = scan(text, rules)
        if not matches:
            return text

        pieces: list[str] = []
        cursor = 0
        for match in matches:
            pieces.append(text[cursor:match.start])
            pieces.append(self._replacement(match, state))
            cursor = match.end
        pieces.append(text[cursor:])
        return "".join(pieces)

    def _replacement(self, match: RuleMatch, state: _CallState) -> str:
        rule = match.rule
        state.rules_applied.add(type_name(rule.type))
        if rule.replacement is Replacement.REDACT or not state.options.enable_pseudonyms:
            return REDACTED
        if not match.text.strip():
            return REDACTED
        pseudonym = self._pseudonyms.get_pseudonym(
            match.text, rule.type, rule.category, salt=state.options.hash_salt
        )
        state.pseudonymized.add(match.text)
        return pseudonym

    def _flatten(self, data: Any, state: _CallState) -> _Visit:
        """Collapse a container into one JSON string, then scan it as text."""
        state.scan_strings = False
        structural = self._visit(data, state, set(), 0)
        state.scan_strings = True
        try:
            text = json.dumps(structural.value, ensure_ascii=False, default=str)
        except (TypeError, ValueError) as exc:
            Log.warning(f"Could not flatten {type(data).__name__}: {exc}")
            return _Visit(ERROR_MARKER, errors=structural.errors + 1)
        return _Visit(self._visit_text(text, state), structural.errors)

    def _iter_strings(
        self, node: Any, path: str, ancestors: set[int], depth: int
    ) -> Iterator[tuple[str, str, str]]:
        """Yield (path, text, kind) for every string leaf and mapping key.

        kind is "value", "key" (a mapping key at path) or "sensitive" (a
        scalar under a credential key).
        """
        if isinstance(node, Enum):
            return
        if isinstance(node, str):
            yield path, node, "value"
            return
        if isinstance(node, uuid.UUID):
            yield path, str(node), "value"
            return
        if isinstance(node, BaseException):
            node = exception_to_dict(node)
        if dataclasses.is_dataclass(node) and not isinstance(node, type):
            node = _shallow_fields(node)
        if not isinstance(node, (Mapping, *_SEQUENCES)):
            return
        if id(node) in ancestors or depth >= _MAX_DEPTH:
            return

        ancestors.add(id(node))
        try:
            if isinstance(node, Mapping):
                for key, value in node.items():
                    child_path = f"{path}.{key}"
                    if isinstance(key, str):
                        yield child_path, key, "key"
                    if is_sensitive_key(key) and isinstance(value, (str, int, float)) and not isinstance(value, bool):
                        yield child_path, str(value), "sensitive"
                        continue
                    yield from self._iter_strings(value, child_path, ancestors, depth + 1)
            else:
                for index, item in enumerate(node):
                    yield from self._iter_strings(item, f"{path}[{index}]", ancestors, depth + 1)
        finally:
            ancestors.discard(id(node))
