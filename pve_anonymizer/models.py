from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .exceptions import InvalidInput

if TYPE_CHECKING:
    from .settings import Settings

REDACTED = "[REDACTED]"
CYCLE_MARKER = "[Circular Reference]"
ERROR_MARKER = "[Anonymization Error]"
DEFAULT_HASH_SALT = "proxmox-mpc-default-salt"

T = TypeVar("T")


class RuleType(str, Enum):
    EMAIL = "email"
    IP_ADDRESS = "ip_address"
    HOSTNAME = "hostname"
    UUID = "uuid"
    PASSWORD = "password"
    TOKEN = "token"
    USERNAME = "username"
    PATH = "path"
    MAC = "mac"
    CUSTOM = "custom"


class Replacement(str, Enum):
    PSEUDONYM = "pseudonym"
    REDACT = "redact"


class Category:
    PERSONAL_DATA = "personal_data"
    NETWORK_DATA = "network_data"
    CREDENTIALS = "credentials"
    INFRASTRUCTURE_DATA = "infrastructure_data"
    FILESYSTEM_DATA = "filesystem_data"
    SYSTEM_DATA = "system_data"


def type_name(rule_type: RuleType | str) -> str:
    """Plain string identifier for a rule type, known or not."""
    return rule_type.value if isinstance(rule_type, RuleType) else str(rule_type)


@dataclass(frozen=True)
class AnonymizationRule:
    id: str
    type: RuleType
    pattern: re.Pattern[str]
    replacement: Replacement
    category: str
    priority: int
    preserve_format: bool = True
    group: int = 0  # 0 replaces the full match, N > 0 only that capture group
    # stricter pattern used on mapping keys; None reuses pattern
    key_pattern: re.Pattern[str] | None = None


@dataclass(frozen=True)
class RuleMatch:
    rule: AnonymizationRule
    start: int
    end: int
    text: str

    def __len__(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class PseudonymMapping:
    original_value: str
    pseudonym: str
    type: str
    category: str
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, str]:
        return {
            "originalValue": self.original_value,
            "pseudonym": self.pseudonym,
            "type": self.type,
            "category": self.category,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, record: Any) -> PseudonymMapping:
        """Build a mapping from an exchange record; raises InvalidInput when malformed."""
        if isinstance(record, PseudonymMapping):
            return record
        if not isinstance(record, dict):
            raise InvalidInput(f"Mapping record must be an object, got {type(record).__name__}")
        try:
            original = record["originalValue"]
            pseudonym = record["pseudonym"]
        except KeyError as exc:
            raise InvalidInput(f"Mapping record is missing {exc.args[0]!r}") from exc
        if not isinstance(original, str) or not original.strip():
            raise InvalidInput("Mapping record has an empty originalValue")
        if not isinstance(pseudonym, str) or not pseudonym:
            raise InvalidInput("Mapping record has an empty pseudonym")
        created_at = record.get("createdAt") or datetime.now(timezone.utc).isoformat()
        return cls(
            original_value=original,
            pseudonym=pseudonym,
            type=str(record.get("type", RuleType.CUSTOM.value)),
            category=str(record.get("category", "")),
            created_at=str(created_at),
        )


@dataclass(frozen=True)
class AnonymizationOptions:
    enable_pseudonyms: bool = True
    preserve_structure: bool = True
    max_processing_time: int | None = 5000  # milliseconds, None disables the budget
    hash_salt: str = DEFAULT_HASH_SALT
    enabled_rules: frozenset[RuleType] | None = None
    custom_rules: tuple[AnonymizationRule, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> AnonymizationOptions:
        return cls(
            enable_pseudonyms=settings.enable_pseudonyms,
            preserve_structure=settings.preserve_structure,
            max_processing_time=settings.max_processing_time_ms,
            hash_salt=settings.hash_salt,
        )

    def with_overrides(self, **changes: Any) -> AnonymizationOptions:
        return replace(self, **changes)


DEFAULT_OPTIONS = AnonymizationOptions()


@dataclass(frozen=True)
class AnonymizationMetadata:
    rules_applied: frozenset[str] = frozenset()
    pseudonyms_used: int = 0
    processing_time_ms: int = 0
    is_anonymized: bool = False
    preserved_structure: bool = True
    errors: int = 0
    timed_out: bool = False

    def merge(self, other: AnonymizationMetadata) -> AnonymizationMetadata:
        """Combine per-field metadata collected by a processor."""
        return AnonymizationMetadata(
            rules_applied=self.rules_applied | other.rules_applied,
            pseudonyms_used=self.pseudonyms_used + other.pseudonyms_used,
            processing_time_ms=self.processing_time_ms,
            is_anonymized=self.is_anonymized,
            preserved_structure=self.preserved_structure,
            errors=self.errors + other.errors,
            timed_out=self.timed_out or other.timed_out,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rulesApplied": sorted(self.rules_applied),
            "pseudonymsUsed": self.pseudonyms_used,
            "processingTimeMs": self.processing_time_ms,
            "isAnonymized": self.is_anonymized,
            "preservedStructure": self.preserved_structure,
            "errors": self.errors,
            "timedOut": self.timed_out,
        }


@dataclass
class AnonymizedData(Generic[T]):
    data: T
    metadata: AnonymizationMetadata


@dataclass
class EngineStats:
    total_processed: int = 0
    total_pseudonyms: int = 0
    average_processing_time: float = 0.0
    error_rate: float = 0.0
    rules_usage: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalProcessed": self.total_processed,
            "totalPseudonyms": self.total_pseudonyms,
            "averageProcessingTime": self.average_processing_time,
            "errorRate": self.error_rate,
            "rulesUsage": dict(self.rules_usage),
        }


@dataclass
class MappingStats:
    total_mappings: int = 0
    mappings_by_type: dict[str, int] = field(default_factory=dict)
    mappings_by_category: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class PiiLocation:
    type: str
    path: str
    value: str
    start: int
    end: int


@dataclass
class PiiDetectionResult:
    has_pii: bool
    detected_types: list[str]
    confidence: float
    locations: list[PiiLocation]
