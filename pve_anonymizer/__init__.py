"""pve-anonymizer: deterministic pseudonymization of Proxmox VE diagnostics before they leave the host."""
from .engine import AnonymizationEngine
from .exceptions import AnonymizationError, InvalidInput
from .models import (
    DEFAULT_OPTIONS,
    REDACTED,
    AnonymizationMetadata,
    AnonymizationOptions,
    AnonymizationRule,
    AnonymizedData,
    EngineStats,
    PiiDetectionResult,
    PseudonymMapping,
    RuleType,
)
from .processors import DataShape, anonymize_any, classify, create_processor
from .pseudonyms import PseudonymManager
from .reports import AnonymizationReport

__all__ = [
    "AnonymizationEngine",
    "AnonymizationError",
    "AnonymizationMetadata",
    "AnonymizationOptions",
    "AnonymizationReport",
    "AnonymizationRule",
    "AnonymizedData",
    "DataShape",
    "DEFAULT_OPTIONS",
    "EngineStats",
    "InvalidInput",
    "PiiDetectionResult",
    "PseudonymManager",
    "PseudonymMapping",
    "REDACTED",
    "RuleType",
    "anonymize_any",
    "classify",
    "create_processor",
]
