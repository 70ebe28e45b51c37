from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .models import AnonymizedData


def _json_size(value: Any) -> int:
    try:
        text = json.dumps(value, ensure_ascii=False, default=str)
    except ValueError:
        # circular input; repr() elides the cycle
        text = repr(value)
    return len(text.encode("utf-8"))


@dataclass(frozen=True)
class AnonymizationReport:
    """Summary of one anonymization run, suitable for attaching to an issue."""

    data_type: str
    rules_applied: list[str]
    pseudonyms_created: int
    processing_time_ms: int
    original_size: int
    anonymized_size: int
    compression_ratio: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @classmethod
    def from_result(
        cls, original: Any, result: AnonymizedData[Any], data_type: str
    ) -> AnonymizationReport:
        original_size = _json_size(original)
        anonymized_size = _json_size(result.data)
        return cls(
            data_type=data_type,
            rules_applied=sorted(result.metadata.rules_applied),
            pseudonyms_created=result.metadata.pseudonyms_used,
            processing_time_ms=result.metadata.processing_time_ms,
            original_size=original_size,
            anonymized_size=anonymized_size,
            compression_ratio=anonymized_size / original_size if original_size else 1.0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "dataType": self.data_type,
            "rulesApplied": list(self.rules_applied),
            "pseudonymsCreated": self.pseudonyms_created,
            "processingTimeMs": self.processing_time_ms,
            "originalSize": self.original_size,
            "anonymizedSize": self.anonymized_size,
            "compressionRatio": round(self.compression_ratio, 4),
        }
