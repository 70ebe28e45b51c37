from __future__ import annotations

import pytest

from pve_anonymizer.engine import AnonymizationEngine
from pve_anonymizer.reports import AnonymizationReport


@pytest.mark.asyncio
async def test_report_from_result(engine: AnonymizationEngine) -> None:
    original = {"message": "ping admin@example.com at 10.0.0.1"}
    result = await engine.anonymize(original)
    report = AnonymizationReport.from_result(original, result, "generic")

    assert report.data_type == "generic"
    assert report.rules_applied == ["email", "ip_address"]
    assert report.pseudonyms_created == 2
    assert report.original_size > 0
    assert report.anonymized_size > 0
    assert report.compression_ratio == report.anonymized_size / report.original_size


@pytest.mark.asyncio
async def test_report_to_dict(engine: AnonymizationEngine) -> None:
    result = await engine.anonymize("nothing here")
    data = AnonymizationReport.from_result("nothing here", result, "generic").to_dict()
    assert set(data) == {
        "id",
        "timestamp",
        "dataType",
        "rulesApplied",
        "pseudonymsCreated",
        "processingTimeMs",
        "originalSize",
        "anonymizedSize",
        "compressionRatio",
    }
    assert data["compressionRatio"] == 1.0
    assert data["rulesApplied"] == []


@pytest.mark.asyncio
async def test_report_ids_unique(engine: AnonymizationEngine) -> None:
    result = await engine.anonymize("x")
    a = AnonymizationReport.from_result("x", result, "generic")
    b = AnonymizationReport.from_result("x", result, "generic")
    assert a.id != b.id


@pytest.mark.asyncio
async def test_report_handles_non_json_values(engine: AnonymizationEngine) -> None:
    original = {"when": object()}
    result = await engine.anonymize({"n": 1})
    report = AnonymizationReport.from_result(original, result, "generic")
    assert report.original_size > 0


@pytest.mark.asyncio
async def test_report_handles_circular_original(engine: AnonymizationEngine) -> None:
    original: dict = {"name": "node1"}
    original["self"] = original
    result = await engine.anonymize(original)
    report = AnonymizationReport.from_result(original, result, "generic")
    assert report.original_size > 0
    assert result.metadata.errors == 1
