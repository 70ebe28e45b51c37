from __future__ import annotations

from typing import Any

import pytest

from pve_anonymizer.engine import AnonymizationEngine
from pve_anonymizer.models import CYCLE_MARKER, REDACTED, AnonymizationOptions
from pve_anonymizer.processors import LogDataProcessor


@pytest.fixture
def processor(engine: AnonymizationEngine) -> LogDataProcessor:
    return LogDataProcessor(engine)


# ---------------------------------------------------------------------------
# can_process
# ---------------------------------------------------------------------------


def test_accepts_log_batch(processor: LogDataProcessor, log_entry: dict[str, Any]) -> None:
    assert processor.can_process([log_entry, log_entry])


@pytest.mark.parametrize("data", [[], "text", None, 42, {"message": "x"}, [{"message": "x"}]])
def test_rejects_other_shapes(processor: LogDataProcessor, data: Any) -> None:
    assert not processor.can_process(data)


def test_requires_resources_affected(processor: LogDataProcessor, log_entry: dict[str, Any]) -> None:
    del log_entry["context"]["resourcesAffected"]
    assert not processor.can_process([log_entry])


def test_processor_type(processor: LogDataProcessor) -> None:
    assert processor.get_processor_type() == "LogDataProcessor"


# ---------------------------------------------------------------------------
# process
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_message_and_context_anonymized(
    processor: LogDataProcessor, log_entry: dict[str, Any]
) -> None:
    result = await processor.process([log_entry])
    (entry,) = result.data

    assert "192.168.1.10" not in entry["message"]
    assert "admin@example.com" not in entry["message"]
    context = entry["context"]
    assert context["workspace"].startswith("/home/")
    assert "alice" not in context["workspace"]
    assert context["proxmoxServer"] != "pve1.example.com"
    assert context["userId"] != "alice@example.com"
    assert context["sessionId"] == "s-1"
    assert context["apiToken"] == REDACTED
    assert context["dryRun"] is False


@pytest.mark.asyncio
async def test_resources_and_duration_preserved(
    processor: LogDataProcessor, log_entry: dict[str, Any]
) -> None:
    result = await processor.process([log_entry])
    context = result.data[0]["context"]
    assert context["resourcesAffected"] == ["vm-100.example.com"]
    assert context["duration"] == 1200


@pytest.mark.asyncio
async def test_envelope_fields_preserved(
    processor: LogDataProcessor, log_entry: dict[str, Any]
) -> None:
    result = await processor.process([log_entry])
    entry = result.data[0]
    for key in ("timestamp", "correlationId", "operation", "phase", "level"):
        assert entry[key] == log_entry[key]


@pytest.mark.asyncio
async def test_error_block(processor: LogDataProcessor, log_entry: dict[str, Any]) -> None:
    result = await processor.process([log_entry])
    error = result.data[0]["error"]
    assert error["type"] == "ConnectionError"
    assert error["code"] == "ETIMEDOUT"
    assert "192.168.1.10" not in error["message"]
    assert "alice" not in error["stack"]
    assert "192.168.1.10" not in error["recoveryActions"][0]


@pytest.mark.asyncio
async def test_metadata_anonymized(processor: LogDataProcessor, log_entry: dict[str, Any]) -> None:
    result = await processor.process([log_entry])
    metadata = result.data[0]["metadata"]
    assert metadata["node"] != "pve-node-01"
    assert metadata["attempt"] == 2


@pytest.mark.asyncio
async def test_same_value_same_pseudonym_across_fields(
    processor: LogDataProcessor, log_entry: dict[str, Any]
) -> None:
    result = await processor.process([log_entry])
    entry = result.data[0]
    ip = processor.engine.pseudonyms.get_mapping("192.168.1.10").pseudonym
    assert ip in entry["message"]
    assert ip in entry["error"]["message"]


@pytest.mark.asyncio
async def test_metadata_merged(processor: LogDataProcessor, log_entry: dict[str, Any]) -> None:
    result = await processor.process([log_entry])
    meta = result.metadata
    assert {"email", "ip_address", "hostname", "path", "password"} <= meta.rules_applied
    assert meta.pseudonyms_used >= 4
    assert meta.is_anonymized
    assert meta.preserved_structure is True
    assert meta.errors == 0


@pytest.mark.asyncio
async def test_input_not_mutated(processor: LogDataProcessor, log_entry: dict[str, Any]) -> None:
    await processor.process([log_entry])
    assert log_entry["message"] == "Connecting to 192.168.1.10 as admin@example.com"


@pytest.mark.asyncio
async def test_pseudonyms_disabled(processor: LogDataProcessor, log_entry: dict[str, Any]) -> None:
    options = AnonymizationOptions(enable_pseudonyms=False)
    result = await processor.process([log_entry], options)
    assert result.data[0]["message"] == f"Connecting to {REDACTED} as {REDACTED}"
    assert len(processor.engine.pseudonyms) == 0


@pytest.mark.asyncio
async def test_context_cycles_replaced(processor: LogDataProcessor, log_entry: dict[str, Any]) -> None:
    details: list[Any] = ["seen at 10.0.0.3"]
    details.append(details)
    log_entry["context"]["details"] = details
    log_entry["context"]["parent"] = log_entry["context"]
    result = await processor.process([log_entry])
    context = result.data[0]["context"]
    assert "10.0.0.3" not in context["details"][0]
    assert context["details"][1] == CYCLE_MARKER
    assert context["parent"]["parent"] == CYCLE_MARKER
    assert result.metadata.errors >= 2


@pytest.mark.asyncio
async def test_batch_counted_as_one_call(processor: LogDataProcessor, log_entry: dict[str, Any]) -> None:
    await processor.process([log_entry, log_entry])
    assert processor.engine.get_stats().total_processed == 1
