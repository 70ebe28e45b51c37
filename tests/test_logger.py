from __future__ import annotations

import logging

import pytest

from pve_anonymizer.engine import AnonymizationEngine
from pve_anonymizer.logger import Log


def test_render_appends_fields() -> None:
    assert Log.render("Cycle replaced", {"depth": 3}) == "Cycle replaced (depth=3)"
    assert Log.render("plain", {}) == "plain"


def test_fields_reach_the_message(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="pve_anonymizer")
    Log.warning("Budget exhausted", budget_ms=250)
    (record,) = caplog.records
    assert record.getMessage() == "Budget exhausted (budget_ms=250)"
    assert record.budget_ms == 250


@pytest.mark.asyncio
async def test_cycle_warning_carries_depth(
    engine: AnonymizationEngine, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING, logger="pve_anonymizer")
    data: dict = {}
    data["self"] = data
    await engine.anonymize(data)
    assert any("depth=1" in record.getMessage() for record in caplog.records)
