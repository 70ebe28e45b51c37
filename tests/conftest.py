from __future__ import annotations

from typing import Any

import pytest

from pve_anonymizer.engine import AnonymizationEngine


@pytest.fixture
def engine() -> AnonymizationEngine:
    return AnonymizationEngine()


@pytest.fixture
def log_entry() -> dict[str, Any]:
    return {
        "timestamp": "2025-01-01T10:00:00Z",
        "correlationId": "corr-123",
        "operation": "vm.create",
        "phase": "start",
        "level": "error",
        "message": "Connecting to 192.168.1.10 as admin@example.com",
        "context": {
            "workspace": "/home/alice/infra",
            "proxmoxServer": "pve1.example.com",
            "resourcesAffected": ["vm-100.example.com"],
            "duration": 1200,
            "userId": "alice@example.com",
            "sessionId": "s-1",
            "apiToken": "abc",
            "dryRun": False,
        },
        "error": {
            "type": "ConnectionError",
            "message": "timeout reaching 192.168.1.10",
            "stack": "at connect (/home/alice/app.js:10)",
            "recoveryActions": ["check 192.168.1.10 is reachable"],
            "code": "ETIMEDOUT",
        },
        "metadata": {"node": "pve-node-01", "attempt": 2},
    }


@pytest.fixture
def snapshot(log_entry: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": "diag-1700000000",
        "timestamp": "2025-01-01T10:00:05Z",
        "workspace": "/home/alice/proxmox-infra",
        "operation": "vm.create",
        "error": {"message": "failed on 10.0.0.7", "stack": "Error: failed on 10.0.0.7"},
        "logs": [log_entry],
        "metrics": [
            {
                "name": "api.latency",
                "value": 12.5,
                "unit": "ms",
                "timestamp": "2025-01-01T10:00:01Z",
                "tags": {"host": "pve1.example.com"},
            }
        ],
        "healthStatus": [
            {
                "component": "proxmox",
                "status": "error",
                "message": "cannot reach pve1.example.com",
                "details": {"address": "10.0.0.7"},
                "timestamp": "2025-01-01T10:00:02Z",
            }
        ],
        "systemInfo": {
            "nodeVersion": "v20.11.0",
            "platform": "linux",
            "memory": {"rss": 1024, "heapUsed": 512},
            "uptime": 12.5,
        },
        "workspaceInfo": {
            "path": "/home/alice/proxmox-infra",
            "config": {"server": "pve1.example.com", "password": "pw"},
            "terraformVersion": "1.6.0",
        },
    }
