"""Tests for the FastAPI surface."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from cim_extract.api.app import create_app
from cim_extract.core.exceptions import ValidationError
from cim_extract.core.models import FinalResult
from cim_extract.resilience.circuit_breaker import BreakerRegistry, CircuitBreakerConfig


class FakeOrchestrator:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.requests = []
        self.breakers = BreakerRegistry.from_configs({
            "vision": CircuitBreakerConfig(failure_threshold=1),
            "text": CircuitBreakerConfig(),
        })

    async def run(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.result


def client_for(orchestrator):
    return TestClient(create_app(orchestrator=orchestrator))


def test_analyze_success():
    orchestrator = FakeOrchestrator(
        result=FinalResult(success=True, data={"purchasePrice": 1000000, "hybridAnalysis": {"version": "hybrid-v1.0"}})
    )

    with client_for(orchestrator) as client:
        response = client.post(
            "/analyze",
            json={"images": ["data:image/jpeg;base64,/9j/AAAA"], "fileData": "JVBERi0=", "fileName": "cim.pdf"},
        )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "data": {"purchasePrice": 1000000, "hybridAnalysis": {"version": "hybrid-v1.0"}},
    }
    request = orchestrator.requests[0]
    assert request.images == ["/9j/AAAA"]
    assert request.file_bytes == "JVBERi0="
    assert request.file_name == "cim.pdf"


def test_analyze_validation_error_is_400():
    orchestrator = FakeOrchestrator(error=ValidationError("No data provided: either images or fileData is required"))

    with client_for(orchestrator) as client:
        response = client.post("/analyze", json={"fileName": "empty.pdf"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["message"].startswith("No data provided")
    assert body["error"]["attempts"] == []


def test_analyze_all_attempts_failed_is_500():
    attempts = [{"stage": "primary", "method": "vision-analysis", "success": False, "errorKind": "timeout"}]
    orchestrator = FakeOrchestrator(
        result=FinalResult(success=False, error={"message": "All extraction methods failed", "attempts": attempts})
    )

    with client_for(orchestrator) as client:
        response = client.post("/analyze", json={"images": ["/9j/AAAA"]})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"]["attempts"] == attempts
    assert "data" not in body


def test_health():
    with client_for(FakeOrchestrator()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": "hybrid-v1.0"}


def test_breaker_health_reports_degraded_when_open():
    orchestrator = FakeOrchestrator()

    with client_for(orchestrator) as client:
        healthy = client.get("/health/breakers").json()

        async def fail():
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            asyncio.run(orchestrator.breakers.get("vision").execute(fail))
        degraded = client.get("/health/breakers").json()

    assert healthy["status"] == "healthy"
    assert set(healthy["breakers"]) == {"vision", "text"}
    assert degraded["status"] == "degraded"
    assert degraded["breakers"]["vision"]["state"] == "OPEN"
