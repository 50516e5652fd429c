"""
Tests for POST /api/process-invoice.

The pipeline's heavy collaborators are swapped for spies through FastAPI
dependency overrides.
"""

import asyncio
import io

import pytest
from fastapi.testclient import TestClient

from src.api.deps import get_pipeline
from src.api.main import app
from src.core.config import get_settings
from src.services.pipeline import InvoicePipeline
from src.services.providers import create_provider
from tests.stubs import SpyPreprocessor, SpyRecognizer, StubProvider

client = TestClient(app)


@pytest.fixture
def wired(app_settings):
    """Route requests through a pipeline built from spies and record provider lookups"""
    preprocessor = SpyPreprocessor()
    recognizer = SpyRecognizer()
    provider = StubProvider()
    lookups = []

    def provider_factory(name, model, settings):
        lookups.append((name, model))
        if name not in ("openai", "gemini", "ollama"):
            return create_provider(name, model, settings)
        return provider

    def pipeline():
        return InvoicePipeline(
            app_settings,
            preprocessor=preprocessor,
            recognizer_factory=recognizer.factory,
            provider_factory=provider_factory,
        )

    app.dependency_overrides[get_settings] = lambda: app_settings
    app.dependency_overrides[get_pipeline] = pipeline
    try:
        yield {
            "preprocessor": preprocessor,
            "recognizer": recognizer,
            "provider": provider,
            "lookups": lookups,
        }
    finally:
        app.dependency_overrides.clear()


def upload(data=b"\xff\xd8\xff\xe0 fake jpeg", **form):
    files = {"file": ("receipt.jpg", io.BytesIO(data), "image/jpeg")}
    return client.post("/api/process-invoice", files=files, data=form)


def test_process_invoice_success(wired):
    r = upload(language="eng")
    assert r.status_code == 200

    body = r.json()
    assert body["success"] is True
    assert "error" not in body
    invoice = body["invoice"]
    assert invoice["vendor"] == "Acme"
    assert invoice["date"] == "2024-03-01"
    assert invoice["total"] == "12.50"
    assert invoice["tax"] == "1.00"
    assert invoice["items"] == [{"name": "Widget", "amount": "12.50", "isTaxed": True, "quantity": 2}]
    assert invoice["categories"] == ["Shopping"]
    assert invoice["rawText"] == wired["recognizer"].text
    assert invoice["confidence"] == 0.85
    assert "processedAt" in invoice
    assert body["ocrDuration"] == 0.25
    assert "aiDuration" in body
    assert "totalDuration" in body


def test_process_invoice_uses_default_provider(wired, app_settings):
    upload()
    assert wired["lookups"] == [(app_settings.ai_default_provider, None)]


def test_process_invoice_passes_provider_and_model(wired):
    upload(aiProvider="ollama", model="llava")
    assert wired["lookups"] == [("ollama", "llava")]


def test_process_invoice_vision_mode(wired):
    r = upload(useVisionModel="true", aiProvider="gemini")

    body = r.json()
    assert body["success"] is True
    assert body["invoice"]["rawText"] == ""
    assert wired["recognizer"].calls == []
    _, image = wired["provider"].calls[0]
    assert image.startswith("data:image/jpeg;base64,")


def test_only_literal_true_enables_vision(wired):
    upload(useVisionModel="yes")
    assert len(wired["recognizer"].calls) == 1


def test_unsupported_provider_reported_in_body(wired):
    r = upload(aiProvider="unsupported-xyz")

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "unsupported AI provider: unsupported-xyz"
    assert "invoice" not in body
    assert "totalDuration" in body
    assert wired["preprocessor"].calls == []


def test_processing_failure_is_200_with_error(wired):
    wired["provider"].answer = "I could not read the receipt"
    r = upload()

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is False
    assert "I could not read the receipt" in body["error"]


def test_oversized_upload_rejected_before_processing(wired, app_settings):
    r = upload(data=b"x" * (app_settings.max_upload_size + 1))

    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "File too large or invalid form data"}
    assert wired["preprocessor"].calls == []
    assert wired["provider"].calls == []
    assert wired["lookups"] == []


def test_upload_at_limit_is_accepted(wired, app_settings):
    r = upload(data=b"x" * app_settings.max_upload_size)

    assert r.status_code == 200
    assert isinstance(r.json()["success"], bool)


def test_missing_file_returns_400(wired):
    r = client.post("/api/process-invoice", data={"aiProvider": "openai"})

    assert r.status_code == 400
    assert r.json()["error"] == "No file provided"
    assert wired["provider"].calls == []


def test_empty_file_returns_400(wired):
    r = upload(data=b"")

    assert r.status_code == 400
    assert wired["preprocessor"].calls == []


def test_wrongly_shaped_answer_reports_parse_error(wired):
    wired["provider"].answer = '{"vendor":"Acme","items":5}'
    r = upload()

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is False
    assert body["error"].startswith("failed to parse AI response")
    assert '{"vendor":"Acme","items":5}' in body["error"]


class ExplodingPipeline:
    async def process(self, request):
        await asyncio.sleep(0.01)
        raise RuntimeError("boom")


def test_unexpected_error_reports_elapsed_time(app_settings):
    app.dependency_overrides[get_settings] = lambda: app_settings
    app.dependency_overrides[get_pipeline] = ExplodingPipeline
    try:
        r = upload()
    finally:
        app.dependency_overrides.clear()

    assert r.status_code == 200
    body = r.json()
    assert body == {"success": False, "error": "internal error: boom", "totalDuration": body["totalDuration"]}
    assert body["totalDuration"] >= 0.01
