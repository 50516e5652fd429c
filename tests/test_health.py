"""
Tests for GET /health.
"""

import subprocess
from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.services import health

client = TestClient(app)


def fake_run(available: set[str]):
    def run(command, **kwargs):
        if command[0] not in available:
            raise FileNotFoundError(command[0])
        return SimpleNamespace(stdout=f"{command[0]} 9.9.9\nmore details\n", stderr="", returncode=0)
    return run


def test_health_all_dependencies_available(monkeypatch):
    monkeypatch.setattr(health.subprocess, "run", fake_run({"tesseract", "magick"}))

    r = client.get("/health")

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["version"] == health.VERSION
    assert body["tesseract"] == {"available": True, "version": "tesseract 9.9.9"}
    assert body["imageMagick"] == {"available": True, "version": "magick 9.9.9"}
    assert set(body["ai"]) == {"defaultProvider", "ocrEngine"}
    assert "peakResident" in body["memory"]
    assert "uptime" in body
    assert "timestamp" in body


def test_health_falls_back_to_convert(monkeypatch):
    monkeypatch.setattr(health.subprocess, "run", fake_run({"tesseract", "convert"}))

    status = health.check_imagemagick()

    assert status.available is True
    assert status.version == "convert 9.9.9"


def test_health_degraded_without_tesseract(monkeypatch):
    monkeypatch.setattr(health.subprocess, "run", fake_run({"magick"}))

    r = client.get("/health")

    assert r.status_code == 503
    body = r.json()
    assert body["status"] == "degraded"
    assert body["tesseract"]["available"] is False
    assert body["tesseract"]["error"] == "tesseract not found or not executable"


def test_health_degraded_without_imagemagick(monkeypatch):
    def run(command, **kwargs):
        if command[0] == "tesseract":
            return SimpleNamespace(stdout="tesseract 5.3.0\n", stderr="", returncode=0)
        raise subprocess.CalledProcessError(1, command)

    monkeypatch.setattr(health.subprocess, "run", run)

    r = client.get("/health")

    assert r.status_code == 503
    assert r.json()["imageMagick"] == {
        "available": False,
        "error": "imagemagick not found or not executable",
    }


def test_uptime_is_measured_from_start():
    assert health.uptime(health.STARTED_AT + timedelta(minutes=5)) == "0:05:00"


@pytest.mark.integration
def test_real_dependencies_are_detected():
    report = health.build_health_report(health.Settings())
    assert report.healthy
