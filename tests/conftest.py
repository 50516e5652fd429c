"""
Pytest configuration and shared fixtures.

Registers the ``integration`` marker for tests that need the real
ImageMagick / Tesseract binaries, plus stub collaborators for the pipeline.
"""

import pytest

from src.core.config import Settings
from tests.stubs import SpyPreprocessor, SpyRecognizer, StubProvider


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against the real ImageMagick and Tesseract binaries"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring ImageMagick/Tesseract"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture
def app_settings():
    return Settings(
        _env_file=None,
        AI_DEFAULT_PROVIDER="openai",
        OPENAI_API_KEY="sk-test",
        OPENAI_MODEL="gpt-4o",
        INVOICE_CATEGORIES="Groceries,Shopping,Travel",
        MAX_UPLOAD_SIZE=1024,
    )


@pytest.fixture
def stub_provider():
    return StubProvider()


@pytest.fixture
def spy_preprocessor():
    return SpyPreprocessor()


@pytest.fixture
def spy_recognizer():
    return SpyRecognizer()
