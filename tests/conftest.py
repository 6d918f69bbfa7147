"""
Pytest configuration and shared fixtures.

Registers the ``integration`` marker (tests against the real hosted model,
skipped unless ``--run-integration`` is given) and provides fixtures that
point the model client either at mock mode or at a respx-mocked endpoint.
"""

import base64
import json

import httpx
import pytest

from invoice_extractor.core.config import settings

MODEL_BASE_URL = "https://llm.test/v1"
CHAT_COMPLETIONS_URL = f"{MODEL_BASE_URL}/chat/completions"

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PNG_BASE64 = base64.b64encode(PNG_BYTES).decode("ascii")


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against the real hosted model"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring a real model API key"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def chat_completion(content: str) -> httpx.Response:
    """Build an OpenAI chat completion response carrying ``content``"""
    return httpx.Response(
        200,
        json={
            "id": "chatcmpl-test",
            "object": "chat.completion",
            "created": 1700000000,
            "model": "gpt-4o",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": "stop",
                }
            ],
            "usage": {"prompt_tokens": 10, "completion_tokens": 10, "total_tokens": 20},
        },
    )


def chat_completion_json(payload: dict) -> httpx.Response:
    return chat_completion(json.dumps(payload))


@pytest.fixture
def mock_model(monkeypatch):
    """No API key configured: the model client returns its MOCK extraction"""
    monkeypatch.setattr(settings, "llm_api_key", None)
    monkeypatch.setattr(settings, "validation_mode", "deterministic")
    monkeypatch.setattr(settings, "strict_missing_field_policy", True)


@pytest.fixture
def hosted_model(monkeypatch):
    """API key configured against a fake endpoint; mock it with respx"""
    monkeypatch.setattr(settings, "llm_api_key", "test-key")
    monkeypatch.setattr(settings, "llm_base_url", MODEL_BASE_URL)
    monkeypatch.setattr(settings, "llm_max_retries", 0)
    monkeypatch.setattr(settings, "validation_mode", "deterministic")
    monkeypatch.setattr(settings, "strict_missing_field_policy", True)
