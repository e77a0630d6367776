"""Shared fixtures for integration tests."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from pydantic import SecretStr

from aiwriter.config import ImageSearchConfig, LlmConfig


@pytest.fixture
def llm_config() -> LlmConfig:
    """GIVEN an LLM config pointing at a test endpoint."""
    return LlmConfig(api_key=SecretStr("sk-test"), api_base="https://llm.test/v1")


@pytest.fixture
def image_config() -> ImageSearchConfig:
    """GIVEN an image search config with a key so lookups run."""
    return ImageSearchConfig(base_url="https://images.test/v1", api_key=SecretStr("k"))


@pytest.fixture
def photo_transport() -> httpx.MockTransport:
    """GIVEN a photo API that answers every query with a medium-size URL."""

    def handler(request: httpx.Request) -> httpx.Response:
        query = request.url.params["query"].replace(" ", "-")
        return httpx.Response(
            200, json={"photos": [{"src": {"medium": f"https://cdn.test/{query}.jpg"}}]}
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "output"


@pytest.fixture
def keyless_image_config() -> ImageSearchConfig:
    """GIVEN no image API key, so enrichment is skipped."""
    return ImageSearchConfig(api_key=None)
