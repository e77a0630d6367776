"""Shared fixtures: fixed clock, in-memory store, canned model payloads."""

from __future__ import annotations

import json
from datetime import date
from types import SimpleNamespace
from typing import Any

import pytest

from aiwriter.budget.ledger import BudgetLedger
from aiwriter.llm.client import RawCompletion
from aiwriter.models import Usage
from aiwriter.utils.logger import clear_loggers
from aiwriter.utils.storage import MemoryStore


class FixedClock:
    """Clock whose day the test controls."""

    def __init__(self, current: date) -> None:
        self.current = current

    def today(self) -> date:
        return self.current


def _make_payload(
    sections: int = 3, slides: int = 3, rows: int = 3, keywords: list[str] | None = None
) -> dict[str, Any]:
    """A well-formed model payload matching the strict schema."""
    keywords = keywords or [f"keyword {i}" for i in range(max(sections, slides))]
    return {
        "pdf_word": {
            "title": "Renewable Energy",
            "author": "AI Writer",
            "language": "en",
            "sections": [
                {
                    "heading": f"Section {i + 1}",
                    "paragraph": f"Paragraph {i + 1}.",
                    "bullets": ["a", "b", "c"],
                    "image_keyword": keywords[i % len(keywords)],
                }
                for i in range(sections)
            ],
        },
        "ppt": {
            "slides": [
                {
                    "title": f"Slide {i + 1}",
                    "bullets": ["x", "y", "z"],
                    "image_keyword": keywords[i % len(keywords)],
                }
                for i in range(slides)
            ]
        },
        "excel": {
            "headers": ["Section", "Key Points", "Image Keyword"],
            "rows": [[f"Section {i + 1}", "a; b; c", "kw"] for i in range(rows)],
        },
    }


def _make_response(content: str | None, total_tokens: int | None = 100) -> SimpleNamespace:
    """Shape of a litellm ModelResponse, as far as the client reads it."""
    usage = (
        SimpleNamespace(
            prompt_tokens=total_tokens // 4,
            completion_tokens=total_tokens - total_tokens // 4,
            total_tokens=total_tokens,
        )
        if total_tokens is not None
        else None
    )
    choices = (
        [SimpleNamespace(message=SimpleNamespace(role="assistant", content=content))]
        if content is not None
        else []
    )
    return SimpleNamespace(choices=choices, usage=usage, model="test-model")


def _make_completion(payload: dict[str, Any] | str, total_tokens: int = 100) -> RawCompletion:
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return RawCompletion(content=content, usage=Usage(total_tokens=total_tokens))


@pytest.fixture(autouse=True)
def clean_logger_registry():
    """Clear the structured logger registry after each test."""
    yield
    clear_loggers()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(date(2025, 3, 14))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def ledger(store: MemoryStore, clock: FixedClock) -> BudgetLedger:
    return BudgetLedger(store, clock, daily_limit=5000, bonus=500, estimated_cost=1000)


@pytest.fixture
def payload() -> dict[str, Any]:
    return _make_payload()


@pytest.fixture(name="make_payload")
def make_payload_fixture():
    """Factory for well-formed payloads with a chosen number of items."""
    return _make_payload


@pytest.fixture(name="make_response")
def make_response_fixture():
    """Factory for litellm-shaped responses."""
    return _make_response


@pytest.fixture(name="make_completion")
def make_completion_fixture():
    """Factory for RawCompletion values returned by a mocked ChatClient."""
    return _make_completion
