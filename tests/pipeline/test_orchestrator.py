"""Tests for the generation orchestrator state machine."""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic import SecretStr

from aiwriter.config import ImageSearchConfig
from aiwriter.exceptions import (
    MalformedResponse,
    RateLimited,
    RequestTimeout,
    ServerError,
    Unauthorized,
)
from aiwriter.models import DocSection, GenerationRequest, OutputFormat, Usage
from aiwriter.pipeline.orchestrator import GenerationOrchestrator, GenerationState

PDF_ONLY = frozenset({OutputFormat.PDF})
ALL_FORMATS = frozenset(OutputFormat)


@pytest.fixture
def chat() -> MagicMock:
    client = MagicMock()
    client.complete = AsyncMock()
    return client


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def no_images() -> ImageSearchConfig:
    return ImageSearchConfig(api_key=None)


@pytest.fixture
def orchestrator(chat, ledger, no_images, sleep, tmp_path: Path) -> GenerationOrchestrator:
    return GenerationOrchestrator(chat, ledger, no_images, sleep=sleep, log_dir=tmp_path)


def _events(log_dir: Path, generation_id: str) -> list[dict]:
    path = log_dir / f"{generation_id}.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestGenerateHappyPath:
    """A well-formed response walks every state to DONE."""

    @pytest.mark.asyncio
    async def test_done_with_result_and_charge(
        self, orchestrator, chat, ledger, payload, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(payload, total_tokens=1800)

        outcome = await orchestrator.generate(
            GenerationRequest("Renewable Energy", "en", ALL_FORMATS)
        )

        assert outcome.ok
        assert outcome.state is GenerationState.DONE
        assert len(outcome.result.document.sections) == 3
        assert len(outcome.result.slides) == 3
        assert outcome.history.topic == "Renewable Energy"
        assert outcome.error is None
        assert outcome.budget.tokens_used_today == 1800
        assert ledger.snapshot().tokens_used_today == 1800

    @pytest.mark.asyncio
    async def test_state_transitions_logged_in_order(
        self, orchestrator, chat, payload, tmp_path, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(payload)

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        transitions = [
            (e["from_state"], e["to_state"])
            for e in _events(tmp_path, outcome.history.id)
            if e["event_type"] == "state_transition"
        ]
        assert transitions == [
            ("idle", "budget_checked"),
            ("budget_checked", "calling"),
            ("calling", "validating"),
            ("validating", "enriching"),
            ("enriching", "done"),
        ]

    @pytest.mark.asyncio
    async def test_prompt_names_requested_views(
        self, orchestrator, chat, payload, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(payload)

        await orchestrator.generate(
            GenerationRequest("Topic", "en", frozenset({OutputFormat.PPTX}))
        )

        user_prompt = chat.complete.call_args.args[1]
        assert "PowerPoint slides" in user_prompt
        assert "Excel table" not in user_prompt
        assert chat.complete.call_args.kwargs["max_tokens"] == 4096


class TestBudgetGate:
    """Pre-flight and retry budget checks."""

    @pytest.mark.asyncio
    async def test_over_budget_makes_no_call(self, orchestrator, chat, ledger) -> None:
        ledger.consume(4500)

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.state is GenerationState.FAILED
        assert outcome.failed_state is GenerationState.IDLE
        assert outcome.error.code == "BUDGET_EXCEEDED"
        assert outcome.error.remaining == 500
        assert outcome.user_message == "Daily token limit reached. Your allowance resets tomorrow."
        chat.complete.assert_not_awaited()
        assert ledger.snapshot().tokens_used_today == 4500

    @pytest.mark.asyncio
    async def test_uploaded_content_raises_the_estimate(
        self, orchestrator, chat, ledger
    ) -> None:
        """Estimate 1000 + 4000/4 = 2000 does not fit 3500 used of 5000."""
        ledger.consume(3500)

        outcome = await orchestrator.summarize("x" * 4000, "en", PDF_ONLY)

        assert outcome.error.code == "BUDGET_EXCEEDED"
        chat.complete.assert_not_awaited()


class TestRetry:
    """Only RateLimited and RequestTimeout are retried, once."""

    @pytest.mark.asyncio
    async def test_rate_limited_then_success(
        self, orchestrator, chat, ledger, sleep, payload, make_completion
    ) -> None:
        chat.complete.side_effect = [
            RateLimited("calling", "429"),
            make_completion(payload, total_tokens=900),
        ]

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.ok
        assert chat.complete.await_count == 2
        sleep.assert_awaited_once()
        assert ledger.snapshot().tokens_used_today == 900

    @pytest.mark.asyncio
    async def test_timeout_retried_then_gives_up(self, orchestrator, chat) -> None:
        chat.complete.side_effect = [
            RequestTimeout("calling", "slow"),
            RequestTimeout("calling", "slow again"),
        ]

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.state is GenerationState.FAILED
        assert outcome.failed_state is GenerationState.CALLING
        assert outcome.error.code == "TIMEOUT"
        assert chat.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_unauthorized_is_not_retried(self, orchestrator, chat, sleep) -> None:
        chat.complete.side_effect = Unauthorized("calling", "401")

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.error.code == "UNAUTHORIZED"
        assert outcome.failed_state is GenerationState.CALLING
        assert chat.complete.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, orchestrator, chat) -> None:
        chat.complete.side_effect = ServerError("calling", "502", status=502)

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.error.code == "SERVER_ERROR"
        assert chat.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_rechecks_budget(self, orchestrator, chat, ledger) -> None:
        """Usage by another generation during the backoff blocks the retry."""
        ledger.consume(3900)

        async def concurrent_spend_then_429(*args, **kwargs):
            ledger.consume(1000)
            raise RateLimited("calling", "429")

        chat.complete.side_effect = concurrent_spend_then_429

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.error.code == "BUDGET_EXCEEDED"
        assert outcome.failed_state is GenerationState.CALLING
        assert chat.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_may_use_bonus(
        self, orchestrator, chat, ledger, payload, make_completion
    ) -> None:
        """4400 used + 1000 estimate exceeds 5000 but fits the 500 bonus."""
        ledger.consume(3900)

        calls = 0

        async def spend_then_succeed(*args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 1:
                ledger.consume(500)
                raise RateLimited("calling", "429")
            return make_completion(payload, total_tokens=100)

        chat.complete.side_effect = spend_then_succeed

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.ok
        assert ledger.snapshot().tokens_used_today == 4500


class TestValidationFailures:
    @pytest.mark.asyncio
    async def test_malformed_output_keeps_charge(
        self, orchestrator, chat, ledger, make_completion
    ) -> None:
        chat.complete.return_value = make_completion("Sorry, I can't do that.", total_tokens=300)

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.state is GenerationState.FAILED
        assert outcome.failed_state is GenerationState.VALIDATING
        assert outcome.error.code == "MALFORMED_OUTPUT"
        assert (
            outcome.user_message
            == "The AI returned something the app didn't understand. Please try again."
        )
        assert ledger.snapshot().tokens_used_today == 300

    @pytest.mark.asyncio
    async def test_empty_content_with_usage_is_charged(self, orchestrator, chat, ledger) -> None:
        """A response that arrived without content still costs its reported tokens."""
        chat.complete.side_effect = MalformedResponse(
            "calling", "No choices or empty message content", usage=Usage(total_tokens=321)
        )

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.error.code == "MALFORMED_RESPONSE"
        assert outcome.failed_state is GenerationState.CALLING
        assert chat.complete.await_count == 1
        assert ledger.snapshot().tokens_used_today == 321
        assert outcome.budget.tokens_used_today == 321

    @pytest.mark.asyncio
    async def test_envelope_without_usage_is_not_charged(
        self, orchestrator, chat, ledger
    ) -> None:
        chat.complete.side_effect = MalformedResponse("calling", "Response carried no usage")

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.error.code == "MALFORMED_RESPONSE"
        assert ledger.snapshot().tokens_used_today == 0

    @pytest.mark.asyncio
    async def test_missing_requested_view_is_incomplete(
        self, orchestrator, chat, payload, make_completion
    ) -> None:
        del payload["ppt"]
        chat.complete.return_value = make_completion(payload)

        outcome = await orchestrator.generate(
            GenerationRequest("Topic", "en", frozenset({OutputFormat.PPTX}))
        )

        assert outcome.error.code == "INCOMPLETE_OUTPUT"
        assert outcome.error.missing_views == ("slides",)

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_failing_state(self, orchestrator, chat) -> None:
        chat.complete.side_effect = RuntimeError("bug")

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.error.code == "INTERNAL"
        assert outcome.failed_state is GenerationState.CALLING
        assert chat.complete.await_count == 1


class TestEnrichment:
    """Image lookups never fail a generation."""

    @pytest.fixture
    def images(self) -> ImageSearchConfig:
        return ImageSearchConfig(
            base_url="https://images.test/v1", api_key=SecretStr("k"), stage_timeout=5
        )

    @staticmethod
    def _handler(request: httpx.Request) -> httpx.Response:
        query = request.url.params["query"]
        if query == "mountains":
            return httpx.Response(503)
        return httpx.Response(
            200, json={"photos": [{"src": {"medium": f"https://cdn.test/{query}.jpg"}}]}
        )

    @pytest.mark.asyncio
    async def test_partial_image_failure_still_done(
        self, chat, ledger, images, sleep, make_payload, make_completion
    ) -> None:
        payload = make_payload(sections=2, slides=2, keywords=["mountains", "ocean"])
        chat.complete.return_value = make_completion(payload)
        http = httpx.AsyncClient(transport=httpx.MockTransport(self._handler))

        async with GenerationOrchestrator(
            chat, ledger, images, sleep=sleep, http_client=http
        ) as orchestrator:
            outcome = await orchestrator.generate(GenerationRequest("Nature"))

        assert outcome.ok
        sections = outcome.result.document.sections
        assert sections[0].image_keyword == "mountains"
        assert sections[0].resolved_image_url is None
        assert sections[1].resolved_image_url == "https://cdn.test/ocean.jpg"
        assert outcome.result.slides[1].resolved_image_url == "https://cdn.test/ocean.jpg"
        assert http.is_closed

    @pytest.mark.asyncio
    async def test_without_api_key_images_are_skipped(
        self, orchestrator, chat, payload, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(payload)

        outcome = await orchestrator.generate(GenerationRequest("Topic"))

        assert outcome.ok
        assert all(s.resolved_image_url is None for s in outcome.result.document.sections)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_during_call_propagates(self, orchestrator, chat, ledger) -> None:
        started = asyncio.Event()

        async def hang(*args, **kwargs):
            started.set()
            await asyncio.sleep(60)

        chat.complete.side_effect = hang
        task = asyncio.ensure_future(orchestrator.generate(GenerationRequest("Topic")))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert ledger.snapshot().tokens_used_today == 0


class TestSummarizeTranslate:
    @pytest.mark.asyncio
    async def test_summarize_sends_content(
        self, orchestrator, chat, payload, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(payload)

        outcome = await orchestrator.summarize("Tides are caused by the moon.", "en", PDF_ONLY)

        assert outcome.ok
        assert outcome.history.topic == "Summary"
        assert "Tides are caused by the moon." in chat.complete.call_args.args[1]
        assert chat.complete.call_args.kwargs["stage"] == "summarize"

    @pytest.mark.asyncio
    async def test_translate_records_target_language(
        self, orchestrator, chat, payload, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(payload)

        outcome = await orchestrator.translate("Hola", "es", "en", PDF_ONLY)

        assert outcome.ok
        assert outcome.history.language == "en"
        assert "from es to en" in chat.complete.call_args.args[0]


class TestChunkedUploads:
    """Uploads longer than chunk_chars are sent in parts and joined."""

    # Three 60-character paragraphs split into one part each at chunk_chars=100
    TEXT = "\n\n".join(letter * 60 for letter in "abc")

    @pytest.fixture
    def chunked(self, chat, ledger, no_images, sleep, tmp_path: Path) -> GenerationOrchestrator:
        return GenerationOrchestrator(
            chat, ledger, no_images, sleep=sleep, log_dir=tmp_path, chunk_chars=100
        )

    @pytest.mark.asyncio
    async def test_each_part_sent_charged_and_merged(
        self, chunked, chat, ledger, make_payload, make_completion
    ) -> None:
        part = make_payload(sections=1, slides=1, rows=1)
        chat.complete.side_effect = [
            make_completion(part, total_tokens=700),
            make_completion(part, total_tokens=600),
            make_completion(part, total_tokens=500),
        ]

        outcome = await chunked.summarize(self.TEXT, "en", ALL_FORMATS)

        assert outcome.ok
        assert chat.complete.await_count == 3
        users = [c.args[1] for c in chat.complete.call_args_list]
        for index, (letter, user) in enumerate(zip("abc", users), start=1):
            assert letter * 60 in user
            assert f"Part: {index} of 3" in user
        assert "continuation" not in users[0]
        assert "continuation" in users[1]
        stages = [c.kwargs["stage"] for c in chat.complete.call_args_list]
        assert stages == ["summarize[1/3]", "summarize[2/3]", "summarize[3/3]"]
        assert len(outcome.result.document.sections) == 3
        assert len(outcome.result.slides) == 3
        assert len(outcome.result.table.rows) == 3
        assert outcome.result.document.title == "Renewable Energy"
        assert ledger.snapshot().tokens_used_today == 1800

    @pytest.mark.asyncio
    async def test_translate_parts_are_numbered(
        self, chunked, chat, make_payload, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(make_payload(sections=1))

        outcome = await chunked.translate(self.TEXT, "es", "en", PDF_ONLY)

        assert outcome.ok
        users = [c.args[1] for c in chat.complete.call_args_list]
        assert "Translate PART 1 of 3 from es to en" in users[0]
        assert "Translate PART 3 of 3 from es to en" in users[2]
        assert len(outcome.result.document.sections) == 3

    @pytest.mark.asyncio
    async def test_later_part_over_budget_fails_in_calling(
        self, chunked, chat, ledger, make_payload, make_completion
    ) -> None:
        """Each part estimates 1000 + 15; 4600 used after part one exceeds 5500."""
        ledger.consume(3000)
        chat.complete.return_value = make_completion(make_payload(sections=1), total_tokens=1600)

        outcome = await chunked.summarize(self.TEXT, "en", PDF_ONLY)

        assert outcome.error.code == "BUDGET_EXCEEDED"
        assert outcome.failed_state is GenerationState.CALLING
        assert chat.complete.await_count == 1
        assert ledger.snapshot().tokens_used_today == 4600

    @pytest.mark.asyncio
    async def test_long_upload_runs_on_a_fresh_day(
        self, orchestrator, chat, ledger, make_payload, make_completion
    ) -> None:
        """12000 characters no longer fit one estimate but fit as two parts."""
        chat.complete.return_value = make_completion(make_payload(sections=2), total_tokens=900)

        outcome = await orchestrator.summarize("word " * 2400, "en", PDF_ONLY)

        assert outcome.ok
        assert chat.complete.await_count == 2
        assert len(outcome.result.document.sections) == 4
        assert ledger.snapshot().tokens_used_today == 1800

    @pytest.mark.asyncio
    async def test_short_upload_is_a_single_call(
        self, chunked, chat, payload, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(payload)

        await chunked.summarize("Short note.", "en", PDF_ONLY)

        assert chat.complete.await_count == 1
        assert "Part:" not in chat.complete.call_args.args[1]
        assert chat.complete.call_args.kwargs["stage"] == "summarize"


class TestEditSection:
    """Tests for edit_section."""

    @pytest.fixture
    def section(self) -> DocSection:
        return DocSection(
            heading="Wind",
            paragraph="Turbines spin.",
            bullets=("a",),
            image_keyword="wind turbine",
            resolved_image_url="https://cdn.test/wind.jpg",
        )

    @pytest.mark.asyncio
    async def test_improved_section_keeps_image(
        self, orchestrator, chat, ledger, section, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(
            {"heading": "Wind Power", "paragraph": "Turbines convert wind.", "bullets": ["x"]},
            total_tokens=250,
        )

        outcome = await orchestrator.edit_section(section, "improve", "en", "Energy")

        assert outcome.ok
        assert outcome.section.heading == "Wind Power"
        assert outcome.section.resolved_image_url == "https://cdn.test/wind.jpg"
        assert chat.complete.call_args.kwargs["max_tokens"] == 1500
        assert chat.complete.call_args.kwargs["temperature"] == 0.6
        assert ledger.snapshot().tokens_used_today == 250

    @pytest.mark.asyncio
    async def test_regenerate_uses_higher_temperature(
        self, orchestrator, chat, section, make_completion
    ) -> None:
        chat.complete.return_value = make_completion(
            {"heading": "W", "paragraph": "New.", "bullets": []}
        )

        await orchestrator.edit_section(section, "regenerate", "en", "Energy")

        assert chat.complete.call_args.kwargs["temperature"] == 0.9

    @pytest.mark.asyncio
    async def test_unknown_action_raises(self, orchestrator, chat, section) -> None:
        with pytest.raises(ValueError):
            await orchestrator.edit_section(section, "explode", "en", "Energy")
        chat.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_over_budget_fails_without_call(
        self, orchestrator, chat, ledger, section
    ) -> None:
        ledger.consume(5000)

        outcome = await orchestrator.edit_section(section, "expand", "en", "Energy")

        assert outcome.state is GenerationState.FAILED
        assert outcome.failed_state is GenerationState.IDLE
        assert outcome.error.code == "BUDGET_EXCEEDED"
        chat.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reply_without_paragraph_fails_validation(
        self, orchestrator, chat, section, make_completion
    ) -> None:
        chat.complete.return_value = make_completion({"heading": "Only"})

        outcome = await orchestrator.edit_section(section, "shorten", "en", "Energy")

        assert outcome.failed_state is GenerationState.VALIDATING
        assert outcome.error.code == "MALFORMED_OUTPUT"
