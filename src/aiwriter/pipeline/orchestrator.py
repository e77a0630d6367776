"""Generation orchestrator: budget check, chat call, validation, image enrichment.

Each request walks IDLE -> BUDGET_CHECKED -> CALLING -> VALIDATING ->
ENRICHING -> DONE, or stops in FAILED with the state it failed in. Errors
come back inside the outcome; only cancellation and contract violations
(e.g. an unknown section action) propagate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from aiwriter.budget.ledger import BudgetLedger, Clock
from aiwriter.config import BudgetConfig, ImageSearchConfig, LlmConfig
from aiwriter.exceptions import (
    BudgetExceeded,
    ChatError,
    GenerationError,
    MalformedResponse,
)
from aiwriter.llm.client import ChatClient, RawCompletion
from aiwriter.llm.prompts import (
    prompt_generate,
    prompt_section_edit,
    prompt_summarize,
    prompt_translate,
)
from aiwriter.models import (
    BudgetState,
    DocSection,
    GenerationRequest,
    GenerationResult,
    HistoryEntry,
    OutputFormat,
)
from aiwriter.resolver.image_resolver import ImageResolver
from aiwriter.utils.logger import StructuredLogger, get_logger, release_logger
from aiwriter.utils.output_parser import parse_output, parse_section_edit
from aiwriter.utils.storage import KeyValueStore
from aiwriter.utils.text_chunker import split_into_chunks

logger = logging.getLogger(__name__)

SECTION_EDIT_MAX_TOKENS = 1500


class GenerationState(str, Enum):
    IDLE = "idle"
    BUDGET_CHECKED = "budget_checked"
    CALLING = "calling"
    VALIDATING = "validating"
    ENRICHING = "enriching"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationOutcome:
    """Final state of one request.

    On DONE, result and history are set. On FAILED, error and failed_state are.
    """

    state: GenerationState
    budget: BudgetState
    result: GenerationResult | None = None
    history: HistoryEntry | None = None
    error: GenerationError | None = None
    failed_state: GenerationState | None = None

    @property
    def ok(self) -> bool:
        return self.state is GenerationState.DONE

    @property
    def user_message(self) -> str | None:
        return self.error.user_message if self.error else None


@dataclass(frozen=True)
class SectionEditOutcome:
    state: GenerationState
    budget: BudgetState
    section: DocSection | None = None
    error: GenerationError | None = None
    failed_state: GenerationState | None = None

    @property
    def ok(self) -> bool:
        return self.state is GenerationState.DONE

    @property
    def user_message(self) -> str | None:
        return self.error.user_message if self.error else None


@dataclass(frozen=True)
class _PromptCall:
    system: str
    user: str
    estimated: int


class _StateTracker:
    def __init__(self, events: StructuredLogger) -> None:
        self.state = GenerationState.IDLE
        self._events = events

    def advance(self, to_state: GenerationState) -> None:
        self._events.log_state_transition(self.state.value, to_state.value)
        self.state = to_state


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ChatError) and exc.retryable


class GenerationOrchestrator:
    """Composition root for one process: shares the ledger and HTTP client."""

    def __init__(
        self,
        chat_client: ChatClient,
        ledger: BudgetLedger,
        image_config: ImageSearchConfig,
        *,
        max_tokens: int = 4096,
        temperature: float = 0.5,
        max_attempts: int = 2,
        retry_backoff: float = 0.5,
        chunk_chars: int = 8000,
        log_dir: Path | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.chat = chat_client
        self.ledger = ledger
        self.image_config = image_config
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.chunk_chars = chunk_chars
        self.log_dir = log_dir
        self._sleep = sleep
        self._http = http_client

    @classmethod
    def from_config(
        cls,
        store: KeyValueStore,
        llm_config: LlmConfig | None = None,
        image_config: ImageSearchConfig | None = None,
        budget_config: BudgetConfig | None = None,
        clock: Clock | None = None,
        log_dir: Path | None = None,
    ) -> GenerationOrchestrator:
        llm_config = llm_config or LlmConfig()
        return cls(
            ChatClient(llm_config),
            BudgetLedger.from_config(store, budget_config or BudgetConfig(), clock),
            image_config or ImageSearchConfig(),
            max_tokens=llm_config.max_tokens,
            temperature=llm_config.temperature,
            retry_backoff=llm_config.retry_backoff,
            chunk_chars=llm_config.chunk_chars,
            log_dir=log_dir,
        )

    async def aclose(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    async def __aenter__(self) -> GenerationOrchestrator:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.image_config.request_timeout),
                follow_redirects=True,
            )
        return self._http

    # --- Operations ---------------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """Generate a document about request.topic."""
        system, user = prompt_generate(
            request.topic, request.language, request.required_views()
        )
        estimated = self.ledger.estimate_cost(len(request.uploaded_content or ""))
        calls = [_PromptCall(system, user, estimated)]
        return await self._run(request, calls, stage="generate")

    async def summarize(
        self,
        text: str,
        language: str,
        formats: frozenset[OutputFormat],
        title: str = "Summary",
    ) -> GenerationOutcome:
        """Summarize uploaded text into the same three views.

        Text longer than chunk_chars is summarized part by part and the
        parts are joined in order.
        """
        request = GenerationRequest(title, language, formats, uploaded_content=text)
        views = request.required_views()
        chunks = split_into_chunks(text, self.chunk_chars)
        calls = [
            _PromptCall(
                *prompt_summarize(chunk, language, views, part=(i, len(chunks))),
                self.ledger.estimate_cost(len(chunk)),
            )
            for i, chunk in enumerate(chunks, start=1)
        ]
        return await self._run(request, calls, stage="summarize")

    async def translate(
        self,
        text: str,
        source_language: str,
        target_language: str,
        formats: frozenset[OutputFormat],
        title: str = "Translation",
    ) -> GenerationOutcome:
        """Translate uploaded text into target_language in the same three views.

        Long text is translated part by part, like summarize.
        """
        request = GenerationRequest(title, target_language, formats, uploaded_content=text)
        views = request.required_views()
        chunks = split_into_chunks(text, self.chunk_chars)
        calls = [
            _PromptCall(
                *prompt_translate(
                    chunk, source_language, target_language, views, part=(i, len(chunks))
                ),
                self.ledger.estimate_cost(len(chunk)),
            )
            for i, chunk in enumerate(chunks, start=1)
        ]
        return await self._run(request, calls, stage="translate")

    async def edit_section(
        self,
        section: DocSection,
        action: str,
        language: str,
        document_title: str,
    ) -> SectionEditOutcome:
        """Improve, expand, shorten or regenerate one section.

        Raises:
            ValueError: If action is unknown.
        """
        system, user = prompt_section_edit(section, action, language, document_title)
        temperature = 0.9 if action == "regenerate" else 0.6
        events = get_logger(f"edit-{uuid.uuid4()}", self.log_dir)
        tracker = _StateTracker(events)
        try:
            estimated = self.ledger.estimate_cost(len(section.paragraph))
            self._check_budget(estimated)
            tracker.advance(GenerationState.BUDGET_CHECKED)
            tracker.advance(GenerationState.CALLING)
            completion = await self._call(
                system,
                user,
                estimated,
                events,
                max_tokens=SECTION_EDIT_MAX_TOKENS,
                temperature=temperature,
                stage=f"edit_{action}",
            )
            tracker.advance(GenerationState.VALIDATING)
            edited = parse_section_edit(completion.content, section)
            tracker.advance(GenerationState.DONE)
            return SectionEditOutcome(
                state=GenerationState.DONE, budget=self.ledger.snapshot(), section=edited
            )
        except Exception as e:
            failed_in = tracker.state
            error = e if isinstance(e, GenerationError) else self._unexpected(failed_in, e)
            self._record_failure(tracker, error, events)
            return SectionEditOutcome(
                state=GenerationState.FAILED,
                budget=self.ledger.snapshot(),
                error=error,
                failed_state=failed_in,
            )
        finally:
            release_logger(events.generation_id)

    # --- Internals ----------------------------------------------------------

    def _check_budget(self, estimated: int, in_flight: bool = False) -> None:
        if not self.ledger.check_budget(estimated, in_flight=in_flight):
            remaining = self.ledger.remaining()
            stage = GenerationState.CALLING if in_flight else GenerationState.IDLE
            raise BudgetExceeded(
                stage.value,
                f"Estimated {estimated} tokens exceeds remaining {remaining}",
                remaining=remaining,
            )

    async def _call(
        self,
        system: str,
        user: str,
        estimated: int,
        events: StructuredLogger,
        *,
        max_tokens: int,
        temperature: float,
        stage: str,
    ) -> RawCompletion:
        """One chat attempt plus at most one retry for rate limits and timeouts.

        Every attempt whose response arrives is charged immediately, so a
        cancellation after receipt still leaves the tokens accounted.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, min=self.retry_backoff),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            reraise=True,
        )
        completion: RawCompletion | None = None
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    events.log_event("llm_retry", attempt=number, stage=stage)
                    # A retry is a new call and must fit the budget on its own
                    self._check_budget(estimated, in_flight=True)
                try:
                    completion = await self.chat.complete(
                        system, user, max_tokens=max_tokens, temperature=temperature, stage=stage
                    )
                except ChatError as e:
                    if isinstance(e, MalformedResponse) and e.usage is not None:
                        # The response arrived, so its tokens count
                        self.ledger.consume(e.usage.total_tokens)
                        events.log_llm_call(
                            stage, number, e.code, total_tokens=e.usage.total_tokens
                        )
                    else:
                        events.log_llm_call(stage, number, e.code)
                    raise
                self.ledger.consume(completion.usage.total_tokens)
                events.log_llm_call(
                    stage, number, "ok", total_tokens=completion.usage.total_tokens
                )
        assert completion is not None
        return completion

    async def _enrich(
        self, result: GenerationResult, events: StructuredLogger
    ) -> GenerationResult:
        keywords = result.image_keywords()
        if not keywords:
            return result
        if self.image_config.api_key is None:
            logger.info("image_search_disabled", extra={"keywords": len(keywords)})
            return result
        resolver = ImageResolver(self.image_config, client=self._http_client())
        try:
            urls = await resolver.resolve_all(keywords)
        except Exception as e:
            logger.warning("enrichment_failed", extra={"error_msg": str(e)})
            events.log_event("enrichment_degraded", unresolved=keywords, error=str(e))
            return result
        unresolved = [k for k, url in urls.items() if url is None]
        if unresolved:
            logger.warning("enrichment_degraded", extra={"unresolved": unresolved})
            events.log_event("enrichment_degraded", unresolved=unresolved)
        return result.with_images(urls)

    @staticmethod
    def _unexpected(state: GenerationState, exc: Exception) -> GenerationError:
        logger.exception("generation_unexpected_error", extra={"state": state.value})
        return GenerationError(state.value, f"Unexpected error: {exc!r}")

    def _record_failure(
        self, tracker: _StateTracker, error: GenerationError, events: StructuredLogger
    ) -> None:
        failed_in = tracker.state
        if isinstance(error, BudgetExceeded):
            events.log_event("budget_rejected", remaining=error.remaining)
        events.log_error(error.code, error.message, stage=error.stage)
        tracker.advance(GenerationState.FAILED)
        events.log_event("generation_failed", failed_state=failed_in.value, code=error.code)
        logger.error(
            "generation_failed",
            extra={"failed_state": failed_in.value, "code": error.code, "error_msg": error.message},
        )

    async def _run(
        self, request: GenerationRequest, calls: list[_PromptCall], stage: str
    ) -> GenerationOutcome:
        """Walk the state machine for one request made of one or more calls.

        Only the first call is gated as a new request. Later parts of a
        chunked upload are in flight and may draw on the bonus.
        """
        entry = HistoryEntry.skeleton(request.topic, request.language)
        events = get_logger(entry.id, self.log_dir)
        tracker = _StateTracker(events)
        events.log_event(
            "generation_started",
            stage=stage,
            topic=request.topic,
            language=request.language,
            formats=sorted(f.value for f in request.formats),
            parts=len(calls),
            estimated_tokens=sum(c.estimated for c in calls),
        )
        try:
            self._check_budget(calls[0].estimated)
            tracker.advance(GenerationState.BUDGET_CHECKED)

            tracker.advance(GenerationState.CALLING)
            completions: list[RawCompletion] = []
            for index, call in enumerate(calls, start=1):
                if index > 1:
                    self._check_budget(call.estimated, in_flight=True)
                completions.append(
                    await self._call(
                        call.system,
                        call.user,
                        call.estimated,
                        events,
                        max_tokens=self.max_tokens,
                        temperature=self.temperature,
                        stage=stage if len(calls) == 1 else f"{stage}[{index}/{len(calls)}]",
                    )
                )

            tracker.advance(GenerationState.VALIDATING)
            result = GenerationResult.merge(
                [
                    parse_output(c.content, request.required_views(), request.language)
                    for c in completions
                ]
            )

            tracker.advance(GenerationState.ENRICHING)
            result = await self._enrich(result, events)

            tracker.advance(GenerationState.DONE)
            events.log_event(
                "generation_completed",
                sections=len(result.document.sections),
                slides=len(result.slides),
                rows=len(result.table.rows),
                total_tokens=sum(c.usage.total_tokens for c in completions),
            )
            return GenerationOutcome(
                state=GenerationState.DONE,
                budget=self.ledger.snapshot(),
                result=result,
                history=entry,
            )
        except asyncio.CancelledError:
            events.log_event(
                "generation_failed", failed_state=tracker.state.value, code="CANCELLED"
            )
            raise
        except Exception as e:
            failed_in = tracker.state
            error = e if isinstance(e, GenerationError) else self._unexpected(failed_in, e)
            self._record_failure(tracker, error, events)
            return GenerationOutcome(
                state=GenerationState.FAILED,
                budget=self.ledger.snapshot(),
                error=error,
                failed_state=failed_in,
            )
        finally:
            release_logger(entry.id)
