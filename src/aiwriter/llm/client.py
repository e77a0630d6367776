"""LiteLLM client wrapper for the chat completion endpoint."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import litellm

from aiwriter.config import LlmConfig
from aiwriter.exceptions import (
    ChatError,
    MalformedResponse,
    RateLimited,
    RequestTimeout,
    ServerError,
    Unauthorized,
)
from aiwriter.models import Usage

logger = logging.getLogger(__name__)

STAGE = "calling"

# Slack on top of the provider timeout before the call is abandoned locally
TIMEOUT_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class RawCompletion:
    """Message content and token usage of one chat completion."""

    content: str
    usage: Usage
    model: str = ""


def classify_error(exc: BaseException) -> ChatError:
    """Map a transport exception to the ChatError taxonomy by HTTP status."""
    if isinstance(exc, (asyncio.TimeoutError, litellm.exceptions.Timeout)):
        return RequestTimeout(STAGE, f"Timed out: {exc}")
    status = getattr(exc, "status_code", None)
    if status in (401, 403):
        return Unauthorized(STAGE, f"Auth error {status}: {exc}")
    if status == 429:
        return RateLimited(STAGE, f"Rate limited: {exc}")
    if status == 408:
        return RequestTimeout(STAGE, f"Timed out: {exc}")
    if isinstance(status, int):
        return ServerError(STAGE, f"API error {status}: {exc}", status=status)
    return ServerError(STAGE, f"Unexpected error: {exc}")


def _usage_from(response: Any) -> Usage | None:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    return Usage(
        prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
    )


class ChatClient:
    """One request per call, no internal retry."""

    def __init__(self, config: LlmConfig) -> None:
        self.config = config

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        stage: str = "generate",
    ) -> RawCompletion:
        """Call the LLM with a system and a user message.

        Args:
            system_prompt: The system prompt establishing the JSON contract.
            user_prompt: The user prompt.
            max_tokens: Completion token ceiling; config default when None.
            temperature: Sampling temperature; config default when None.
            stage: Name of the calling operation, for logging.

        Returns:
            The message content and reported usage.

        Raises:
            ChatError: Unauthorized, RateLimited, RequestTimeout, ServerError
                or MalformedResponse.
        """
        config = self.config
        system_display = system_prompt[:500] + "..." if len(system_prompt) > 500 else system_prompt
        user_display = user_prompt[:1000] + "..." if len(user_prompt) > 1000 else user_prompt
        logger.info(
            "llm_call_start",
            extra={
                "stage": stage,
                "model": config.model,
                "system_length": len(system_prompt),
                "user_length": len(user_prompt),
                "system_preview": system_display,
                "user_preview": user_display,
            },
        )

        try:
            response = await asyncio.wait_for(
                litellm.acompletion(
                    model=config.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    temperature=config.temperature if temperature is None else temperature,
                    max_tokens=max_tokens or config.max_tokens,
                    timeout=config.timeout,
                    max_retries=0,
                    api_base=config.api_base,
                    api_key=config.api_key.get_secret_value() if config.api_key else None,
                ),
                timeout=config.timeout + TIMEOUT_GRACE_SECONDS,
            )
        except Exception as e:
            error = classify_error(e)
            logger.warning(
                "llm_call_failed",
                extra={"stage": stage, "error_code": error.code, "error_msg": str(e)[:500]},
            )
            raise error from e

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", None) if message is not None else None
        usage = _usage_from(response)
        if not content:
            raise MalformedResponse(STAGE, "No choices or empty message content", usage=usage)
        if usage is None:
            raise MalformedResponse(STAGE, "Response carried no usage")

        content_display = content[:500] + "..." if len(content) > 500 else content
        logger.info(
            "llm_call_complete",
            extra={
                "stage": stage,
                "model": config.model,
                "response_length": len(content),
                "total_tokens": usage.total_tokens,
                "response_preview": content_display,
            },
        )
        return RawCompletion(content=content, usage=usage, model=getattr(response, "model", "") or "")
