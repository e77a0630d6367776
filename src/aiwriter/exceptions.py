"""Shared exception types and error codes for the generation pipeline.

Error codes used by the orchestrator and surfaced in GenerationOutcome:
- BUDGET_EXCEEDED: Daily token allowance would be exceeded; no call was made.
- UNAUTHORIZED: The LLM endpoint rejected the credentials (401/403).
- RATE_LIMITED: The LLM endpoint returned 429.
- TIMEOUT: The LLM call did not complete within the configured timeout.
- SERVER_ERROR: Any other non-2xx status or transport failure.
- MALFORMED_RESPONSE: The chat envelope had no choices, no content or no usage.
- MALFORMED_OUTPUT: The model text held no decodable JSON object.
- INCOMPLETE_OUTPUT: A requested view (document/slides/table) was missing.
- INTERNAL: Unexpected failure; the failing state is kept for diagnostics.
"""

from __future__ import annotations

from aiwriter.models import Usage


class GenerationError(Exception):
    """Base class for errors produced while generating a document.

    Attributes:
        stage: The pipeline state where the error occurred.
        message: Detail for logs. Not shown to users.
        code: Machine-readable code for downstream handling.
    """

    code = "INTERNAL"
    user_message = "Something went wrong while generating your document. Please try again."

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        self.message = message
        super().__init__(f"[{stage}] {message}")


class BudgetExceeded(GenerationError):
    """Raised pre-flight when the estimated cost does not fit today's allowance."""

    code = "BUDGET_EXCEEDED"
    user_message = "Daily token limit reached. Your allowance resets tomorrow."

    def __init__(self, stage: str, message: str, remaining: int = 0) -> None:
        super().__init__(stage, message)
        self.remaining = remaining


class ChatError(GenerationError):
    """Transport-level failure talking to the LLM endpoint."""

    code = "SERVER_ERROR"
    user_message = "The AI service could not be reached. Please try again later."
    retryable = False


class Unauthorized(ChatError):
    code = "UNAUTHORIZED"
    user_message = "The AI service rejected the app's credentials."


class RateLimited(ChatError):
    code = "RATE_LIMITED"
    user_message = "The AI service is busy right now. Please try again in a moment."
    retryable = True


class RequestTimeout(ChatError):
    code = "TIMEOUT"
    user_message = "The AI service took too long to respond. Please try again."
    retryable = True


class ServerError(ChatError):
    """Non-2xx status other than auth/rate-limit/timeout, or a connection failure.

    Attributes:
        status: HTTP status code, or None when no response was received.
    """

    def __init__(self, stage: str, message: str, status: int | None = None) -> None:
        super().__init__(stage, message)
        self.status = status


class MalformedResponse(ChatError):
    """The chat envelope lacked choices, message content or usage.

    Attributes:
        usage: Usage reported by the response, or None when it carried none.
    """

    code = "MALFORMED_RESPONSE"
    user_message = "The AI service returned an empty response. Please try again."

    def __init__(self, stage: str, message: str, usage: Usage | None = None) -> None:
        super().__init__(stage, message)
        self.usage = usage


class OutputValidationError(GenerationError):
    """The model's text could not be turned into a GenerationResult."""

    code = "MALFORMED_OUTPUT"
    user_message = "The AI returned something the app didn't understand. Please try again."


class MalformedOutput(OutputValidationError):
    pass


class IncompleteOutput(OutputValidationError):
    """Raised when a requested view is absent after lenient decoding.

    Attributes:
        missing_views: Names of the absent views (document, slides, table).
    """

    code = "INCOMPLETE_OUTPUT"
    user_message = (
        "The AI response was missing parts of the document. Please try again."
    )

    def __init__(self, stage: str, missing_views: tuple[str, ...]) -> None:
        super().__init__(stage, f"Missing views: {', '.join(missing_views)}")
        self.missing_views = missing_views
