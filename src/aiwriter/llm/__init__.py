"""LLM module for document generation."""

from aiwriter.llm.client import ChatClient, RawCompletion, classify_error
from aiwriter.llm.prompts import (
    SECTION_ACTIONS,
    prompt_generate,
    prompt_section_edit,
    prompt_summarize,
    prompt_translate,
)

__all__ = [
    "SECTION_ACTIONS",
    "ChatClient",
    "RawCompletion",
    "classify_error",
    "prompt_generate",
    "prompt_section_edit",
    "prompt_summarize",
    "prompt_translate",
]
