"""AI Writer: multi-format document generation from a single topic."""

from aiwriter.models import (
    DocSection,
    GenerationRequest,
    GenerationResult,
    HistoryEntry,
    OutputFormat,
)
from aiwriter.pipeline.orchestrator import GenerationOrchestrator, GenerationOutcome

__all__ = [
    "DocSection",
    "GenerationOrchestrator",
    "GenerationOutcome",
    "GenerationRequest",
    "GenerationResult",
    "HistoryEntry",
    "OutputFormat",
]
