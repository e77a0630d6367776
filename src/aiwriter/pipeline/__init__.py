"""Generation pipeline: orchestrator, history and artifact export."""

from aiwriter.pipeline.artifacts import export_artifacts, generate_file_name, render_json
from aiwriter.pipeline.history import HistoryStore
from aiwriter.pipeline.orchestrator import (
    GenerationOrchestrator,
    GenerationOutcome,
    GenerationState,
    SectionEditOutcome,
)

__all__ = [
    "GenerationOrchestrator",
    "GenerationOutcome",
    "GenerationState",
    "HistoryStore",
    "SectionEditOutcome",
    "export_artifacts",
    "generate_file_name",
    "render_json",
]
