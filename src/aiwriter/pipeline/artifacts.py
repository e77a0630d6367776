"""Hand the finished GenerationResult to per-format renderers and the file writer."""

from __future__ import annotations

import json
import logging
import random
import re
from datetime import datetime
from typing import Callable, Iterable, Mapping

from aiwriter.models import GeneratedFile, GenerationResult, HistoryEntry, OutputFormat
from aiwriter.utils.storage import FileWriter

logger = logging.getLogger(__name__)

Renderer = Callable[[GenerationResult], bytes]

MAX_NAME_LENGTH = 50


def sanitize_file_name(name: str) -> str:
    """Keep letters, digits, spaces and dashes; spaces become underscores.

    Args:
        name: The text to sanitize (usually the topic).

    Returns:
        At most 50 characters.
    """
    cleaned = re.sub(r"[^a-zA-Z0-9\s-]", "", name)
    cleaned = re.sub(r"\s+", "_", cleaned.strip())
    return cleaned[:MAX_NAME_LENGTH] or "document"


def generate_file_name(topic: str, extension: str, now: datetime | None = None) -> str:
    """Name of the form <Topic>_<YYYYmmdd_HHMMSS>_<4 digits>.<ext>."""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"{sanitize_file_name(topic)}_{stamp}_{random.randint(1000, 9999)}.{extension}"


def render_json(result: GenerationResult) -> bytes:
    """The intermediate representation as UTF-8 JSON."""
    return json.dumps(result.to_dict(), ensure_ascii=False, indent=2).encode("utf-8")


def export_artifacts(
    result: GenerationResult,
    entry: HistoryEntry,
    formats: Iterable[str | OutputFormat],
    renderers: Mapping[str, Renderer],
    writer: FileWriter,
) -> HistoryEntry:
    """Render and write one file per requested format.

    A format without a renderer, or whose renderer fails, is skipped and
    logged; the others are still written.

    Returns:
        entry with the metadata of every file written.
    """
    files: list[GeneratedFile] = []
    for fmt in formats:
        name = fmt.value if isinstance(fmt, OutputFormat) else str(fmt)
        renderer = renderers.get(name)
        if renderer is None:
            logger.warning("artifact_no_renderer", extra={"format": name})
            continue
        try:
            data = renderer(result)
        except Exception as e:
            logger.error("artifact_render_failed", extra={"format": name, "error_msg": str(e)})
            continue
        file_name = generate_file_name(entry.topic, name)
        path = writer.write(data, file_name)
        files.append(GeneratedFile(name, file_name, path, len(data)))
        logger.info("artifact_written", extra={"format": name, "path": path, "size": len(data)})
    return entry.with_files(tuple(files))
