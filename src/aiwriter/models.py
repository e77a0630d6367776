"""Intermediate representation of a generated document and its audit records."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Mapping, Sequence

DEFAULT_TITLE = "Untitled Document"
DEFAULT_AUTHOR = "AI Writer"
TABLE_HEADERS = ("Section", "Key Points", "Image Keyword")

VIEW_DOCUMENT = "document"
VIEW_SLIDES = "slides"
VIEW_TABLE = "table"

_WHITESPACE = re.compile(r"\s+")


def normalize_keyword(keyword: str | None) -> str:
    """Lookup key for an image keyword: trimmed, casefolded, single-spaced."""
    if not keyword:
        return ""
    return _WHITESPACE.sub(" ", keyword.strip()).casefold()


class OutputFormat(str, Enum):
    """Exportable file formats."""

    PDF = "pdf"
    DOCX = "docx"
    PPTX = "pptx"
    XLSX = "xlsx"


@dataclass(frozen=True)
class GenerationRequest:
    """One user action. uploaded_content is set for summarize/translate."""

    topic: str
    language: str = "en"
    formats: frozenset[OutputFormat] = frozenset({OutputFormat.PDF})
    uploaded_content: str | None = None

    def required_views(self) -> tuple[str, ...]:
        """Views the model must produce for the requested formats."""
        views = [VIEW_DOCUMENT]
        if OutputFormat.PPTX in self.formats:
            views.append(VIEW_SLIDES)
        if OutputFormat.XLSX in self.formats:
            views.append(VIEW_TABLE)
        return tuple(views)


@dataclass(frozen=True)
class DocSection:
    heading: str
    paragraph: str = ""
    bullets: tuple[str, ...] = ()
    image_keyword: str | None = None
    resolved_image_url: str | None = None


@dataclass(frozen=True)
class Slide:
    title: str
    bullets: tuple[str, ...] = ()
    image_keyword: str | None = None
    resolved_image_url: str | None = None


@dataclass(frozen=True)
class DocumentView:
    title: str = DEFAULT_TITLE
    author: str = DEFAULT_AUTHOR
    language: str = "en"
    sections: tuple[DocSection, ...] = ()


@dataclass(frozen=True)
class TableView:
    headers: tuple[str, ...] = TABLE_HEADERS
    rows: tuple[tuple[str, ...], ...] = ()


@dataclass(frozen=True)
class GenerationResult:
    """The document, slide deck and table produced by one model call."""

    document: DocumentView
    slides: tuple[Slide, ...] = ()
    table: TableView = field(default_factory=TableView)

    @classmethod
    def merge(cls, parts: Sequence[GenerationResult]) -> GenerationResult:
        """Join the results of a chunked upload in part order.

        Title, author, language and table headers come from the first part.
        """
        first = parts[0]
        if len(parts) == 1:
            return first
        return cls(
            document=replace(
                first.document,
                sections=tuple(s for p in parts for s in p.document.sections),
            ),
            slides=tuple(s for p in parts for s in p.slides),
            table=TableView(
                headers=first.table.headers,
                rows=tuple(r for p in parts for r in p.table.rows),
            ),
        )

    def image_keywords(self) -> list[str]:
        """Unique normalized keywords across sections and slides, in first-seen order."""
        seen: dict[str, None] = {}
        for item in (*self.document.sections, *self.slides):
            key = normalize_keyword(item.image_keyword)
            if key:
                seen.setdefault(key, None)
        return list(seen)

    def with_images(self, urls: Mapping[str, str | None]) -> GenerationResult:
        """Return a copy with resolved_image_url filled by keyword lookup."""

        def _lookup(keyword: str | None) -> str | None:
            return urls.get(normalize_keyword(keyword)) if keyword else None

        sections = tuple(
            replace(s, resolved_image_url=_lookup(s.image_keyword))
            for s in self.document.sections
        )
        slides = tuple(
            replace(s, resolved_image_url=_lookup(s.image_keyword))
            for s in self.slides
        )
        return replace(
            self, document=replace(self.document, sections=sections), slides=slides
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire shape (pdf_word / ppt / excel) used by renderers and the CLI."""

        def _section(s: DocSection) -> dict[str, Any]:
            data: dict[str, Any] = {
                "heading": s.heading,
                "paragraph": s.paragraph,
                "bullets": list(s.bullets),
                "image_keyword": s.image_keyword,
            }
            if s.resolved_image_url:
                data["resolved_image_url"] = s.resolved_image_url
            return data

        def _slide(s: Slide) -> dict[str, Any]:
            data: dict[str, Any] = {
                "title": s.title,
                "bullets": list(s.bullets),
                "image_keyword": s.image_keyword,
            }
            if s.resolved_image_url:
                data["resolved_image_url"] = s.resolved_image_url
            return data

        return {
            "pdf_word": {
                "title": self.document.title,
                "author": self.document.author,
                "language": self.document.language,
                "sections": [_section(s) for s in self.document.sections],
            },
            "ppt": {"slides": [_slide(s) for s in self.slides]},
            "excel": {
                "headers": list(self.table.headers),
                "rows": [list(r) for r in self.table.rows],
            },
        }


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class BudgetState:
    """Snapshot of the ledger for display."""

    date: date
    tokens_used_today: int
    daily_limit: int
    bonus: int

    @property
    def effective_limit(self) -> int:
        return self.daily_limit + self.bonus

    @property
    def remaining(self) -> int:
        """Tokens left under the visible daily limit."""
        return max(0, self.daily_limit - self.tokens_used_today)


@dataclass(frozen=True)
class GeneratedFile:
    format: str
    file_name: str
    file_path: str
    size_bytes: int = 0


@dataclass(frozen=True)
class HistoryEntry:
    """Audit record of a completed generation. Written once."""

    id: str
    topic: str
    language: str
    timestamp: int
    files: tuple[GeneratedFile, ...] = ()

    @classmethod
    def skeleton(cls, topic: str, language: str) -> HistoryEntry:
        """New entry without file metadata; timestamp in epoch milliseconds."""
        return cls(
            id=str(uuid.uuid4()),
            topic=topic,
            language=language,
            timestamp=int(time.time() * 1000),
        )

    def with_files(self, files: tuple[GeneratedFile, ...]) -> HistoryEntry:
        return replace(self, files=tuple(files))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "language": self.language,
            "timestamp": self.timestamp,
            "files": [
                {
                    "format": f.format,
                    "file_name": f.file_name,
                    "file_path": f.file_path,
                    "size_bytes": f.size_bytes,
                }
                for f in self.files
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HistoryEntry:
        return cls(
            id=str(data.get("id", "")),
            topic=str(data.get("topic", "")),
            language=str(data.get("language", "")),
            timestamp=int(data.get("timestamp", 0)),
            files=tuple(
                GeneratedFile(
                    format=str(f.get("format", "")),
                    file_name=str(f.get("file_name", "")),
                    file_path=str(f.get("file_path", "")),
                    size_bytes=int(f.get("size_bytes", 0)),
                )
                for f in data.get("files", [])
            ),
        )
