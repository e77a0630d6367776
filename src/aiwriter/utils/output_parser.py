"""Turn raw model text into a GenerationResult.

Two passes over the extracted JSON object:

- strict: the object validates against OUTPUT_SCHEMA and is built directly;
- lenient: defaults fill missing optional fields and COERCIONS convert
  near-miss shapes (a string where a list was expected, numbers for text,
  camelCase keys).

decode_output returns a tagged StrictResult / RepairedResult /
IncompleteResult so tests can see which path ran; parse_output collapses it
to a GenerationResult or raises an OutputValidationError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Union

import jsonschema

from aiwriter.exceptions import IncompleteOutput, MalformedOutput
from aiwriter.models import (
    DEFAULT_AUTHOR,
    DEFAULT_TITLE,
    TABLE_HEADERS,
    VIEW_DOCUMENT,
    VIEW_SLIDES,
    VIEW_TABLE,
    DocSection,
    DocumentView,
    GenerationResult,
    Slide,
    TableView,
)
from aiwriter.utils.json_extractor import extract_json_object

logger = logging.getLogger(__name__)

STAGE = "validating"

_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_KEYWORD = {"type": ["string", "null"]}

OUTPUT_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["pdf_word", "ppt", "excel"],
    "properties": {
        "pdf_word": {
            "type": "object",
            "required": ["title", "author", "language", "sections"],
            "properties": {
                "title": {"type": "string", "minLength": 1},
                "author": {"type": "string"},
                "language": {"type": "string"},
                "sections": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "required": ["heading", "paragraph", "bullets"],
                        "properties": {
                            "heading": {"type": "string", "minLength": 1, "pattern": r"\S"},
                            "paragraph": {"type": "string"},
                            "bullets": _STRING_LIST,
                            "image_keyword": _KEYWORD,
                        },
                    },
                },
            },
        },
        "ppt": {
            "type": "object",
            "required": ["slides"],
            "properties": {
                "slides": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "required": ["title", "bullets"],
                        "properties": {
                            "title": {"type": "string", "minLength": 1, "pattern": r"\S"},
                            "bullets": _STRING_LIST,
                            "image_keyword": _KEYWORD,
                        },
                    },
                },
            },
        },
        "excel": {
            "type": "object",
            "required": ["headers", "rows"],
            "properties": {
                "headers": {**_STRING_LIST, "minItems": 3, "maxItems": 3},
                "rows": {
                    "type": "array",
                    "items": {**_STRING_LIST, "minItems": 3, "maxItems": 3},
                },
            },
        },
    },
}

SECTION_EDIT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["heading", "paragraph", "bullets"],
    "properties": {
        "heading": {"type": "string"},
        "paragraph": {"type": "string"},
        "bullets": _STRING_LIST,
    },
}

_validator = jsonschema.Draft7Validator(OUTPUT_SCHEMA)
_section_validator = jsonschema.Draft7Validator(SECTION_EDIT_SCHEMA)


# --- Coercion table ---------------------------------------------------------


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        parts = [_to_text(v) for v in value]
        return " ".join(p for p in parts if p)
    return None


def _to_text_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, list):
        items = [_to_text(v) for v in value]
        return [i for i in items if i]
    text = _to_text(value)
    return [text] if text else []


def _to_object_list(value: Any) -> list[Mapping[str, Any]] | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, Mapping)]
    return None


def _to_row(value: Any) -> list[str] | None:
    if isinstance(value, Mapping):
        return [_to_text(v) or "" for v in value.values()]
    if isinstance(value, list):
        return [_to_text(v) or "" for v in value]
    text = _to_text(value)
    return [text] if text is not None else None


def _to_rows(value: Any) -> list[list[str]] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        value = [value]
    rows = [_to_row(v) for v in value]
    return [r for r in rows if r is not None]


COERCIONS: dict[str, Callable[[Any], Any]] = {
    "text": _to_text,
    "text_list": _to_text_list,
    "object_list": _to_object_list,
    "rows": _to_rows,
}

# Alternative spellings accepted by the lenient pass
KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "pdf_word": ("pdfWord", "document", "pdf"),
    "ppt": ("slides_view", "presentation", "pptx"),
    "excel": ("table", "xlsx"),
    "image_keyword": ("imageKeyword", "image", "keyword"),
    "paragraph": ("content", "text", "body"),
    "bullets": ("bullet_points", "key_points", "points"),
    "heading": ("title",),
}


def _field(obj: Mapping[str, Any], key: str, kind: str, repairs: list[str], path: str) -> Any:
    raw = obj.get(key)
    if raw is None:
        for alias in KEY_ALIASES.get(key, ()):
            if alias in obj:
                raw = obj[alias]
                repairs.append(f"{path}.{key}: read from '{alias}'")
                break
    value = COERCIONS[kind](raw)
    if raw is not None and value != raw:
        repairs.append(f"{path}.{key}: coerced to {kind}")
    return value


# --- Decode results ---------------------------------------------------------


@dataclass(frozen=True)
class StrictResult:
    result: GenerationResult


@dataclass(frozen=True)
class RepairedResult:
    result: GenerationResult
    repairs: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class IncompleteResult:
    missing_views: tuple[str, ...]
    repairs: tuple[str, ...] = field(default_factory=tuple)


DecodeOutcome = Union[StrictResult, RepairedResult, IncompleteResult]


# --- Strict pass ------------------------------------------------------------


def _strict_keyword(obj: Mapping[str, Any]) -> str | None:
    for key in ("image_keyword", *KEY_ALIASES["image_keyword"]):
        value = _to_text(obj.get(key))
        if value:
            return value
    return None


def _strict_texts(values: list[str]) -> tuple[str, ...]:
    return tuple(v.strip() for v in values if v.strip())


def _build_strict(data: Mapping[str, Any], default_language: str) -> GenerationResult:
    # Same whitespace normalization as the lenient pass
    doc = data["pdf_word"]
    return GenerationResult(
        document=DocumentView(
            title=doc["title"].strip() or DEFAULT_TITLE,
            author=doc["author"].strip() or DEFAULT_AUTHOR,
            language=doc["language"].strip() or default_language,
            sections=tuple(
                DocSection(
                    heading=s["heading"].strip(),
                    paragraph=s["paragraph"].strip(),
                    bullets=_strict_texts(s["bullets"]),
                    image_keyword=_strict_keyword(s),
                )
                for s in doc["sections"]
            ),
        ),
        slides=tuple(
            Slide(
                title=s["title"].strip(),
                bullets=_strict_texts(s["bullets"]),
                image_keyword=_strict_keyword(s),
            )
            for s in data["ppt"]["slides"]
        ),
        table=TableView(
            headers=tuple(h.strip() for h in data["excel"]["headers"]),
            rows=tuple(tuple(c.strip() for c in r) for r in data["excel"]["rows"]),
        ),
    )


# --- Lenient pass -----------------------------------------------------------


def _view(data: Mapping[str, Any], key: str, repairs: list[str]) -> Mapping[str, Any] | None:
    value = data.get(key)
    if value is None:
        for alias in KEY_ALIASES.get(key, ()):
            if isinstance(data.get(alias), (Mapping, list)):
                value = data[alias]
                repairs.append(f"{key}: read from '{alias}'")
                break
    if isinstance(value, list):
        # A bare list stands in for the view's only collection
        inner = {"pdf_word": "sections", "ppt": "slides", "excel": "rows"}[key]
        repairs.append(f"{key}: wrapped bare list as '{inner}'")
        return {inner: value}
    return value if isinstance(value, Mapping) else None


def _lenient_document(
    raw: Mapping[str, Any], default_language: str, repairs: list[str]
) -> DocumentView:
    sections = []
    for i, sec in enumerate(_field(raw, "sections", "object_list", repairs, "pdf_word") or []):
        path = f"pdf_word.sections[{i}]"
        heading = _field(sec, "heading", "text", repairs, path)
        if not heading:
            repairs.append(f"{path}: dropped, empty heading")
            continue
        sections.append(
            DocSection(
                heading=heading,
                paragraph=_field(sec, "paragraph", "text", repairs, path) or "",
                bullets=tuple(_field(sec, "bullets", "text_list", repairs, path) or ()),
                image_keyword=_field(sec, "image_keyword", "text", repairs, path) or None,
            )
        )
    return DocumentView(
        title=_field(raw, "title", "text", repairs, "pdf_word") or DEFAULT_TITLE,
        author=_field(raw, "author", "text", repairs, "pdf_word") or DEFAULT_AUTHOR,
        language=_field(raw, "language", "text", repairs, "pdf_word") or default_language,
        sections=tuple(sections),
    )


def _lenient_slides(raw: Mapping[str, Any], repairs: list[str]) -> tuple[Slide, ...]:
    slides = []
    for i, s in enumerate(_field(raw, "slides", "object_list", repairs, "ppt") or []):
        path = f"ppt.slides[{i}]"
        title = _field(s, "title", "text", repairs, path)
        if not title:
            repairs.append(f"{path}: dropped, empty title")
            continue
        slides.append(
            Slide(
                title=title,
                bullets=tuple(_field(s, "bullets", "text_list", repairs, path) or ()),
                image_keyword=_field(s, "image_keyword", "text", repairs, path) or None,
            )
        )
    return tuple(slides)


def _fit_row(row: list[str], width: int) -> tuple[str, ...]:
    if len(row) > width:
        return tuple(row[:width])
    return tuple(row) + ("",) * (width - len(row))


def _lenient_table(raw: Mapping[str, Any], repairs: list[str]) -> TableView:
    headers = _field(raw, "headers", "text_list", repairs, "excel") or []
    if len(headers) != len(TABLE_HEADERS):
        repairs.append("excel.headers: replaced with default headers")
        headers = list(TABLE_HEADERS)
    rows = _field(raw, "rows", "rows", repairs, "excel") or []
    return TableView(headers=tuple(headers), rows=tuple(tuple(r) for r in rows))


def enforce_row_arity(table: TableView) -> TableView:
    """Pad or truncate every row to the header width. Logs, never fails."""
    width = len(table.headers)
    bad = [i for i, r in enumerate(table.rows) if len(r) != width]
    if not bad:
        return table
    logger.warning(
        "table_row_arity_mismatch",
        extra={"rows": bad, "expected": width},
    )
    return TableView(
        headers=table.headers,
        rows=tuple(_fit_row(list(r), width) for r in table.rows),
    )


def _decode_lenient(
    data: Mapping[str, Any], required_views: tuple[str, ...], default_language: str
) -> DecodeOutcome:
    repairs: list[str] = []
    missing: list[str] = []

    doc_raw = _view(data, "pdf_word", repairs)
    document = _lenient_document(doc_raw or {}, default_language, repairs)
    if not document.sections:
        missing.append(VIEW_DOCUMENT)

    slides_raw = _view(data, "ppt", repairs)
    slides = _lenient_slides(slides_raw or {}, repairs)
    if not slides and VIEW_SLIDES in required_views:
        missing.append(VIEW_SLIDES)

    table_raw = _view(data, "excel", repairs)
    if table_raw is None and VIEW_TABLE in required_views:
        missing.append(VIEW_TABLE)
    table = _lenient_table(table_raw or {}, repairs)

    if missing:
        return IncompleteResult(missing_views=tuple(missing), repairs=tuple(repairs))

    result = GenerationResult(
        document=document, slides=slides, table=enforce_row_arity(table)
    )
    return RepairedResult(result=result, repairs=tuple(repairs))


# --- Public API -------------------------------------------------------------


def decode_output(
    raw_text: str,
    required_views: tuple[str, ...] = (VIEW_DOCUMENT,),
    default_language: str = "en",
) -> DecodeOutcome:
    """Decode model text, reporting which path produced the value.

    Raises:
        MalformedOutput: No JSON object could be found in raw_text.
    """
    data = extract_json_object(raw_text or "")
    if data is None:
        preview = (raw_text or "")[:200]
        raise MalformedOutput(STAGE, f"No JSON object in model output: {preview!r}")

    if _validator.is_valid(data):
        return StrictResult(result=_build_strict(data, default_language))

    first_error = next(iter(_validator.iter_errors(data)), None)
    logger.info(
        "strict_decode_failed",
        extra={
            "error": first_error.message if first_error else "",
            "path": "/".join(str(p) for p in first_error.absolute_path) if first_error else "",
        },
    )
    return _decode_lenient(data, required_views, default_language)


def parse_output(
    raw_text: str,
    required_views: tuple[str, ...] = (VIEW_DOCUMENT,),
    default_language: str = "en",
) -> GenerationResult:
    """Parse model text into a GenerationResult.

    Args:
        raw_text: The model's message content.
        required_views: Views that must be present (document is always checked).
        default_language: Language recorded when the model omits it.

    Raises:
        MalformedOutput: No decodable JSON object.
        IncompleteOutput: A required view is absent after lenient decoding.
    """
    outcome = decode_output(raw_text, required_views, default_language)
    if isinstance(outcome, IncompleteResult):
        raise IncompleteOutput(STAGE, outcome.missing_views)
    if isinstance(outcome, RepairedResult) and outcome.repairs:
        logger.info("output_repaired", extra={"repairs": list(outcome.repairs)})
    return outcome.result


def parse_section_edit(raw_text: str, fallback: DocSection) -> DocSection:
    """Parse a section-edit reply, keeping the original image fields.

    Raises:
        MalformedOutput: No JSON object, or no usable heading and paragraph.
    """
    data = extract_json_object(raw_text or "")
    if data is None:
        raise MalformedOutput(STAGE, "No JSON object in section edit output")
    repairs: list[str] = []
    if not _section_validator.is_valid(data):
        repairs.append("section: lenient decode")
    heading = _field(data, "heading", "text", repairs, "section") or fallback.heading
    paragraph = _field(data, "paragraph", "text", repairs, "section")
    if not paragraph:
        raise MalformedOutput(STAGE, "Section edit output has no paragraph")
    bullets = _field(data, "bullets", "text_list", repairs, "section") or []
    if repairs:
        logger.info("output_repaired", extra={"repairs": repairs})
    return DocSection(
        heading=heading,
        paragraph=paragraph,
        bullets=tuple(bullets),
        image_keyword=fallback.image_keyword,
        resolved_image_url=fallback.resolved_image_url,
    )
