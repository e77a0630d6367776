"""Utilities: JSON extraction, output parsing, text chunking, storage, structured logging."""

from aiwriter.utils.json_extractor import extract_json_object, find_json_span
from aiwriter.utils.logger import StructuredLogger, clear_loggers, get_logger
from aiwriter.utils.output_parser import (
    OUTPUT_SCHEMA,
    IncompleteResult,
    RepairedResult,
    StrictResult,
    decode_output,
    parse_output,
    parse_section_edit,
)
from aiwriter.utils.storage import (
    FileWriter,
    JsonFileStore,
    KeyValueStore,
    LocalFileWriter,
    MemoryStore,
)
from aiwriter.utils.text_chunker import split_into_chunks

__all__ = [
    "OUTPUT_SCHEMA",
    "FileWriter",
    "IncompleteResult",
    "JsonFileStore",
    "KeyValueStore",
    "LocalFileWriter",
    "MemoryStore",
    "RepairedResult",
    "StrictResult",
    "StructuredLogger",
    "clear_loggers",
    "decode_output",
    "extract_json_object",
    "find_json_span",
    "get_logger",
    "parse_output",
    "parse_section_edit",
    "split_into_chunks",
]
