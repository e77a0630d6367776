"""Prompt templates for the generate, summarize, translate and section-edit calls."""

from aiwriter.models import VIEW_DOCUMENT, VIEW_SLIDES, VIEW_TABLE, DocSection

_OUTPUT_CONTRACT = """{
  "pdf_word": {
    "title": "string",
    "author": "AI Writer",
    "language": "string",
    "sections": [
      {
        "heading": "string",
        "paragraph": "string",
        "bullets": ["string", "string", "string"],
        "image_keyword": "string (one or two words for a stock photo search)"
      }
    ]
  },
  "ppt": {
    "slides": [
      {
        "title": "string",
        "bullets": ["string", "string", "string"],
        "image_keyword": "string"
      }
    ]
  },
  "excel": {
    "headers": ["Section", "Key Points", "Image Keyword"],
    "rows": [["string", "string", "string"]]
  }
}"""

_VIEW_NAMES = {
    VIEW_DOCUMENT: "PDF/Word document (pdf_word)",
    VIEW_SLIDES: "PowerPoint slides (ppt)",
    VIEW_TABLE: "Excel table (excel)",
}

SECTION_ACTIONS = {
    "improve": (
        "Enhance the grammar, clarity, and professional tone of this section. "
        "Keep the same meaning but make it more polished."
    ),
    "expand": "Make the paragraph 2x longer with more detail. Add 2-3 more bullet points.",
    "shorten": "Reduce the paragraph to 2-3 sentences. Keep only the top 3 bullet points.",
    "regenerate": "Completely rewrite this section from scratch with a fresh perspective.",
}


def _views_line(views: tuple[str, ...]) -> str:
    names = ", ".join(_VIEW_NAMES[v] for v in views)
    return (
        f"Required views: {names}. "
        "Always return all three top-level keys; fill every required view completely."
    )


def prompt_generate(topic: str, language: str, views: tuple[str, ...]) -> tuple[str, str]:
    """Generate the prompt pair for a new document about a topic.

    Args:
        topic: The user's topic or instructions.
        language: Output language code or name.
        views: Views the caller needs (document, slides, table).

    Returns:
        A tuple of (system_prompt, user_prompt).
    """
    system = f"""You are AI Writer, a professional document generator. Generate comprehensive content and return ONLY one valid JSON object (no markdown fences, no extra text) with this exact structure:

{_OUTPUT_CONTRACT}

Requirements:
- 3-5 sections minimum. Each paragraph: 2-3 sentences. Each section: 3 bullet points.
- Each section becomes one slide; each table row summarizes one section.
- Every table row has exactly 3 cells: Section, Key Points, Image Keyword.
- Preserve grammar, spelling and punctuation for the output language.

CRITICAL: Return ONLY valid JSON. No markdown code fences. No explanatory text."""
    user = (
        f"Topic / Instructions: {topic}\n"
        f"Output Language: {language}\n"
        "Please generate comprehensive professional documents about this topic.\n"
        f"{_views_line(views)}\n"
        "Return ONLY valid JSON matching the required schema."
    )
    return (system, user)


def prompt_summarize(
    content: str, language: str, views: tuple[str, ...], part: tuple[int, int] = (1, 1)
) -> tuple[str, str]:
    """Generate the prompt pair to summarize uploaded content into the same schema.

    part is (index, total), 1-based, when a long upload is sent in several calls.
    """
    system = f"""You are AI Writer, a professional summarization assistant. Extract key points from the given content.
Target: 30-40% of original length for longer documents, 1-2 sections for short documents.
Output language: {language}
The title should read "Summary: <original title>".

Return ONLY one valid JSON object with this exact structure:

{_OUTPUT_CONTRACT}

CRITICAL: Return ONLY valid JSON. No markdown code fences."""
    index, total = part
    if total > 1:
        intro = (
            "Summarize the following portion of a document, extracting key points.\n"
            f"Part: {index} of {total}\n"
        )
        if index > 1:
            intro += "Note: This is a continuation. Summarize only this portion without repeating earlier points.\n"
    else:
        intro = "Summarize the following content:\n"
    user = f"""{intro}
---
{content}
---

{_views_line(views)}"""
    return (system, user)


def prompt_translate(
    content: str,
    source_language: str,
    target_language: str,
    views: tuple[str, ...],
    part: tuple[int, int] = (1, 1),
) -> tuple[str, str]:
    """Generate the prompt pair to translate uploaded content into the same schema.

    part is (index, total), 1-based, when a long upload is sent in several calls.
    """
    system = f"""You are AI Writer, a professional translator. Translate content from {source_language} to {target_language}.

The input may contain structure markers: [TITLE], [H1], [H2], [H3], [P], [LIST], [Slide N], [Sheet N].
Use them to understand the document hierarchy and strip them from the output.

Return ONLY one valid JSON object with this exact structure, with "language" set to "{target_language}":

{_OUTPUT_CONTRACT}

CRITICAL: Return ONLY valid JSON. No markdown code fences."""
    index, total = part
    if total > 1:
        intro = f"Translate PART {index} of {total} from {source_language} to {target_language}.\n"
        if index > 1:
            intro += "This is a continuation. Do not add an introduction or title; translate this portion directly.\n"
    else:
        intro = f"Translate the following content from {source_language} to {target_language}:\n"
    user = f"""{intro}
---
{content}
---

{_views_line(views)}"""
    return (system, user)


def prompt_section_edit(
    section: DocSection, action: str, language: str, document_title: str
) -> tuple[str, str]:
    """Generate the prompt pair for a single-section edit.

    Raises:
        ValueError: If action is not one of SECTION_ACTIONS.
    """
    if action not in SECTION_ACTIONS:
        raise ValueError(f"Unknown action: {action}")
    system = f"""You are a professional document editor. {SECTION_ACTIONS[action]}
Output language: {language}
Return ONLY a valid JSON object with these keys:
- "heading": string
- "paragraph": string
- "bullets": string[]
No markdown fences. No extra text."""
    bullets = "\n".join(section.bullets)
    user = f"""Document: "{document_title}"
Section to edit:
Heading: {section.heading}
Paragraph: {section.paragraph}
Bullets: {bullets}"""
    return (system, user)
