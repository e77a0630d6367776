"""Split long uploaded text into parts that each fit one chat call."""

# Preferred break points, strongest first
_BREAKS = ("\n\n", "\n", ". ", " ")


def _break_index(text: str, max_chars: int) -> int:
    for sep in _BREAKS:
        index = text.rfind(sep, 0, max_chars)
        if index > 0 and index >= max_chars // 2:
            # Keep the sentence's period with the part it ends
            return index + len(sep.rstrip())
    return max_chars


def split_into_chunks(text: str, max_chars: int) -> list[str]:
    """Split text at paragraph, line, sentence or word breaks.

    A break is only taken in the second half of a window, so every part but
    the last holds at least max_chars // 2 characters. Text that already fits
    comes back as a single part, even when empty.

    Args:
        text: Uploaded document text.
        max_chars: Upper bound on the length of each part.

    Returns:
        The parts in document order.

    Raises:
        ValueError: If max_chars is not positive.
    """
    if max_chars <= 0:
        raise ValueError(f"max_chars must be positive, got {max_chars}")
    if len(text) <= max_chars:
        return [text]

    chunks: list[str] = []
    remaining = text
    while len(remaining) > max_chars:
        cut = _break_index(remaining, max_chars)
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip()
    if remaining.strip():
        chunks.append(remaining)
    return chunks
