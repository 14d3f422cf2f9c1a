"""First-JSON-object extraction for free-text model responses.

Models wrap JSON in prose or markdown fences often enough that positional
assumptions (``startswith("```json")``) are not reliable. The extractor
scans for the first ``{`` and walks forward to its matching ``}``, skipping
braces that appear inside JSON strings. If that span does not decode, the
scan resumes at the next ``{``.
"""

from typing import Any, Dict, Iterator, Optional, Tuple
import msgspec
from loguru import logger


def iter_balanced_spans(text: str) -> Iterator[Tuple[int, int]]:
    """Yield (start, end) spans of balanced ``{...}`` candidates in order.

    ``end`` is exclusive. Spans whose closing brace never arrives (truncated
    output) are not yielded.
    """
    start = text.find("{")
    while start != -1:
        end = _match_closing_brace(text, start)
        if end is not None:
            yield start, end
        start = text.find("{", start + 1)


def _match_closing_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index + 1

    return None


def extract_first_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first balanced span in ``text`` that decodes to a JSON object.

    Args:
        text: Raw model response

    Returns:
        Decoded dictionary, or None when no span decodes
    """
    if not text:
        return None

    for start, end in iter_balanced_spans(text):
        candidate = text[start:end]
        try:
            value = msgspec.json.decode(candidate)
        except msgspec.DecodeError:
            logger.debug("Skipping undecodable JSON candidate", start=start, length=len(candidate))
            continue
        if isinstance(value, dict):
            return value

    return None
