import json
import logging
import re

from app.core.metrics import increment_json_parse_failure

logger = logging.getLogger(__name__)


def _strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences from LLM output."""
    patterns = [
        r"```json\s*\n?(.*?)\n?```",
        r"```\s*\n?(.*?)\n?```",
    ]
    for pattern in patterns:
        match = re.search(pattern, text, re.DOTALL | re.IGNORECASE)
        if match:
            return match.group(1).strip()
    return text


def _clean_json_text(text: str) -> str:
    """Clean common LLM JSON output issues."""
    cleaned = text.strip()
    cleaned = _strip_markdown_fences(cleaned)

    lines = cleaned.split("\n")

    start_idx = 0
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("{") or stripped.startswith("["):
            start_idx = i
            break

    end_idx = len(lines) - 1
    for i in range(len(lines) - 1, -1, -1):
        stripped = lines[i].strip()
        if stripped.endswith("}") or stripped.endswith("]"):
            end_idx = i
            break

    cleaned = "\n".join(lines[start_idx : end_idx + 1])

    cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)

    return cleaned.strip()


def _extract_balanced(text: str, opener: str, closer: str) -> str | None:
    """Extract the outermost bracketed span, ignoring brackets inside strings."""
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i, char in enumerate(text[start:], start):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None


def _extract_json_object(text: str) -> str | None:
    """Extract the outermost JSON object using bracket matching."""
    return _extract_balanced(text, "{", "}")


def _extract_json_array(text: str) -> str | None:
    """Extract the outermost JSON array using bracket matching."""
    return _extract_balanced(text, "[", "]")


def parse_json_text(text: str) -> dict | list | None:
    """
    Multi-tier JSON extraction: direct, cleaned, outermost object, outermost array.

    Returns None when every tier fails; callers decide whether that is fatal.
    """
    if not text:
        increment_json_parse_failure("empty")
        return None

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        increment_json_parse_failure("direct")

    cleaned_text = _clean_json_text(text)
    try:
        return json.loads(cleaned_text)
    except json.JSONDecodeError:
        increment_json_parse_failure("cleaned")

    obj_text = _extract_json_object(text)
    arr_text = _extract_json_array(text)
    # Whichever container opens first is the top-level value.
    candidates = [c for c in (obj_text, arr_text) if c]
    candidates.sort(key=text.find)
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            increment_json_parse_failure("object" if candidate.startswith("{") else "array")

    logger.warning(
        "All JSON parsing methods failed. Text preview: %s",
        text[:300],
    )
    return None
