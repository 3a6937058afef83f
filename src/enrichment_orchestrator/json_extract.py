from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def first_balanced_object(text: str) -> str | None:
    """Return the first `{...}` substring whose braces balance, ignoring braces in strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


def parse_json_content(text: str) -> Any:
    """
    Parse model output as JSON.

    Tries the raw text, then the body of a Markdown code fence, then the first
    balanced object embedded in prose. Raises ValueError when nothing parses.
    """
    candidate = text.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    fenced = _FENCE_RE.match(candidate)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except json.JSONDecodeError:
            candidate = fenced.group(1)

    snippet = first_balanced_object(candidate)
    if snippet is not None:
        try:
            return json.loads(snippet)
        except json.JSONDecodeError as e:
            raise ValueError("Embedded JSON object is malformed.") from e
    raise ValueError("No valid JSON found in model output.")
