# src/scan/validator.py — v1
"""Strict validation of free-text classification output.

The classification service is untrusted: its answer may wrap the JSON object
in prose or a fenced code block, or be malformed altogether. The validator
locates a balanced ``{...}`` region, parses it and validates it against
CapabilityPayload without coercion. Anything else is rejected.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterator

from pydantic import ValidationError

from capscan.scan.errors import InvalidGenerativeOutput
from capscan.scan.models import CapabilityPayload

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


def validate_capability_output(raw_text: str, item: str = "") -> CapabilityPayload:
    """Parse and validate classification output.

    Args:
        raw_text: Raw text returned by the classification service.
        item: Resource name, attached to the error for reporting.

    Returns:
        Validated CapabilityPayload.

    Raises:
        InvalidGenerativeOutput: No JSON object found, or it fails validation.
    """
    if not raw_text or not raw_text.strip():
        raise InvalidGenerativeOutput("Empty classification output", raw_text, item)

    payload = extract_json_object(raw_text)
    if payload is None:
        raise InvalidGenerativeOutput(
            "No JSON object found in classification output", raw_text, item
        )

    try:
        return CapabilityPayload.model_validate(payload)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidGenerativeOutput(
            f"Classification output failed validation: {problems}", raw_text, item
        ) from e


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in text, or None.

    Fenced code blocks are tried first, then every balanced brace region of
    the whole text in order of appearance.
    """
    for block in _FENCE_RE.findall(text):
        found = _first_object(block)
        if found is not None:
            return found
    return _first_object(text)


def _first_object(text: str) -> dict[str, Any] | None:
    for candidate in _balanced_regions(text):
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value

    # A stray unmatched "{" in prose hides later regions from the scan above
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text):
        try:
            value, _end = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def _balanced_regions(text: str) -> Iterator[str]:
    """Yield top-level ``{...}`` substrings, ignoring braces inside strings."""
    start = -1
    depth = 0
    in_string = False
    escaped = False

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            # Quotes only matter inside a candidate region
            if depth > 0:
                in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]
