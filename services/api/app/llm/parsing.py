from __future__ import annotations

import json
import re

from pydantic import ValidationError

from packages.shared.schemas.chat_v1 import LineRequestV1
from services.api.app.llm.base import ExtractionResult

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


def strip_code_fence(raw: str) -> str:
    """Remove one enclosing markdown code fence, if the whole text is fenced."""

    text = (raw or "").strip()
    m = _FENCE_RE.match(text)
    if m:
        return m.group(1).strip()
    return text


def parse_line_requests(raw: str) -> ExtractionResult:
    """Turn an extraction-mode answer into line requests.

    Never raises. Accepts a bare JSON array or an object wrapping it under "items"
    (JSON-object response modes force the latter).
    """

    text = strip_code_fence(raw)
    if not text:
        return ExtractionResult(raw_payload=raw, parse_error="empty response")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return ExtractionResult(raw_payload=raw, parse_error=f"invalid JSON: {e.msg}")

    if isinstance(data, dict) and isinstance(data.get("items"), list):
        data = data["items"]

    if not isinstance(data, list):
        return ExtractionResult(raw_payload=raw, parse_error="expected a JSON array")

    lines: list[LineRequestV1] = []
    for element in data:
        try:
            line = LineRequestV1.model_validate(element)
        except ValidationError as e:
            return ExtractionResult(
                raw_payload=raw,
                parse_error=f"invalid line {element!r}: {e.error_count()} error(s)",
            )
        name = line.name.strip()
        if not name:
            return ExtractionResult(raw_payload=raw, parse_error="blank product name")
        lines.append(LineRequestV1(name=name, quantity=line.quantity))

    return ExtractionResult(raw_payload=raw, lines=lines)
