"""
LLM Response Processing — Ollama /api/generate output → EnrichmentResult

Ollama streams newline-delimited JSON by default:

  {"model":"mistral","response":"{\"ti","done":false}
  {"model":"mistral","response":"tle\": ...","done":false}
  {"model":"mistral","response":"","done":true, ...}

Processing is three pure steps, each returning an empty value on failure
rather than raising:

  extract_json_response   → concatenate every line's "response" fragment
  extract_embedded_json   → pull the JSON object out of the model's prose
  parse_enrichment_result → validate into EnrichmentResult (or None)
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional

from pydantic import ValidationError

from paperflow.schemas.documents import EnrichmentResult

logger = logging.getLogger(__name__)

# ```{...}``` or ```json {...}```, non-greedy, spans newlines
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def extract_json_response(response_body: Optional[str]) -> str:
    """Concatenate the ``response`` field of every NDJSON line, in order."""
    if not response_body or not response_body.strip():
        return ""

    fragments: list[str] = []
    for line in response_body.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            node = json.loads(line)
        except ValueError:
            logger.debug("LLM response | skipping non-JSON line: %.80s", line)
            continue
        if not isinstance(node, dict):
            continue
        fragment = node.get("response")
        if fragment is None or isinstance(fragment, (dict, list)):
            continue
        fragments.append(fragment if isinstance(fragment, str) else str(fragment))

    return "".join(fragments)


def extract_embedded_json(text: Optional[str]) -> str:
    """
    Return the JSON object embedded in free text.

    Prefers a triple-backtick fenced object; otherwise the span from the
    first "{" to the last "}". Returns "" when neither exists.
    """
    if not text or not text.strip():
        return ""

    match = _FENCED_JSON.search(text)
    if match:
        return match.group(1).strip()

    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        return text[first:last + 1].strip()

    return ""


def parse_enrichment_result(json_text: Optional[str]) -> Optional[EnrichmentResult]:
    """Validate a JSON object into EnrichmentResult; None if it is not one."""
    if not json_text:
        return None
    try:
        data = json.loads(json_text)
    except ValueError as exc:
        logger.debug("LLM response | invalid JSON: %s", exc)
        return None
    if not isinstance(data, dict):
        return None
    try:
        return EnrichmentResult.model_validate(data)
    except ValidationError as exc:
        logger.debug("LLM response | JSON does not describe an enrichment: %s", exc)
        return None
