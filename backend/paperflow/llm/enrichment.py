"""
Enrichment Orchestrator — LLM metadata suggestion with a guaranteed result

enrich(text) never raises and never returns None:

  1. build prompt (title, date_sent as dd.MM.yyyy, five tags)
  2. call Ollama with an explicit timeout
        transport error / HTTP error / timeout  → treated as empty body
  3. concatenate NDJSON "response" fragments
  4. pull the embedded JSON object out of the model's prose
  5. validate into EnrichmentResult
        anything unusable                       → EnrichmentResult.fallback()

The worst outcome is a flagged, low-confidence result; the pipeline
stage calling this can never fail because of the LLM.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from paperflow.llm.client import OllamaClient
from paperflow.llm.response import (
    extract_embedded_json,
    extract_json_response,
    parse_enrichment_result,
)
from paperflow.schemas.documents import EnrichmentResult

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "mistral"
DEFAULT_TIMEOUT_SECONDS = 600.0

PROMPT_TEMPLATE = (
    'Give me a json-format with title, date_sent as dd.MM.yyyy '
    'and 5 tags for this text: "{text}"'
)


def build_prompt(text: Optional[str]) -> str:
    # str.format leaves braces inside the substituted text alone
    return PROMPT_TEMPLATE.format(text=text or "")


class EnrichmentOrchestrator:

    def __init__(
        self,
        client: OllamaClient,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._model = model
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(cls, settings, client: OllamaClient | None = None) -> "EnrichmentOrchestrator":
        return cls(
            client=client or OllamaClient.from_settings(settings),
            model=settings.llm_model,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    async def enrich(self, text: Optional[str]) -> EnrichmentResult:
        t0 = time.monotonic()
        prompt = build_prompt(text)
        logger.debug("Enrichment | prompt=%.200s", prompt)

        body = await self._generate(prompt)
        result: Optional[EnrichmentResult] = None
        if body and body.strip():
            try:
                result = self._to_result(body)
            except Exception as exc:
                logger.error("Enrichment | unexpected error decoding response: %s", exc, exc_info=True)
                result = None

        elapsed_ms = (time.monotonic() - t0) * 1000
        if result is None:
            logger.warning(
                "Enrichment | no usable LLM result, using fallback model=%s elapsed_ms=%.0f",
                self._model, elapsed_ms,
            )
            return EnrichmentResult.fallback()

        logger.info(
            "Enrichment | model=%s title=%r tags=%d elapsed_ms=%.0f",
            self._model, result.title, len(result.tags), elapsed_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _generate(self, prompt: str) -> str:
        """Call the model; every failure collapses to an empty body."""
        try:
            return await asyncio.wait_for(
                self._client.generate(self._model, prompt), timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Enrichment | Ollama call timed out after %.0fs", self._timeout)
        except Exception as exc:
            logger.error("Enrichment | Ollama call failed: %s", exc, exc_info=True)
        return ""

    @staticmethod
    def _to_result(body: str) -> Optional[EnrichmentResult]:
        json_text = extract_embedded_json(extract_json_response(body))
        return parse_enrichment_result(json_text)
