"""
Ollama HTTP client — text generation only.

POST {base_url}/api/generate  with  {"model": ..., "prompt": ...}

The raw body is returned untouched (NDJSON when streaming, the default);
decoding is left to paperflow.llm.response so it can be tested without HTTP.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

GENERATE_ENDPOINT = "/api/generate"


class OllamaClient:
    """
    Without ``http_client`` every call opens a short-lived httpx.AsyncClient:
    Celery tasks each run on a fresh event loop, and pooled connections
    cannot outlive the loop that opened them. Pass a shared client (or one
    with a mock transport in tests) to reuse connections within one loop.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout_seconds: float = 600.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._http = http_client

    @classmethod
    def from_settings(cls, settings) -> "OllamaClient":
        return cls(
            base_url=settings.ollama_base_url,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    async def generate(self, model: str, prompt: str) -> str:
        """Return the raw response body; raises httpx.HTTPError on transport/status failure."""
        logger.info("Ollama | calling model=%s prompt_chars=%d", model, len(prompt))
        payload = {"model": model, "prompt": prompt}

        if self._http is not None:
            response = await self._http.post(GENERATE_ENDPOINT, json=payload)
        else:
            async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as http:
                response = await http.post(GENERATE_ENDPOINT, json=payload)

        response.raise_for_status()
        logger.info("Ollama | response received bytes=%d", len(response.content))
        return response.text
