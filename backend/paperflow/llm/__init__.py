"""
LLM Enrichment Package

Suggests document metadata (title, date, tags) with a local Ollama model.

Public API::

    from paperflow.llm import EnrichmentOrchestrator

    orchestrator = EnrichmentOrchestrator.from_settings(settings)
    result = await orchestrator.enrich(first_page_text)   # never raises
"""

from paperflow.llm.client import OllamaClient
from paperflow.llm.enrichment import EnrichmentOrchestrator, build_prompt
from paperflow.llm.response import (
    extract_embedded_json,
    extract_json_response,
    parse_enrichment_result,
)

__all__ = [
    "EnrichmentOrchestrator",
    "OllamaClient",
    "build_prompt",
    "extract_embedded_json",
    "extract_json_response",
    "parse_enrichment_result",
]
