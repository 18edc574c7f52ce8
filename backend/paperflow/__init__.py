"""paperflow — PDF ingestion pipeline: extraction, enrichment, search indexing."""

__version__ = "0.1.0"
