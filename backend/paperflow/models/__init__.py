from paperflow.models.documents import (
    Document,
    DocumentStatus,
    Page,
    build_pages,
    sanitize_error,
)

__all__ = ["Document", "DocumentStatus", "Page", "build_pages", "sanitize_error"]
