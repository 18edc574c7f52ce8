"""
Unit Tests — InMemoryDocumentStore
═══════════════════════════════════
Tests for paperflow/storage/memory.py

Coverage:
  ✅ New document → id + version 1; every save bumps the version
  ✅ Saving a stale copy raises StaleDocumentError
  ✅ Saving an unknown id with a version raises DocumentNotFound
  ✅ Pages must be numbered 1..n; returned in order, attached on load
  ✅ Records are isolated from caller mutation (deep copies)
  ✅ exists_by_filename_and_owner, find_by_owner, delete_by_id
  ✅ find_retryable: degraded + stable + due + under the attempt cap, limited
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from paperflow.core.errors import DocumentNotFound, InvalidDocument, StaleDocumentError
from paperflow.models.documents import Document, DocumentStatus, Page, build_pages


def _new(filename="invoice.pdf", owner="alice", **kwargs) -> Document:
    return Document(filename=filename, owner_username=owner, pdf_content=b"%PDF", **kwargs)


@pytest.mark.unit
class TestDocumentVersions:

    async def test_new_document_gets_id_and_version(self, store):
        saved = await store.save(_new())

        assert saved.id == 1
        assert saved.version == 1
        assert saved.size == 4

    async def test_each_save_bumps_version(self, store):
        doc = await store.save(_new())
        doc.status = DocumentStatus.OCR_IN_PROGRESS
        doc = await store.save(doc)

        assert doc.version == 2
        assert (await store.find_by_id(doc.id)).status is DocumentStatus.OCR_IN_PROGRESS

    async def test_stale_copy_is_rejected(self, store):
        doc = await store.save(_new())
        first = await store.find_by_id(doc.id)
        second = await store.find_by_id(doc.id)

        first.title = "written first"
        await store.save(first)

        second.title = "written second"
        with pytest.raises(StaleDocumentError) as exc_info:
            await store.save(second)

        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        assert (await store.find_by_id(doc.id)).title == "written first"

    async def test_unknown_id_with_version(self, store):
        with pytest.raises(DocumentNotFound):
            await store.save(_new(id=99, version=3))

    async def test_caller_mutation_does_not_leak(self, store):
        doc = await store.save(_new())
        doc.tags.append("sneaky")

        assert (await store.find_by_id(doc.id)).tags == []


@pytest.mark.unit
class TestDocumentQueries:

    async def test_exists_by_filename_and_owner(self, store):
        await store.save(_new("a.pdf", "alice"))

        assert await store.exists_by_filename_and_owner("a.pdf", "alice") is True
        assert await store.exists_by_filename_and_owner("a.pdf", "bob") is False
        assert await store.exists_by_filename_and_owner("b.pdf", "alice") is False

    async def test_find_by_owner(self, store):
        await store.save(_new("a.pdf", "alice"))
        await store.save(_new("b.pdf", "bob"))
        await store.save(_new("c.pdf", "alice"))

        docs = await store.find_by_owner("alice")

        assert [d.filename for d in docs] == ["a.pdf", "c.pdf"]

    async def test_delete_removes_document_and_pages(self, store):
        doc = await store.save(_new())
        await store.save_pages(doc.id, build_pages(doc.id, ["one"]))

        await store.delete_by_id(doc.id)

        assert await store.find_by_id(doc.id) is None
        assert await store.find_pages(doc.id) == []


@pytest.mark.unit
class TestPages:

    async def test_pages_attached_in_order(self, store):
        doc = await store.save(_new())
        await store.save_pages(doc.id, build_pages(doc.id, ["one", "two", "three"]))

        loaded = await store.find_by_id(doc.id)

        assert [p.page_number for p in loaded.pages] == [1, 2, 3]
        assert loaded.page_texts == ["one", "two", "three"]
        assert all(p.id is not None for p in loaded.pages)

    async def test_saving_pages_replaces_previous_set(self, store):
        doc = await store.save(_new())
        await store.save_pages(doc.id, build_pages(doc.id, ["old 1", "old 2"]))
        await store.save_pages(doc.id, build_pages(doc.id, ["new 1"]))

        assert (await store.find_by_id(doc.id)).page_texts == ["new 1"]

    @pytest.mark.parametrize("numbers", [[2, 3], [1, 3], [2, 1], [0, 1]])
    async def test_non_contiguous_numbers_rejected(self, store, numbers):
        doc = await store.save(_new())
        pages = [Page(page_number=n, page_text=f"p{n}") for n in numbers]

        with pytest.raises(InvalidDocument):
            await store.save_pages(doc.id, pages)

    async def test_pages_for_unknown_document(self, store):
        with pytest.raises(DocumentNotFound):
            await store.save_pages(42, build_pages(42, ["orphan"]))

    async def test_page_save_does_not_bump_version(self, store):
        doc = await store.save(_new())
        await store.save_pages(doc.id, build_pages(doc.id, ["one"]))

        assert (await store.find_by_id(doc.id)).version == doc.version


@pytest.mark.unit
class TestFindRetryable:

    async def _seed(self, store, **fields) -> Document:
        doc = await store.save(_new(filename=f"{len(await store.find_by_owner('alice'))}.pdf"))
        for name, value in fields.items():
            setattr(doc, name, value)
        return await store.save(doc)

    async def test_selects_degraded_stable_documents(self, store):
        reindex = await self._seed(store, status=DocumentStatus.INDEXING_FAILED)
        reenrich = await self._seed(
            store, status=DocumentStatus.COMPLETED, failed_enrichment=True,
        )
        await self._seed(store, status=DocumentStatus.COMPLETED)
        await self._seed(store, status=DocumentStatus.OCR_FAILED)
        await self._seed(
            store, status=DocumentStatus.ENRICHING_IN_PROGRESS, failed_enrichment=True,
        )

        found = await store.find_retryable(max_attempts=5)

        assert [d.id for d in found] == [reindex.id, reenrich.id]

    async def test_attempt_cap(self, store):
        await self._seed(store, status=DocumentStatus.INDEXING_FAILED, recovery_attempts=5)

        assert await store.find_retryable(max_attempts=5) == []

    async def test_limit(self, store):
        for _ in range(4):
            await self._seed(store, status=DocumentStatus.INDEXING_FAILED)

        assert len(await store.find_retryable(max_attempts=5, limit=3)) == 3

    async def test_only_due_documents(self, store):
        now = datetime(2024, 3, 14, 9, 0, tzinfo=timezone.utc)
        due = await self._seed(
            store, status=DocumentStatus.INDEXING_FAILED, next_retry_at=now,
        )
        await self._seed(
            store, status=DocumentStatus.INDEXING_FAILED,
            next_retry_at=now + timedelta(minutes=15),
        )
        never_scheduled = await self._seed(
            store, status=DocumentStatus.ENRICHED, failed_enrichment=True,
        )

        found = await store.find_retryable(max_attempts=5, now=now)

        assert [d.id for d in found] == [due.id, never_scheduled.id]
