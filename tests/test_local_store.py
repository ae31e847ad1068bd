"""Tests for the local document store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tidemark_sync.exceptions import (
    ConflictError,
    NotFoundError,
    StorageIOError,
    ValidationError,
)
from tidemark_sync.local import LocalDocumentStore, next_revision
from tidemark_sync.models import Bookmark, Collection, Tag


class TestNextRevision:
    def test_first_revision(self):
        assert next_revision(None).startswith("1-")

    def test_increments_generation(self):
        assert next_revision("4-abc").startswith("5-")

    def test_unique(self):
        assert next_revision("1-a") != next_revision("1-a")


class TestLocalDocumentStore:
    """Tests for LocalDocumentStore."""

    @pytest.fixture
    def store(self, temp_dir: Path) -> LocalDocumentStore:
        return LocalDocumentStore(Collection.TAGS, temp_dir)

    async def test_put_and_get(self, store: LocalDocumentStore) -> None:
        """Test inserting and reading back a document."""
        saved = await store.put(Tag(id="t1", name="Work"))

        assert saved.revision is not None
        fetched = await store.get("t1")
        assert fetched.name == "Work"
        assert fetched.revision == saved.revision

    async def test_get_missing(self, store: LocalDocumentStore) -> None:
        with pytest.raises(NotFoundError):
            await store.get("nope")

    async def test_get_all_empty(self, store: LocalDocumentStore) -> None:
        assert await store.get_all() == []

    async def test_update_with_current_revision(self, store: LocalDocumentStore) -> None:
        saved = await store.put(Tag(id="t1", name="Work"))
        saved.name = "Office"

        updated = await store.put(saved)

        assert updated.name == "Office"
        assert updated.revision != saved.revision

    async def test_stale_revision_conflicts(self, store: LocalDocumentStore) -> None:
        """Test that a write with an outdated revision is rejected."""
        first = await store.put(Tag(id="t1", name="Work"))
        await store.put(Tag(id="t1", name="Office", revision=first.revision))

        with pytest.raises(ConflictError):
            await store.put(Tag(id="t1", name="Home", revision=first.revision))

        assert (await store.get("t1")).name == "Office"

    async def test_revision_on_missing_document_conflicts(self, store: LocalDocumentStore) -> None:
        with pytest.raises(ConflictError):
            await store.put(Tag(id="t1", name="Work", revision="3-abc"))

    async def test_put_without_revision_replaces(self, store: LocalDocumentStore) -> None:
        await store.put(Tag(id="t1", name="Work"))
        await store.put(Tag(id="t1", name="Office"))
        assert (await store.get("t1")).name == "Office"

    async def test_persisted_to_disk(self, store: LocalDocumentStore, temp_dir: Path) -> None:
        await store.put(Tag(id="%5Fhidden", name="Secret"))

        data = json.loads((temp_dir / "tags.json").read_text())
        assert "%5Fhidden" in data["documents"]

        reopened = LocalDocumentStore(Collection.TAGS, temp_dir)
        assert (await reopened.get("%5Fhidden")).name == "Secret"

    async def test_wrong_document_type(self, store: LocalDocumentStore) -> None:
        with pytest.raises(ValidationError):
            await store.put(Bookmark(id="b1", url="u"))


class TestRemove:
    @pytest.fixture
    def store(self, temp_dir: Path) -> LocalDocumentStore:
        return LocalDocumentStore(Collection.BOOKMARKS, temp_dir)

    async def test_remove_leaves_tombstone(self, store: LocalDocumentStore) -> None:
        await store.put(Bookmark(id="b1", url="u"))
        await store.remove("b1")

        assert await store.get_all() == []
        tombstones = await store.get_tombstones()
        assert "b1" in tombstones

    async def test_remove_missing(self, store: LocalDocumentStore) -> None:
        with pytest.raises(NotFoundError):
            await store.remove("b1")

    async def test_recreate_clears_tombstone(self, store: LocalDocumentStore) -> None:
        await store.put(Bookmark(id="b1", url="u"))
        await store.remove("b1")
        recreated = await store.put(Bookmark(id="b1", url="u2"))

        assert await store.get_tombstones() == {}
        # Generation continues past the deleted revision.
        assert int(recreated.revision.split("-")[0]) >= 3


class TestBulkPut:
    @pytest.fixture
    def store(self, temp_dir: Path) -> LocalDocumentStore:
        return LocalDocumentStore(Collection.TAGS, temp_dir)

    async def test_reports_per_item(self, store: LocalDocumentStore) -> None:
        """Test that one conflicting document does not stop the others."""
        await store.put(Tag(id="t1", name="Work"))

        results = await store.bulk_put(
            [
                Tag(id="t1", name="Stale", revision="1-wrong"),
                Tag(id="t2", name="Home"),
            ]
        )

        assert [r.ok for r in results] == [False, True]
        assert isinstance(results[0].error, ConflictError)
        assert (await store.get("t1")).name == "Work"
        assert (await store.get("t2")).name == "Home"

    async def test_bypass_revision_check(self, store: LocalDocumentStore) -> None:
        await store.put(Tag(id="t1", name="Work"))

        results = await store.bulk_put(
            [Tag(id="t1", name="Remote", revision="1-wrong")],
            bypass_revision_check=True,
        )

        assert results[0].ok
        assert (await store.get("t1")).name == "Remote"

    async def test_all_rejected_writes_nothing(
        self, store: LocalDocumentStore, temp_dir: Path
    ) -> None:
        results = await store.bulk_put([Tag(id="t1", name="x", revision="1-a")])

        assert not results[0].ok
        assert not (temp_dir / "tags.json").exists()

    async def test_invalid_document_never_committed(self, temp_dir: Path) -> None:
        """An invalid document next to a valid one leaves the store readable."""
        store = LocalDocumentStore(Collection.BOOKMARKS, temp_dir)
        await store.put(Bookmark(id="bad", url="u", title="Kept"))

        results = await store.bulk_put(
            [Bookmark(id="bad", url="u", title=5), Bookmark(id="good", url="u")],  # type: ignore[arg-type]
            bypass_revision_check=True,
        )

        assert [r.ok for r in results] == [False, True]
        assert isinstance(results[0].error, ValidationError)
        reopened = LocalDocumentStore(Collection.BOOKMARKS, temp_dir)
        assert sorted(d.id for d in await reopened.get_all()) == ["bad", "good"]
        assert (await reopened.get("bad")).title == "Kept"


class TestCorruptStore:
    async def test_unparsable_file(self, temp_dir: Path) -> None:
        (temp_dir / "tags.json").write_text("{not json")
        store = LocalDocumentStore(Collection.TAGS, temp_dir)

        with pytest.raises(StorageIOError):
            await store.get_all()
