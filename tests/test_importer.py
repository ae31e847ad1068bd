"""Tests for import and export."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from tidemark_sync.exceptions import ValidationError
from tidemark_sync.importer import (
    export_payload,
    import_payload,
    load_import_file,
    parse_import_payload,
    write_export_file,
)
from tidemark_sync.models import Bookmark, Collection, Tag


class TestParseImportPayload:
    """Tests for parse_import_payload."""

    def test_standard_shape(self):
        payload = parse_import_payload(
            {
                "bookmarks": [{"id": "b1", "url": "https://example.com"}],
                "tags": [{"id": "t1", "name": "Work"}],
            }
        )

        assert [b.id for b in payload.bookmarks] == ["b1"]
        assert [t.id for t in payload.tags] == ["t1"]
        assert payload.warnings == []

    def test_flat_array_split_by_url(self):
        payload = parse_import_payload(
            [{"id": "b1", "url": "u", "name": "Title"}, {"id": "t1", "name": "Work"}]
        )

        assert payload.bookmarks[0].title == "Title"
        assert payload.tags[0].name == "Work"

    def test_timestamps_normalized(self):
        payload = parse_import_payload(
            {
                "bookmarks": [
                    {"id": "b1", "url": "u", "createdAt": 1_700_000_000_000},
                    {"id": "b2", "url": "u", "createdAt": "2023-11-14T22:13:20Z"},
                ]
            }
        )

        assert payload.bookmarks[0].created_at == payload.bookmarks[1].created_at
        assert payload.bookmarks[0].created_at == datetime.fromtimestamp(1_700_000_000, tz=UTC)

    def test_ids_escaped(self):
        payload = parse_import_payload({"tags": [{"id": "_hidden", "name": "h"}]})
        assert payload.tags[0].id == "%5Fhidden"

    def test_legacy_id_key(self):
        payload = parse_import_payload({"tags": [{"_id": "t9", "name": "Old"}]})
        assert payload.tags[0].id == "t9"

    def test_missing_id_generated(self):
        payload = parse_import_payload([{"url": "https://example.com"}])
        assert payload.bookmarks[0].id

    def test_bad_records_become_warnings(self):
        payload = parse_import_payload(
            {"bookmarks": [{"id": "b1", "url": "u"}, {"id": "b2", "tagIds": 5}, "junk"]}
        )

        assert [b.id for b in payload.bookmarks] == ["b1"]
        assert len(payload.warnings) == 2

    @pytest.mark.parametrize("data", ["text", 42, None, {"bookmarks": "nope"}])
    def test_wrong_shape(self, data):
        with pytest.raises(ValidationError):
            parse_import_payload(data)


class TestImportPayload:
    """Tests for import_payload."""

    async def test_duplicate_tag_names_both_inserted(self, stores):
        payload = parse_import_payload(
            {"tags": [{"id": "t1", "name": "Work"}, {"id": "t2", "name": "Work"}]}
        )

        result = await import_payload(stores, payload)

        assert result.tags_imported == 2
        assert sorted(t.id for t in await stores[Collection.TAGS].get_all()) == ["t1", "t2"]
        assert result.warnings == []

    async def test_duplicate_tag_names_flagged(self, stores):
        payload = parse_import_payload(
            {"tags": [{"id": "t1", "name": "Work"}, {"id": "t2", "name": "work"}]}
        )

        result = await import_payload(stores, payload, flag_duplicate_names=True)

        assert result.tags_imported == 2
        assert len(result.warnings) == 1
        assert "t1" in result.warnings[0] and "t2" in result.warnings[0]

    async def test_newer_local_edit_survives(self, stores):
        await stores[Collection.BOOKMARKS].put(
            Bookmark(
                id="b1",
                url="u",
                title="edited",
                updated_at=datetime(2025, 1, 1, tzinfo=UTC),
            )
        )
        payload = parse_import_payload(
            {"bookmarks": [{"id": "b1", "url": "u", "title": "old", "updatedAt": "2024-01-01"}]}
        )

        result = await import_payload(stores, payload)

        assert result.bookmarks_imported == 0
        assert len(result.conflicts) == 1
        assert (await stores[Collection.BOOKMARKS].get("b1")).title == "edited"

    async def test_result_reports_raw_ids(self, stores):
        await stores[Collection.TAGS].put(
            Tag(id="%5Fhidden", name="Mine", updated_at=datetime(2025, 1, 1, tzinfo=UTC))
        )
        await stores[Collection.TAGS].put(Tag(id="%5Fsame", name="Same"))
        payload = parse_import_payload(
            {
                "tags": [
                    {"id": "_hidden", "name": "Old", "updatedAt": "2024-01-01"},
                    {"id": "_same", "name": "Same"},
                ]
            }
        )

        result = await import_payload(stores, payload)

        assert [c.id for c in result.conflicts] == ["_hidden"]
        assert result.to_dict()["skipped"] == [{"id": "_same", "reason": "identical"}]

    async def test_reimport_is_noop(self, stores):
        payload = parse_import_payload({"tags": [{"id": "t1", "name": "Work"}]})
        await import_payload(stores, payload)

        result = await import_payload(stores, payload)

        assert result.tags_imported == 0
        assert [s.id for s in result.skipped] == ["t1"]


class TestExport:
    async def test_export_uses_public_ids(self, stores):
        await stores[Collection.TAGS].put(Tag(id="%5Fhidden", name="h"))
        await stores[Collection.BOOKMARKS].put(Bookmark(id="b1", url="u", tag_ids=["_hidden"]))

        data = await export_payload(stores)

        assert [t["id"] for t in data["tags"]] == ["_hidden"]
        assert "revision" not in data["tags"][0]
        assert data["bookmarks"][0]["tagIds"] == ["_hidden"]

    async def test_percent_prefixed_id_round_trip(self, stores):
        payload = parse_import_payload({"tags": [{"id": "%5Fodd", "name": "Odd"}]})
        assert payload.tags[0].id == "%255Fodd"

        await import_payload(stores, payload)
        data = await export_payload(stores)

        assert [(t["id"], t["name"]) for t in data["tags"]] == [("%5Fodd", "Odd")]

    async def test_file_round_trip(self, stores, temp_dir: Path):
        await stores[Collection.TAGS].put(Tag(id="%5Ft", name="Work"))
        path = temp_dir / "export" / "library.json"

        await write_export_file(path, await export_payload(stores))
        payload = await load_import_file(path)

        assert json.loads(path.read_text())["tags"][0]["name"] == "Work"
        assert [t.name for t in payload.tags] == ["Work"]
        assert [t.id for t in payload.tags] == ["%5Ft"]

    async def test_load_invalid_json(self, temp_dir: Path):
        path = temp_dir / "broken.json"
        path.write_text("{oops")

        with pytest.raises(ValidationError):
            await load_import_file(path)
