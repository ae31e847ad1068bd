"""Tests for document models and timestamp normalization."""

from datetime import UTC, datetime

import pytest

from tidemark_sync.exceptions import ValidationError
from tidemark_sync.models import (
    DEFAULT_TAG_COLOR,
    SYNC_ORDER,
    Bookmark,
    Collection,
    Tag,
    normalize_timestamp,
)


class TestNormalizeTimestamp:
    """Tests for normalize_timestamp."""

    def test_iso_with_z(self):
        assert normalize_timestamp("2024-01-02T03:04:05Z") == datetime(
            2024, 1, 2, 3, 4, 5, tzinfo=UTC
        )

    def test_iso_with_offset(self):
        result = normalize_timestamp("2024-01-02T05:04:05+02:00")
        assert result == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)

    def test_naive_iso_is_utc(self):
        assert normalize_timestamp("2024-01-02T03:04:05").tzinfo is UTC

    def test_epoch_seconds(self):
        assert normalize_timestamp(100) == datetime.fromtimestamp(100, tz=UTC)

    def test_epoch_milliseconds(self):
        assert normalize_timestamp(1_700_000_000_000) == datetime.fromtimestamp(
            1_700_000_000, tz=UTC
        )

    def test_numeric_string(self):
        assert normalize_timestamp("1700000000000") == normalize_timestamp(1_700_000_000)

    def test_none_and_empty(self):
        assert normalize_timestamp(None) is None
        assert normalize_timestamp("") is None

    def test_datetime_passthrough(self):
        value = datetime(2024, 5, 1, tzinfo=UTC)
        assert normalize_timestamp(value) == value

    @pytest.mark.parametrize("value", ["yesterday", True, [1], {"a": 1}])
    def test_garbage_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize_timestamp(value, "updatedAt")


class TestBookmark:
    """Tests for Bookmark normalization."""

    def test_from_dict_full(self):
        bookmark = Bookmark.from_dict(
            {
                "id": "b1",
                "url": "https://example.com",
                "title": "Example",
                "tagIds": ["t1", "t1", "t2"],
                "createdAt": 100,
                "updatedAt": "2024-01-01T00:00:00Z",
                "visitCount": 3,
                "custom": {"kept": True},
            }
        )

        assert bookmark.url == "https://example.com"
        assert bookmark.tag_ids == ["t1", "t2"]
        assert bookmark.created_at == datetime.fromtimestamp(100, tz=UTC)
        assert bookmark.visit_count == 3
        assert bookmark.extra == {"custom": {"kept": True}}

    def test_to_dict_uses_local_schema(self):
        data = Bookmark(id="b1", url="u", title="T", tag_ids=["t1"], revision="1-x").to_dict()
        assert data["id"] == "b1"
        assert data["revision"] == "1-x"
        assert data["tagIds"] == ["t1"]
        assert "tag_ids" not in data

    def test_to_dict_without_revision(self):
        assert "revision" not in Bookmark(id="b1", revision="1-x").to_dict(include_revision=False)

    def test_extra_fields_round_trip(self):
        data = {"id": "b1", "url": "u", "pinned": True}
        assert Bookmark.from_dict(data).to_dict()["pinned"] is True

    def test_store_only_keys_dropped(self):
        bookmark = Bookmark.from_dict({"id": "b1", "_rev": "3-abc", "_id": "b1"})
        assert bookmark.extra == {}

    def test_missing_id(self):
        with pytest.raises(ValidationError):
            Bookmark.from_dict({"url": "https://example.com"})

    def test_not_an_object(self):
        with pytest.raises(ValidationError):
            Bookmark.from_dict(["b1"])

    def test_bad_tag_ids(self):
        with pytest.raises(ValidationError):
            Bookmark.from_dict({"id": "b1", "tagIds": "t1"})

    def test_same_fields_ignores_revision(self):
        a = Bookmark(id="b1", url="u", revision="1-a")
        b = Bookmark(id="b1", url="u", revision="7-b")
        assert a.same_fields(b)

    def test_content_ignores_timestamps(self):
        a = Bookmark(id="b1", url="u", updated_at=datetime(2024, 1, 1, tzinfo=UTC))
        b = Bookmark(id="b1", url="u", updated_at=datetime(2025, 1, 1, tzinfo=UTC))
        assert a.content() == b.content()
        assert not a.same_fields(b)


class TestTag:
    def test_default_color(self):
        assert Tag.from_dict({"id": "t1", "name": "Work"}).color == DEFAULT_TAG_COLOR

    def test_round_trip(self):
        tag = Tag(id="t1", name="Work", color="#ff0000")
        assert Tag.from_dict(tag.to_dict()) == tag


class TestCollection:
    def test_resource_names(self):
        assert Collection.BOOKMARKS.resource_name == "collection.json"
        assert Collection.TAGS.resource_name == "tag.json"

    def test_document_types(self):
        assert Collection.BOOKMARKS.document_type is Bookmark
        assert Collection.TAGS.document_type is Tag

    def test_tags_sync_first(self):
        assert SYNC_ORDER == (Collection.TAGS, Collection.BOOKMARKS)
