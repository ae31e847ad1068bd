"""
Bookmark library facade.

The API UI code talks to. It works on public ids: ids are escaped on the
way into the local stores and unescaped on the way out, so callers never
see the store's reserved-prefix encoding. Every mutation stamps
timestamps and notifies ``on_change`` (normally
``SyncOrchestrator.request_sync``) so the change reaches the remotes.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import fields, replace
from typing import Any

from .exceptions import NotFoundError, ValidationError
from .id_utils import escape_id, unescape_id
from .local.store import LocalDocumentStore
from .models import DEFAULT_TAG_COLOR, Bookmark, Collection, Document, Tag, utc_now
from .remote.url_check import UrlChecker, favicon_url

logger = logging.getLogger(__name__)

# Fields a caller may never change through update_*.
_PROTECTED_FIELDS = frozenset({"id", "revision", "created_at", "updated_at", "extra"})


def _public(doc: Document) -> Any:
    return replace(doc, id=unescape_id(doc.id))


def _new_id() -> str:
    return uuid.uuid4().hex


class BookmarkLibrary:
    """Bookmarks and tags over the two local stores.

    Example:
        >>> library = BookmarkLibrary(stores, on_change=orchestrator.request_sync)
        >>> tag = await library.add_tag("Work")
        >>> await library.add_bookmark("https://example.com", "Example", tag_ids=[tag.id])
    """

    def __init__(
        self,
        stores: Mapping[Collection, LocalDocumentStore],
        on_change: Callable[[], Any] | None = None,
        url_checker: UrlChecker | None = None,
    ):
        self.bookmarks = stores[Collection.BOOKMARKS]
        self.tags = stores[Collection.TAGS]
        self.on_change = on_change
        self.url_checker = url_checker

    def _changed(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change()
        except Exception:
            logger.exception("on_change hook failed")

    # =========================================================================
    # Bookmarks
    # =========================================================================

    async def add_bookmark(
        self,
        url: str,
        title: str = "",
        description: str = "",
        tag_ids: list[str] | None = None,
        bookmark_id: str | None = None,
        **extra_fields: Any,
    ) -> Bookmark:
        """Create a bookmark.

        The favicon defaults to the site's /favicon.ico. With a ``url_checker``
        the link is checked and ``is_valid`` recorded.

        Raises:
            ValidationError: If the url is empty, or a bookmark with this id exists
        """
        if not url or not url.strip():
            raise ValidationError("url", "must not be empty")
        url = url.strip()
        extra_fields.setdefault("favicon", favicon_url(url))
        if self.url_checker is not None and "is_valid" not in extra_fields:
            extra_fields["is_valid"] = await self.url_checker.check(url)
        now = utc_now()
        bookmark = Bookmark(
            id=escape_id(bookmark_id or _new_id()),
            url=url,
            title=title or url,
            description=description,
            tag_ids=list(dict.fromkeys(tag_ids or [])),
            created_at=now,
            updated_at=now,
            **extra_fields,
        )
        saved = await self._insert(self.bookmarks, bookmark)
        self._changed()
        return _public(saved)

    async def get_bookmark(self, bookmark_id: str) -> Bookmark:
        return _public(await self.bookmarks.get(escape_id(bookmark_id)))

    async def list_bookmarks(self) -> list[Bookmark]:
        """All bookmarks, most recently created first."""
        docs = [_public(doc) for doc in await self.bookmarks.get_all()]
        docs.sort(key=lambda d: d.created_at.timestamp() if d.created_at else 0.0, reverse=True)
        return docs

    async def update_bookmark(self, bookmark_id: str, **changes: Any) -> Bookmark:
        """Change fields of a bookmark.

        Raises:
            NotFoundError: If the bookmark does not exist
            ValidationError: On unknown or protected fields
            ConflictError: If the bookmark changed underneath us
        """
        current = await self.bookmarks.get(escape_id(bookmark_id))
        _check_changes(Bookmark, changes)
        if "tag_ids" in changes:
            changes["tag_ids"] = list(dict.fromkeys(changes["tag_ids"] or []))
        if changes.get("url", current.url) != current.url:
            await self._url_changed(current, changes)
        saved = await self.bookmarks.put(replace(current, updated_at=utc_now(), **changes))
        self._changed()
        return _public(saved)

    async def visit_bookmark(self, bookmark_id: str) -> Bookmark:
        """Record a visit: bump the counter and the last-visited time."""
        current = await self.bookmarks.get(escape_id(bookmark_id))
        now = utc_now()
        saved = await self.bookmarks.put(
            replace(
                current,
                visit_count=current.visit_count + 1,
                last_visited=now,
                updated_at=now,
            )
        )
        self._changed()
        return _public(saved)

    async def check_bookmark(self, bookmark_id: str) -> Bookmark:
        """Check the bookmark's link and record the outcome in ``is_valid``.

        Raises:
            NotFoundError: If the bookmark does not exist
            ValueError: If the library has no url_checker
        """
        if self.url_checker is None:
            raise ValueError("no url_checker configured")
        current = await self.bookmarks.get(escape_id(bookmark_id))
        is_valid = await self.url_checker.check(current.url)
        if is_valid == current.is_valid:
            return _public(current)
        saved = await self.bookmarks.put(replace(current, is_valid=is_valid, updated_at=utc_now()))
        self._changed()
        return _public(saved)

    async def _url_changed(self, current: Bookmark, changes: dict[str, Any]) -> None:
        new_url = changes["url"]
        if "favicon" not in changes and current.favicon == favicon_url(current.url):
            changes["favicon"] = favicon_url(new_url)
        if self.url_checker is not None and "is_valid" not in changes:
            changes["is_valid"] = await self.url_checker.check(new_url)

    async def delete_bookmark(self, bookmark_id: str) -> None:
        await self.bookmarks.remove(escape_id(bookmark_id))
        self._changed()

    async def search_bookmarks(self, query: str = "", tag_id: str | None = None) -> list[Bookmark]:
        """Case-insensitive search over url, title and description."""
        needle = query.strip().lower()
        results = []
        for bookmark in await self.list_bookmarks():
            if tag_id is not None and tag_id not in bookmark.tag_ids:
                continue
            if needle and not any(
                needle in text.lower()
                for text in (bookmark.url, bookmark.title, bookmark.description)
            ):
                continue
            results.append(bookmark)
        return results

    # =========================================================================
    # Tags
    # =========================================================================

    async def add_tag(
        self,
        name: str,
        color: str = DEFAULT_TAG_COLOR,
        tag_id: str | None = None,
    ) -> Tag:
        if not name or not name.strip():
            raise ValidationError("name", "must not be empty")
        now = utc_now()
        tag = Tag(
            id=escape_id(tag_id or _new_id()),
            name=name.strip(),
            color=color,
            created_at=now,
            updated_at=now,
        )
        saved = await self._insert(self.tags, tag)
        self._changed()
        return _public(saved)

    async def list_tags(self) -> list[Tag]:
        """All tags, by name."""
        tags = [_public(doc) for doc in await self.tags.get_all()]
        return sorted(tags, key=lambda t: t.name.lower())

    async def update_tag(self, tag_id: str, **changes: Any) -> Tag:
        current = await self.tags.get(escape_id(tag_id))
        _check_changes(Tag, changes)
        saved = await self.tags.put(replace(current, updated_at=utc_now(), **changes))
        self._changed()
        return _public(saved)

    async def delete_tag(self, tag_id: str) -> None:
        """Delete a tag and remove it from every bookmark that uses it."""
        await self.tags.remove(escape_id(tag_id))
        now = utc_now()
        for bookmark in await self.bookmarks.get_all():
            if tag_id in bookmark.tag_ids:
                await self.bookmarks.put(
                    replace(
                        bookmark,
                        tag_ids=[t for t in bookmark.tag_ids if t != tag_id],
                        updated_at=now,
                    )
                )
        self._changed()

    async def tags_for(self, bookmark: Bookmark) -> list[Tag]:
        """Tags of a bookmark. Ids without a tag are ignored."""
        tags = []
        for tag_id in bookmark.tag_ids:
            try:
                tags.append(_public(await self.tags.get(escape_id(tag_id))))
            except NotFoundError:
                continue
        return tags

    async def _insert(self, store: LocalDocumentStore, doc: Document) -> Document:
        try:
            await store.get(doc.id)
        except NotFoundError:
            return await store.put(doc)
        raise ValidationError("id", "already exists", unescape_id(doc.id))


def _check_changes(document_type: type[Document], changes: Mapping[str, Any]) -> None:
    allowed = {f.name for f in fields(document_type)} - _PROTECTED_FIELDS
    for key in changes:
        if key not in allowed:
            raise ValidationError(key, f"cannot be changed on {document_type.__name__}")
