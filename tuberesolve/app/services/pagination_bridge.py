from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Literal, TypeVar

from tuberesolve.app.models.contracts import OpaqueToken, PaginationCursor, SyntheticPage

LOGGER = logging.getLogger("tuberesolve.pagination")

PagingMode = Literal["official", "synthetic", "none"]

T = TypeVar("T")


class PaginationBridge:
    """
    Keeps opaque continuation tokens and synthetic page counters apart.

    Every cursor is tagged with the provider that issued it. A cursor offered
    to any other provider is dropped and that provider starts from its first
    page; the two cursor kinds are never translated into each other.
    """

    def cursor_for_attempt(
        self,
        cursor: PaginationCursor | None,
        *,
        provider_id: str,
        paging_mode: PagingMode,
    ) -> PaginationCursor | None:
        if cursor is None:
            return None
        if cursor.provider_id != provider_id:
            LOGGER.debug(
                "discarding cursor from another provider issued_by=%s provider=%s",
                cursor.provider_id,
                provider_id,
            )
            return None
        if paging_mode == "official" and isinstance(cursor, OpaqueToken):
            return cursor
        if paging_mode == "synthetic" and isinstance(cursor, SyntheticPage):
            return cursor
        LOGGER.debug(
            "discarding cursor of unexpected kind provider=%s kind=%s mode=%s",
            provider_id,
            type(cursor).__name__,
            paging_mode,
        )
        return None

    def paginate(
        self,
        items: Sequence[T],
        current: PaginationCursor | None,
        *,
        provider_id: str,
        paging_mode: PagingMode,
        page_size: int | None = None,
        continuation_token: str | None = None,
    ) -> tuple[tuple[T, ...], PaginationCursor | None]:
        """
        Cut the served window out of one provider page and issue the next cursor.

        `items` is everything the provider returned for the page it was asked
        for. Official paging passes items through and wraps the provider's
        continuation token. Synthetic paging serves `page_size` items starting
        at the cursor's offset, and only moves on to the next mirror page once
        the current one is used up.
        """
        applicable = self.cursor_for_attempt(
            current,
            provider_id=provider_id,
            paging_mode=paging_mode,
        )
        if paging_mode == "official":
            next_cursor: PaginationCursor | None = None
            if continuation_token is not None:
                next_cursor = OpaqueToken(token=continuation_token, provider_id=provider_id)
            return tuple(items), next_cursor
        if paging_mode == "synthetic":
            # Mirrors report no totals; an empty page is the only end signal.
            if not items:
                return (), None
            page = applicable.page if isinstance(applicable, SyntheticPage) else 1
            offset = applicable.offset if isinstance(applicable, SyntheticPage) else 0
            end = len(items) if page_size is None else offset + max(1, page_size)
            window = tuple(items[offset:end])
            if end < len(items):
                return window, SyntheticPage(page=page, provider_id=provider_id, offset=end)
            return window, SyntheticPage(page=page + 1, provider_id=provider_id)
        return tuple(items), None


def page_number(cursor: PaginationCursor | None) -> int:
    if isinstance(cursor, SyntheticPage):
        return cursor.page
    return 1


def page_token(cursor: PaginationCursor | None) -> str | None:
    if isinstance(cursor, OpaqueToken):
        return cursor.token
    return None


def format_cursor(cursor: PaginationCursor) -> str:
    if isinstance(cursor, OpaqueToken):
        return f"token|{cursor.provider_id}|{cursor.token}"
    if cursor.offset:
        return f"page|{cursor.provider_id}|{cursor.page}@{cursor.offset}"
    return f"page|{cursor.provider_id}|{cursor.page}"


def parse_cursor(raw_value: str) -> PaginationCursor:
    parts = raw_value.strip().split("|", 2)
    if len(parts) != 3 or not parts[1] or not parts[2]:
        raise ValueError(f"Malformed cursor: {raw_value!r}")
    kind, provider_id, value = parts
    if kind == "token":
        return OpaqueToken(token=value, provider_id=provider_id)
    if kind == "page":
        raw_page, _, raw_offset = value.partition("@")
        try:
            page = int(raw_page)
            offset = int(raw_offset) if raw_offset else 0
        except ValueError as exc:
            raise ValueError(f"Malformed cursor page: {value!r}") from exc
        return SyntheticPage(page=page, provider_id=provider_id, offset=offset)
    raise ValueError(f"Unknown cursor kind: {kind!r}")
