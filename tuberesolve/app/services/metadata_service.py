from __future__ import annotations

import logging
from typing import cast

from tuberesolve.app.models.contracts import (
    CancellationToken,
    ChannelDetails,
    InvalidIdentifierError,
    Operation,
    PaginationCursor,
    ResultPage,
    SearchResultItem,
    VideoMetadata,
)
from tuberesolve.app.services.provider_registry import OperationParams
from tuberesolve.app.services.request_dispatcher import RequestDispatcher
from tuberesolve.app.services.youtube_urls import is_valid_channel_id, is_valid_video_id

LOGGER = logging.getLogger("tuberesolve.metadata")

EXPLORE_FEED_QUERY = (
    '(vlog|gaming|tech|challenge|commentary|analysis) -vevo -lyrics -"official music video"'
)
CATEGORY_QUERIES: dict[str, str] = {
    "home": EXPLORE_FEED_QUERY,
    "trending": "trending today",
    "gaming": "gaming",
    "tech": "tech review",
    "music": "official music video",
}


class MetadataService:
    """
    Public entry point for video, channel and search lookups.

    Every lookup degrades instead of raising: an exhausted provider chain
    yields empty metadata, `None` channel details, or an empty result page.
    Only malformed arguments raise (`InvalidIdentifierError`).
    """

    def __init__(self, *, dispatcher: RequestDispatcher) -> None:
        self._dispatcher = dispatcher

    def fetch_video_metadata(
        self,
        video_id: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> VideoMetadata:
        normalized_id = video_id.strip()
        if not is_valid_video_id(normalized_id):
            raise InvalidIdentifierError(f"Invalid video id: {video_id!r}")
        outcome = self._dispatcher.dispatch(
            Operation.FETCH_VIDEO_METADATA,
            OperationParams(subject=normalized_id),
            cancel_token=cancel_token,
        )
        return cast(VideoMetadata, outcome.value)

    def fetch_channel_details(
        self,
        channel_id: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ChannelDetails | None:
        normalized_id = _require_channel_id(channel_id)
        outcome = self._dispatcher.dispatch(
            Operation.FETCH_CHANNEL_DETAILS,
            OperationParams(subject=normalized_id),
            cancel_token=cancel_token,
        )
        if outcome.exhausted:
            return None
        return cast(ChannelDetails, outcome.value)

    def search(
        self,
        query: str,
        category_hint: str | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> list[SearchResultItem]:
        page = self.search_page(query, category_hint, cancel_token=cancel_token)
        return list(page.items)

    def search_page(
        self,
        query: str,
        category_hint: str | None = None,
        cursor: PaginationCursor | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ResultPage:
        effective_query = build_search_query(query, category_hint)
        outcome = self._dispatcher.dispatch(
            Operation.SEARCH,
            OperationParams(subject=effective_query),
            cursor,
            cancel_token=cancel_token,
        )
        return ResultPage(
            items=cast(tuple[SearchResultItem, ...], outcome.value),
            next_cursor=outcome.cursor,
        )

    def fetch_explore_feed(
        self,
        category: str = "home",
        *,
        cancel_token: CancellationToken | None = None,
    ) -> list[SearchResultItem]:
        return self.search("", category, cancel_token=cancel_token)

    def list_channel_videos(
        self,
        channel_id: str,
        cursor: PaginationCursor | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ResultPage:
        normalized_id = _require_channel_id(channel_id)
        outcome = self._dispatcher.dispatch(
            Operation.LIST_CHANNEL_VIDEOS,
            OperationParams(subject=normalized_id),
            cursor,
            cancel_token=cancel_token,
        )
        return ResultPage(
            items=cast(tuple[SearchResultItem, ...], outcome.value),
            next_cursor=outcome.cursor,
        )


def build_search_query(query: str, category_hint: str | None) -> str:
    normalized_query = " ".join(query.split())
    category_query: str | None = None
    if category_hint is not None:
        category_query = CATEGORY_QUERIES.get(category_hint.strip().lower())
        if category_query is None:
            LOGGER.debug("ignoring unknown category hint category=%s", category_hint)

    if normalized_query and category_query is not None:
        return f"{normalized_query} {category_query}"
    if normalized_query:
        return normalized_query
    if category_query is not None:
        return category_query
    raise InvalidIdentifierError("Search query must not be empty.")


def _require_channel_id(channel_id: str) -> str:
    normalized_id = channel_id.strip()
    if not normalized_id or not is_valid_channel_id(normalized_id):
        raise InvalidIdentifierError(f"Invalid channel id: {channel_id!r}")
    return normalized_id
