from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, cast

from tuberesolve.app.models.contracts import (
    ChannelDetails,
    MalformedResponse,
    SearchItemKind,
    SearchResultItem,
    VideoMetadata,
)

THUMBNAIL_QUALITY_PREFERENCE: tuple[str, ...] = ("high", "medium", "default")
FALLBACK_VIDEO_THUMBNAIL = "https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"


@dataclass(frozen=True)
class NormalizedPayload:
    value: Any
    continuation_token: str | None = None


# Authoritative API (YouTube Data API v3).


def youtube_api_video_metadata(payload: Any) -> NormalizedPayload:
    snippet = _first_item_field(payload, "snippet")
    return NormalizedPayload(
        value=VideoMetadata(
            title=_as_str(snippet.get("title")),
            description=_as_str(snippet.get("description")),
            keywords=_string_tuple(snippet.get("tags")),
            channel_id=_as_str(snippet.get("channelId")),
            channel_title=_as_str(snippet.get("channelTitle")),
        ),
    )


def youtube_api_channel_details(payload: Any) -> NormalizedPayload:
    items = _require_items(payload)
    item = _as_dict(items[0])
    snippet = _as_dict(item.get("snippet"))
    if not snippet:
        raise MalformedResponse("channel item has no snippet")
    statistics = _as_dict(item.get("statistics"))
    return NormalizedPayload(
        value=ChannelDetails(
            title=_as_str(snippet.get("title")),
            description=_as_str(snippet.get("description")),
            custom_url=_as_str(snippet.get("customUrl")),
            subscriber_count=_as_str(statistics.get("subscriberCount")),
            video_count=_as_str(statistics.get("videoCount")),
            view_count=_as_str(statistics.get("viewCount")),
            thumbnail_url=pick_thumbnail(_as_dict(snippet.get("thumbnails"))),
        ),
    )


def youtube_api_search_items(payload: Any) -> NormalizedPayload:
    raw_items = _require_item_list(payload)
    items: list[SearchResultItem] = []
    for raw_item in raw_items:
        item = _as_dict(raw_item)
        identifier = _as_dict(item.get("id"))
        channel_id = _as_str(identifier.get("channelId"))
        video_id = _as_str(identifier.get("videoId"))
        # A video result also carries the owning channel in its snippet, never in `id`.
        kind: SearchItemKind
        if video_id is not None:
            kind, item_id = "video", video_id
        elif channel_id is not None:
            kind, item_id = "channel", channel_id
        else:
            continue
        snippet = _as_dict(item.get("snippet"))
        items.append(
            SearchResultItem(
                item_id=item_id,
                kind=kind,
                title=_as_str(snippet.get("title")) or "",
                thumbnail_url=pick_thumbnail(_as_dict(snippet.get("thumbnails"))),
                channel_title=_as_str(snippet.get("channelTitle")),
                published_at=_as_str(snippet.get("publishedAt")),
                description=_as_str(snippet.get("description")),
            )
        )
    if raw_items and not items:
        raise MalformedResponse("no search item carried a video or channel id")
    return NormalizedPayload(
        value=tuple(items),
        continuation_token=_as_str(_as_dict(payload).get("nextPageToken")),
    )


def youtube_api_channel_videos(payload: Any) -> NormalizedPayload:
    normalized = youtube_api_search_items(payload)
    videos = tuple(item for item in normalized.value if item.kind == "video")
    return NormalizedPayload(
        value=videos,
        continuation_token=normalized.continuation_token,
    )


# Mirror API (Invidious).


def invidious_video_metadata(payload: Any) -> NormalizedPayload:
    data = _require_mirror_object(payload)
    title = _as_str(data.get("title"))
    if title is None:
        raise MalformedResponse("mirror video payload has no title")
    return NormalizedPayload(
        value=VideoMetadata(
            title=title,
            description=_as_str(data.get("description")),
            keywords=_string_tuple(data.get("keywords")),
            channel_id=_as_str(data.get("authorId")),
            channel_title=_as_str(data.get("author")),
        ),
    )


def invidious_channel_details(payload: Any) -> NormalizedPayload:
    data = _require_mirror_object(payload)
    title = _as_str(data.get("author"))
    if title is None:
        raise MalformedResponse("mirror channel payload has no author")
    return NormalizedPayload(
        value=ChannelDetails(
            title=title,
            description=_as_str(data.get("description")),
            custom_url=None,
            subscriber_count=_as_str(data.get("subCount")),
            video_count=None,
            view_count=_as_str(data.get("totalViews")),
            thumbnail_url=_largest_thumbnail(data.get("authorThumbnails")),
        ),
    )


def invidious_search_items(payload: Any) -> NormalizedPayload:
    if isinstance(payload, dict) and "error" in payload:
        raise MalformedResponse(f"mirror reported error: {_as_str(payload.get('error'))}")
    if not isinstance(payload, list):
        raise MalformedResponse("mirror search payload is not a list")
    items: list[SearchResultItem] = []
    for raw_item in cast(list[Any], payload):
        item = _as_dict(raw_item)
        item_type = _as_str(item.get("type"))
        if item_type == "channel":
            parsed = _invidious_channel_item(item)
        elif item_type in (None, "video", "shortVideo"):
            parsed = _invidious_video_item(item)
        else:
            continue
        if parsed is not None:
            items.append(parsed)
    return NormalizedPayload(value=tuple(items))


def invidious_channel_videos(payload: Any) -> NormalizedPayload:
    if isinstance(payload, list):
        raw_videos = cast(list[Any], payload)
    else:
        data = _require_mirror_object(payload)
        videos_field = data.get("videos")
        if not isinstance(videos_field, list):
            raise MalformedResponse("mirror channel videos payload has no video list")
        raw_videos = cast(list[Any], videos_field)
    items: list[SearchResultItem] = []
    for raw_item in raw_videos:
        parsed = _invidious_video_item(_as_dict(raw_item))
        if parsed is not None:
            items.append(parsed)
    return NormalizedPayload(value=tuple(items))


def _invidious_video_item(item: dict[str, Any]) -> SearchResultItem | None:
    video_id = _as_str(item.get("videoId"))
    if video_id is None:
        return None
    thumbnail = _listed_thumbnail(item.get("videoThumbnails"))
    return SearchResultItem(
        item_id=video_id,
        kind="video",
        title=_as_str(item.get("title")) or "",
        thumbnail_url=thumbnail or FALLBACK_VIDEO_THUMBNAIL.format(video_id=video_id),
        channel_title=_as_str(item.get("author")),
        published_at=_epoch_to_iso(item.get("published")),
        description=_as_str(item.get("description")),
    )


def _invidious_channel_item(item: dict[str, Any]) -> SearchResultItem | None:
    channel_id = _as_str(item.get("authorId"))
    if channel_id is None:
        return None
    author = _as_str(item.get("author"))
    return SearchResultItem(
        item_id=channel_id,
        kind="channel",
        title=_as_str(item.get("title")) or author or "",
        thumbnail_url=_largest_thumbnail(item.get("authorThumbnails")),
        channel_title=author,
        published_at=None,
        description=_as_str(item.get("description")),
    )


# Degraded fallback (oEmbed through a proxy).


def oembed_video_metadata(payload: Any) -> NormalizedPayload:
    data = _as_dict(payload)
    title = _as_str(data.get("title"))
    if title is None:
        raise MalformedResponse("oembed payload has no title")
    return NormalizedPayload(
        value=VideoMetadata(
            title=title,
            description=None,
            keywords=(),
            channel_id=None,
            channel_title=_as_str(data.get("author_name")),
        ),
    )


# Shared helpers.


def pick_thumbnail(thumbnails: dict[str, Any]) -> str | None:
    for quality in THUMBNAIL_QUALITY_PREFERENCE:
        url = _as_str(_as_dict(thumbnails.get(quality)).get("url"))
        if url is not None:
            return _absolute_url(url)
    return None


def _listed_thumbnail(raw_value: object) -> str | None:
    entries = [_as_dict(entry) for entry in _as_list(raw_value)]
    by_quality: dict[str, str] = {}
    for entry in entries:
        quality = _as_str(entry.get("quality"))
        url = _as_str(entry.get("url"))
        if quality is not None and url is not None and quality not in by_quality:
            by_quality[quality] = url
    for quality in THUMBNAIL_QUALITY_PREFERENCE:
        if quality in by_quality:
            return _absolute_url(by_quality[quality])
    for entry in entries:
        url = _as_str(entry.get("url"))
        if url is not None:
            return _absolute_url(url)
    return None


def _largest_thumbnail(raw_value: object) -> str | None:
    best_url: str | None = None
    best_width = -1
    for entry in (_as_dict(raw) for raw in _as_list(raw_value)):
        url = _as_str(entry.get("url"))
        if url is None:
            continue
        width = entry.get("width")
        width_value = width if isinstance(width, int) else 0
        if width_value > best_width:
            best_width = width_value
            best_url = url
    if best_url is None:
        return None
    return _absolute_url(best_url)


def _absolute_url(url: str) -> str:
    if url.startswith("//"):
        return f"https:{url}"
    return url


def _epoch_to_iso(raw_value: object) -> str | None:
    if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
        return None
    if raw_value <= 0:
        return None
    try:
        published = datetime.fromtimestamp(raw_value, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None
    return published.isoformat().replace("+00:00", "Z")


def _first_item_field(payload: Any, field_name: str) -> dict[str, Any]:
    items = _require_items(payload)
    value = _as_dict(_as_dict(items[0]).get(field_name))
    if not value:
        raise MalformedResponse(f"first item has no {field_name}")
    return value


def _require_items(payload: Any) -> list[Any]:
    items = _require_item_list(payload)
    if not items:
        raise MalformedResponse("payload has no items")
    return items


def _require_item_list(payload: Any) -> list[Any]:
    if not isinstance(payload, dict):
        raise MalformedResponse("payload is not a JSON object")
    raw_items = cast(dict[str, Any], payload).get("items")
    if not isinstance(raw_items, list):
        raise MalformedResponse("payload has no item list")
    return cast(list[Any], raw_items)


def _require_mirror_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise MalformedResponse("mirror payload is not a JSON object")
    data = _as_dict(payload)
    if "error" in data:
        raise MalformedResponse(f"mirror reported error: {_as_str(data.get('error'))}")
    return data


def _string_tuple(raw_value: object) -> tuple[str, ...]:
    values: list[str] = []
    for raw_item in _as_list(raw_value):
        if isinstance(raw_item, str) and raw_item.strip():
            values.append(raw_item.strip())
    return tuple(values)


def _as_str(value: object) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
        return None
    if isinstance(value, int | float):
        return str(value)
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return list(cast(list[Any], value))
    return []
