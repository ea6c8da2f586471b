from __future__ import annotations

import re

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
CHANNEL_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
_VIDEO_URL_PATTERN = re.compile(
    r"^.*(?:youtu\.be/|v/|u/\w/|embed/|watch\?v=|&v=|shorts/)([^#&?/]*).*"
)


def extract_video_id(url_or_id: str) -> str | None:
    candidate = url_or_id.strip()
    if VIDEO_ID_PATTERN.match(candidate):
        return candidate
    matched = _VIDEO_URL_PATTERN.match(candidate)
    if matched is None:
        return None
    video_id = matched.group(1)
    if VIDEO_ID_PATTERN.match(video_id):
        return video_id
    return None


def extract_channel_id(url_or_id: str) -> str | None:
    candidate = url_or_id.strip()
    if "/channel/" in candidate:
        candidate = candidate.split("/channel/", 1)[1].split("/")[0].split("?")[0]
    elif "/" in candidate:
        return None
    if candidate and CHANNEL_ID_PATTERN.match(candidate):
        return candidate
    return None


def is_valid_video_id(value: str) -> bool:
    return VIDEO_ID_PATTERN.match(value) is not None


def is_valid_channel_id(value: str) -> bool:
    return CHANNEL_ID_PATTERN.match(value) is not None


def thumbnail_url(video_id: str) -> str:
    return f"https://i.ytimg.com/vi/{video_id}/maxresdefault.jpg"
