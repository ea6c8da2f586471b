from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from threading import Event
from typing import Any, Literal

SearchItemKind = Literal["video", "channel"]
CredentialSource = Literal["override", "default", "none"]


class Operation(StrEnum):
    FETCH_VIDEO_METADATA = "fetch_video_metadata"
    FETCH_CHANNEL_DETAILS = "fetch_channel_details"
    SEARCH = "search"
    LIST_CHANNEL_VIDEOS = "list_channel_videos"


@dataclass(frozen=True)
class VideoMetadata:
    title: str | None = None
    description: str | None = None
    keywords: tuple[str, ...] | None = None
    channel_id: str | None = None
    channel_title: str | None = None

    @classmethod
    def empty(cls) -> VideoMetadata:
        return cls()

    @property
    def is_empty(self) -> bool:
        return self == VideoMetadata.empty()

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "keywords": list(self.keywords) if self.keywords is not None else None,
            "channel_id": self.channel_id,
            "channel_title": self.channel_title,
        }


@dataclass(frozen=True)
class ChannelDetails:
    title: str | None = None
    description: str | None = None
    custom_url: str | None = None
    subscriber_count: str | None = None
    video_count: str | None = None
    view_count: str | None = None
    thumbnail_url: str | None = None

    @classmethod
    def empty(cls) -> ChannelDetails:
        return cls()

    @property
    def is_empty(self) -> bool:
        return self == ChannelDetails.empty()

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "custom_url": self.custom_url,
            "subscriber_count": self.subscriber_count,
            "video_count": self.video_count,
            "view_count": self.view_count,
            "thumbnail_url": self.thumbnail_url,
        }


@dataclass(frozen=True)
class SearchResultItem:
    item_id: str
    kind: SearchItemKind
    title: str
    thumbnail_url: str | None
    channel_title: str | None
    published_at: str | None = None
    description: str | None = None
    is_sensitive: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.item_id,
            "type": self.kind,
            "title": self.title,
            "thumbnail": self.thumbnail_url,
            "channel_title": self.channel_title,
            "published_at": self.published_at,
            "description": self.description,
            "is_sensitive": self.is_sensitive,
        }


@dataclass(frozen=True)
class OpaqueToken:
    """Continuation token issued by the authoritative provider."""

    token: str
    provider_id: str


@dataclass(frozen=True)
class SyntheticPage:
    """
    Client-side position for mirrors that paginate by page number.

    `offset` is the index of the first item not yet served from mirror page
    `page`; mirror pages can be longer than the configured result size.
    """

    page: int
    provider_id: str
    offset: int = 0

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError("SyntheticPage.page must be >= 1.")
        if self.offset < 0:
            raise ValueError("SyntheticPage.offset must be >= 0.")


PaginationCursor = OpaqueToken | SyntheticPage


@dataclass(frozen=True)
class ResultPage:
    items: tuple[SearchResultItem, ...]
    next_cursor: PaginationCursor | None


@dataclass(frozen=True)
class Credential:
    value: str
    source: CredentialSource

    @classmethod
    def none(cls) -> Credential:
        return cls(value="", source="none")

    @property
    def is_empty(self) -> bool:
        return not self.value

    def masked(self) -> str:
        if self.is_empty:
            return "-"
        if len(self.value) <= 8:
            return "*" * len(self.value)
        return f"{self.value[:4]}...{self.value[-4:]}"

    def __repr__(self) -> str:
        return f"Credential(value={self.masked()!r}, source={self.source!r})"


@dataclass(frozen=True)
class AttemptRecord:
    provider_id: str
    reason: str
    detail: str | None
    elapsed_seconds: float


@dataclass(frozen=True)
class DispatchOutcome:
    value: Any
    cursor: PaginationCursor | None
    provider_id: str | None
    attempts: tuple[AttemptRecord, ...] = field(default_factory=tuple)

    @property
    def exhausted(self) -> bool:
        return self.provider_id is None


class CancellationToken:
    """Set by the caller to abandon an in-flight dispatch."""

    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ProviderAttemptError(Exception):
    reason = "provider_error"


class TransportFailure(ProviderAttemptError):
    reason = "transport_failure"


class ProviderTimeout(TransportFailure):
    reason = "timeout"


class UpstreamRejected(ProviderAttemptError):
    reason = "upstream_rejected"

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(ProviderAttemptError):
    reason = "malformed_response"


class InvalidIdentifierError(ValueError):
    pass


class ResolutionCancelledError(Exception):
    pass
