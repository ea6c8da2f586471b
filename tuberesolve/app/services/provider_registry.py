from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal
from urllib.parse import quote, urlencode, urlparse

from tuberesolve.app.models.contracts import Credential, Operation, PaginationCursor
from tuberesolve.app.services import response_normalizer as normalizer
from tuberesolve.app.services.pagination_bridge import PagingMode, page_number, page_token
from tuberesolve.app.services.response_normalizer import NormalizedPayload

ProviderKind = Literal["authoritative", "mirror", "degraded"]

DEFAULT_YOUTUBE_API_BASE_URL = "https://www.googleapis.com/youtube/v3"
DEFAULT_MIRROR_BASE_URLS: tuple[str, ...] = (
    "https://invidious.projectsegfau.lt",
    "https://inv.tux.pizza",
    "https://invidious.jing.rocks",
    "https://vid.ufficio.eu.org",
    "https://invidious.nerdvpn.de",
)
DEFAULT_OEMBED_PROXY_URL = "https://api.codetabs.com/v1/proxy"
YOUTUBE_PROVIDER_ID = "youtube_data_api"
OEMBED_PROVIDER_ID = "oembed_proxy"


@dataclass(frozen=True)
class OperationParams:
    subject: str


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


RequestBuilder = Callable[[OperationParams, Credential, PaginationCursor | None], ProviderRequest]
Normalizer = Callable[[Any], NormalizedPayload]


@dataclass(frozen=True)
class OperationBinding:
    build_request: RequestBuilder
    normalize: Normalizer
    paging_mode: PagingMode = "none"
    # Items served per result page when the provider's own pages run longer.
    page_size: int | None = None


@dataclass(frozen=True)
class ProviderDescriptor:
    provider_id: str
    kind: ProviderKind
    priority: int
    base_url: str
    operations: Mapping[Operation, OperationBinding]
    supports_official_pagination: bool = False
    supports_statistics: bool = False
    requires_credential: bool = False

    def __post_init__(self) -> None:
        official = any(binding.paging_mode == "official" for binding in self.operations.values())
        if official != self.supports_official_pagination:
            raise ValueError(
                f"{self.provider_id}: supports_official_pagination disagrees with"
                " its operation paging modes"
            )
        if self.supports_statistics and Operation.FETCH_CHANNEL_DETAILS not in self.operations:
            raise ValueError(
                f"{self.provider_id}: supports_statistics requires a channel details operation"
            )

    def binding_for(self, operation: Operation) -> OperationBinding | None:
        return self.operations.get(operation)


class ProviderRegistry:
    """Priority-ordered, read-only set of providers shared by every dispatch."""

    def __init__(self, providers: Iterable[ProviderDescriptor]) -> None:
        ordered = sorted(providers, key=lambda provider: provider.priority)
        seen: set[str] = set()
        for provider in ordered:
            if provider.provider_id in seen:
                raise ValueError(f"Duplicate provider id: {provider.provider_id}")
            seen.add(provider.provider_id)
        self._providers: tuple[ProviderDescriptor, ...] = tuple(ordered)

    def __iter__(self) -> Iterator[ProviderDescriptor]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def providers(self) -> tuple[ProviderDescriptor, ...]:
        return self._providers

    def bindings_for(
        self, operation: Operation
    ) -> tuple[tuple[ProviderDescriptor, OperationBinding], ...]:
        """Providers able to serve `operation`, in priority order, with their bindings."""
        pairs: list[tuple[ProviderDescriptor, OperationBinding]] = []
        for provider in self._providers:
            binding = provider.binding_for(operation)
            if binding is not None:
                pairs.append((provider, binding))
        return tuple(pairs)


def build_provider_registry(
    *,
    youtube_api_base_url: str = DEFAULT_YOUTUBE_API_BASE_URL,
    mirror_base_urls: Iterable[str] = DEFAULT_MIRROR_BASE_URLS,
    oembed_proxy_url: str | None = DEFAULT_OEMBED_PROXY_URL,
    search_max_results: int = 16,
    channel_videos_max_results: int = 15,
) -> ProviderRegistry:
    providers: list[ProviderDescriptor] = [
        youtube_api_provider(
            youtube_api_base_url,
            search_max_results=search_max_results,
            channel_videos_max_results=channel_videos_max_results,
        )
    ]
    for index, base_url in enumerate(mirror_base_urls):
        providers.append(
            invidious_provider(
                base_url,
                priority=10 + index,
                search_max_results=search_max_results,
                channel_videos_max_results=channel_videos_max_results,
            )
        )
    if oembed_proxy_url is not None:
        providers.append(oembed_provider(oembed_proxy_url, priority=1_000))
    return ProviderRegistry(providers)


def youtube_api_provider(
    base_url: str,
    *,
    priority: int = 0,
    search_max_results: int = 16,
    channel_videos_max_results: int = 15,
) -> ProviderDescriptor:
    root = base_url.rstrip("/")

    def _url(resource: str, params: dict[str, str], credential: Credential) -> str:
        return f"{root}/{resource}?{urlencode({**params, 'key': credential.value})}"

    def _video(
        params: OperationParams,
        credential: Credential,
        _cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        return ProviderRequest(
            url=_url("videos", {"part": "snippet", "id": params.subject}, credential),
        )

    def _channel(
        params: OperationParams,
        credential: Credential,
        _cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        return ProviderRequest(
            url=_url(
                "channels",
                {"part": "snippet,statistics", "id": params.subject},
                credential,
            ),
        )

    def _search(
        params: OperationParams,
        credential: Credential,
        cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        query = {
            "part": "snippet",
            "type": "video,channel",
            "q": params.subject,
            "maxResults": str(search_max_results),
        }
        token = page_token(cursor)
        if token is not None:
            query["pageToken"] = token
        return ProviderRequest(url=_url("search", query, credential))

    def _channel_videos(
        params: OperationParams,
        credential: Credential,
        cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        query = {
            "part": "snippet",
            "channelId": params.subject,
            "order": "date",
            "type": "video",
            "maxResults": str(channel_videos_max_results),
        }
        token = page_token(cursor)
        if token is not None:
            query["pageToken"] = token
        return ProviderRequest(url=_url("search", query, credential))

    return ProviderDescriptor(
        provider_id=YOUTUBE_PROVIDER_ID,
        kind="authoritative",
        priority=priority,
        base_url=root,
        operations=MappingProxyType(
            {
                Operation.FETCH_VIDEO_METADATA: OperationBinding(
                    _video, normalizer.youtube_api_video_metadata
                ),
                Operation.FETCH_CHANNEL_DETAILS: OperationBinding(
                    _channel, normalizer.youtube_api_channel_details
                ),
                Operation.SEARCH: OperationBinding(
                    _search, normalizer.youtube_api_search_items, paging_mode="official"
                ),
                Operation.LIST_CHANNEL_VIDEOS: OperationBinding(
                    _channel_videos,
                    normalizer.youtube_api_channel_videos,
                    paging_mode="official",
                ),
            }
        ),
        supports_official_pagination=True,
        supports_statistics=True,
        requires_credential=True,
    )


def invidious_provider(
    base_url: str,
    *,
    priority: int,
    search_max_results: int = 16,
    channel_videos_max_results: int = 15,
) -> ProviderDescriptor:
    root = base_url.rstrip("/")

    def _video(
        params: OperationParams,
        _credential: Credential,
        _cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        return ProviderRequest(url=f"{root}/api/v1/videos/{quote(params.subject, safe='')}")

    def _channel(
        params: OperationParams,
        _credential: Credential,
        _cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        return ProviderRequest(url=f"{root}/api/v1/channels/{quote(params.subject, safe='')}")

    def _search(
        params: OperationParams,
        _credential: Credential,
        cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        query = {"q": params.subject, "type": "all", "page": str(page_number(cursor))}
        return ProviderRequest(url=f"{root}/api/v1/search?{urlencode(query)}")

    def _channel_videos(
        params: OperationParams,
        _credential: Credential,
        cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        channel = quote(params.subject, safe="")
        query = urlencode({"page": str(page_number(cursor))})
        return ProviderRequest(url=f"{root}/api/v1/channels/{channel}/videos?{query}")

    return ProviderDescriptor(
        provider_id=f"invidious:{urlparse(root).netloc or root}",
        kind="mirror",
        priority=priority,
        base_url=root,
        operations=MappingProxyType(
            {
                Operation.FETCH_VIDEO_METADATA: OperationBinding(
                    _video, normalizer.invidious_video_metadata
                ),
                Operation.FETCH_CHANNEL_DETAILS: OperationBinding(
                    _channel, normalizer.invidious_channel_details
                ),
                Operation.SEARCH: OperationBinding(
                    _search,
                    normalizer.invidious_search_items,
                    paging_mode="synthetic",
                    page_size=search_max_results,
                ),
                Operation.LIST_CHANNEL_VIDEOS: OperationBinding(
                    _channel_videos,
                    normalizer.invidious_channel_videos,
                    paging_mode="synthetic",
                    page_size=channel_videos_max_results,
                ),
            }
        ),
        supports_official_pagination=False,
        supports_statistics=True,
        requires_credential=False,
    )


def oembed_provider(proxy_url: str, *, priority: int) -> ProviderDescriptor:
    root = proxy_url.rstrip("/")

    def _video(
        params: OperationParams,
        _credential: Credential,
        _cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        watch_url = f"http://www.youtube.com/watch?v={params.subject}"
        oembed_query = urlencode({"url": watch_url, "format": "json"})
        oembed_url = f"https://www.youtube.com/oembed?{oembed_query}"
        return ProviderRequest(url=f"{root}?{urlencode({'quest': oembed_url})}")

    return ProviderDescriptor(
        provider_id=OEMBED_PROVIDER_ID,
        kind="degraded",
        priority=priority,
        base_url=root,
        operations=MappingProxyType(
            {
                Operation.FETCH_VIDEO_METADATA: OperationBinding(
                    _video, normalizer.oembed_video_metadata
                ),
            }
        ),
    )
