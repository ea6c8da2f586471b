from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest
from conftest import (
    API_BASE_URL,
    MIRROR_A,
    MIRROR_B,
    MIRROR_C,
    PROXY_URL,
    RoutingTransport,
    invidious_video_payload,
    invidious_videos_page,
    youtube_video_payload,
)

from tuberesolve.app.models.contracts import (
    CancellationToken,
    Credential,
    MalformedResponse,
    OpaqueToken,
    Operation,
    PaginationCursor,
    ResolutionCancelledError,
    SyntheticPage,
    TransportFailure,
    UpstreamRejected,
    VideoMetadata,
)
from tuberesolve.app.services import response_normalizer as normalizer
from tuberesolve.app.services.content_classifier import KeywordClassifier
from tuberesolve.app.services.credential_resolver import CredentialResolver
from tuberesolve.app.services.http_transport import JsonTransport
from tuberesolve.app.services.metadata_service import MetadataService
from tuberesolve.app.services.provider_registry import (
    OperationBinding,
    OperationParams,
    ProviderDescriptor,
    ProviderRegistry,
    ProviderRequest,
    build_provider_registry,
)
from tuberesolve.app.services.request_dispatcher import RequestDispatcher
from tuberesolve.app.telemetry import TelemetryClient

VIDEO_ID = "dQw4w9WgXcQ"
CHANNEL_ID = "UCuAXFkgsw1L7xaCfnd5JJOw"


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


class _SlowTransport:
    def __init__(self, inner: RoutingTransport, *, slow_prefix: str, delay_seconds: float) -> None:
        self._inner = inner
        self._slow_prefix = slow_prefix
        self._delay_seconds = delay_seconds

    def get_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        timeout_seconds: float,
    ) -> Any:
        if url.startswith(self._slow_prefix):
            time.sleep(self._delay_seconds)
        return self._inner.get_json(url, headers=headers, timeout_seconds=timeout_seconds)


def _build_dispatcher(
    transport: JsonTransport,
    *,
    api_key: str | None = "test-key",
    timeout_seconds: float = 2.0,
    telemetry: TelemetryClient | None = None,
) -> RequestDispatcher:
    return RequestDispatcher(
        registry=build_provider_registry(
            youtube_api_base_url=API_BASE_URL,
            mirror_base_urls=(MIRROR_A, MIRROR_B, MIRROR_C),
            oembed_proxy_url=PROXY_URL,
        ),
        credential_resolver=CredentialResolver(override=None, default=api_key),
        transport=transport,
        classifier=KeywordClassifier(("unsafe",)),
        attempt_timeout_seconds=timeout_seconds,
        telemetry=telemetry,
    )


def _all_failing_transport() -> RoutingTransport:
    return RoutingTransport(
        {
            API_BASE_URL: UpstreamRejected("quota exceeded", status_code=403),
            MIRROR_A: TransportFailure("connection refused"),
            MIRROR_B: MalformedResponse("payload has no title"),
            MIRROR_C: UpstreamRejected("bad gateway", status_code=502),
            PROXY_URL: TransportFailure("dns failure"),
        }
    )


def test_first_successful_provider_stops_fallthrough() -> None:
    transport = RoutingTransport(
        {
            API_BASE_URL: youtube_video_payload(),
            MIRROR_A: invidious_video_payload(),
            MIRROR_B: invidious_video_payload(),
            MIRROR_C: invidious_video_payload(),
        }
    )
    dispatcher = _build_dispatcher(transport)

    outcome = dispatcher.dispatch(
        Operation.FETCH_VIDEO_METADATA,
        OperationParams(subject=VIDEO_ID),
    )

    assert outcome.provider_id == "youtube_data_api"
    assert outcome.value.title == "Never Gonna Give You Up"
    assert len(transport.calls_to(API_BASE_URL)) == 1
    assert transport.calls_to(MIRROR_A) == []
    assert transport.calls_to(MIRROR_B) == []
    assert transport.calls_to(MIRROR_C) == []


def test_failures_fall_through_in_priority_order() -> None:
    transport = RoutingTransport(
        {
            API_BASE_URL: UpstreamRejected("quota exceeded", status_code=403),
            MIRROR_A: TransportFailure("connection reset"),
            MIRROR_B: invidious_video_payload(),
            MIRROR_C: invidious_video_payload(),
        }
    )
    dispatcher = _build_dispatcher(transport)

    outcome = dispatcher.dispatch(
        Operation.FETCH_VIDEO_METADATA,
        OperationParams(subject=VIDEO_ID),
    )

    assert outcome.provider_id == "invidious:mirror-b.test"
    assert transport.calls[0].startswith(API_BASE_URL)
    assert [call.split("/api/v1")[0] for call in transport.calls[1:]] == [MIRROR_A, MIRROR_B]
    assert transport.calls_to(MIRROR_C) == []
    assert [attempt.reason for attempt in outcome.attempts] == [
        "upstream_rejected",
        "transport_failure",
    ]


def test_exhaustion_returns_empty_metadata_instead_of_raising() -> None:
    transport = _all_failing_transport()
    service = MetadataService(dispatcher=_build_dispatcher(transport))

    metadata = service.fetch_video_metadata(VIDEO_ID)

    assert metadata == VideoMetadata(
        title=None,
        description=None,
        keywords=None,
        channel_id=None,
        channel_title=None,
    )
    assert len(transport.calls_to(PROXY_URL)) == 1
    assert service.search("x") == []
    assert service.fetch_channel_details(CHANNEL_ID) is None
    page = service.list_channel_videos(CHANNEL_ID)
    assert page.items == ()
    assert page.next_cursor is None


def test_exhaustion_reports_every_attempt() -> None:
    dispatcher = _build_dispatcher(_all_failing_transport())

    outcome = dispatcher.dispatch(Operation.SEARCH, OperationParams(subject="x"))

    assert outcome.exhausted is True
    assert outcome.cursor is None
    assert outcome.value == ()
    assert [attempt.provider_id for attempt in outcome.attempts] == [
        "youtube_data_api",
        "invidious:mirror-a.test",
        "invidious:mirror-b.test",
        "invidious:mirror-c.test",
    ]


def test_missing_credential_skips_authoritative_provider() -> None:
    transport = RoutingTransport(
        {
            API_BASE_URL: youtube_video_payload(),
            MIRROR_A: invidious_video_payload(),
        }
    )
    dispatcher = _build_dispatcher(transport, api_key=None)

    outcome = dispatcher.dispatch(
        Operation.FETCH_VIDEO_METADATA,
        OperationParams(subject=VIDEO_ID),
    )

    assert transport.calls_to(API_BASE_URL) == []
    assert outcome.provider_id == "invidious:mirror-a.test"
    assert outcome.attempts[0].reason == "credential_missing"


def test_credential_is_sent_as_query_parameter() -> None:
    transport = RoutingTransport({API_BASE_URL: youtube_video_payload()})
    dispatcher = _build_dispatcher(transport, api_key="secret-key")

    dispatcher.dispatch(Operation.FETCH_VIDEO_METADATA, OperationParams(subject=VIDEO_ID))

    assert "key=secret-key" in transport.calls[0]
    assert f"id={VIDEO_ID}" in transport.calls[0]


def test_slow_provider_times_out_and_next_provider_answers() -> None:
    inner = RoutingTransport(
        {
            MIRROR_A: invidious_video_payload(),
            MIRROR_B: invidious_video_payload(),
        }
    )
    transport = _SlowTransport(inner, slow_prefix=MIRROR_A, delay_seconds=1.5)
    dispatcher = _build_dispatcher(transport, api_key=None, timeout_seconds=0.2)

    started = time.perf_counter()
    outcome = dispatcher.dispatch(
        Operation.FETCH_VIDEO_METADATA,
        OperationParams(subject=VIDEO_ID),
    )
    elapsed = time.perf_counter() - started

    assert outcome.provider_id == "invidious:mirror-b.test"
    assert outcome.attempts[-1].reason == "timeout"
    assert elapsed < 1.0


def test_search_results_are_classified() -> None:
    transport = RoutingTransport(
        {
            API_BASE_URL: {
                "items": [
                    {
                        "id": {"kind": "youtube#video", "videoId": "aaaaaaaaaaa"},
                        "snippet": {"title": "Totally SAFE Content", "channelTitle": "A"},
                    },
                    {
                        "id": {"kind": "youtube#video", "videoId": "bbbbbbbbbbb"},
                        "snippet": {"title": "this is UNSAFE stuff", "channelTitle": "B"},
                    },
                    {
                        "id": {"kind": "youtube#channel", "channelId": "UCunsafe"},
                        "snippet": {"title": "Plain", "channelTitle": "Unsafe Channel"},
                    },
                ],
            }
        }
    )
    dispatcher = _build_dispatcher(transport)

    outcome = dispatcher.dispatch(Operation.SEARCH, OperationParams(subject="stuff"))

    flags = {item.item_id: item.is_sensitive for item in outcome.value}
    assert flags == {"aaaaaaaaaaa": False, "bbbbbbbbbbb": True, "UCunsafe": True}


def test_official_provider_issues_opaque_token_and_reuses_it() -> None:
    transport = RoutingTransport(
        {
            API_BASE_URL: {
                "nextPageToken": "CAoQAA",
                "items": [
                    {
                        "id": {"kind": "youtube#video", "videoId": "aaaaaaaaaaa"},
                        "snippet": {"title": "First", "channelTitle": "A"},
                    }
                ],
            }
        }
    )
    dispatcher = _build_dispatcher(transport)

    first = dispatcher.dispatch(
        Operation.LIST_CHANNEL_VIDEOS,
        OperationParams(subject=CHANNEL_ID),
    )
    assert first.cursor == OpaqueToken(token="CAoQAA", provider_id="youtube_data_api")

    dispatcher.dispatch(
        Operation.LIST_CHANNEL_VIDEOS,
        OperationParams(subject=CHANNEL_ID),
        first.cursor,
    )
    assert "pageToken=CAoQAA" in transport.calls[-1]


def test_synthetic_cursor_is_not_sent_to_a_different_mirror() -> None:
    transport = RoutingTransport(
        {
            API_BASE_URL: UpstreamRejected("quota exceeded", status_code=403),
            MIRROR_A: invidious_videos_page(3),
            MIRROR_B: invidious_videos_page(2, prefix="bbb"),
        }
    )
    dispatcher = _build_dispatcher(transport)

    first = dispatcher.dispatch(
        Operation.LIST_CHANNEL_VIDEOS,
        OperationParams(subject=CHANNEL_ID),
    )
    assert first.cursor == SyntheticPage(page=2, provider_id="invidious:mirror-a.test")
    assert "page=1" in transport.calls_to(MIRROR_A)[0]

    transport.routes[MIRROR_A] = TransportFailure("instance went away")
    second = dispatcher.dispatch(
        Operation.LIST_CHANNEL_VIDEOS,
        OperationParams(subject=CHANNEL_ID),
        first.cursor,
    )

    assert "page=2" in transport.calls_to(MIRROR_A)[-1]
    mirror_b_calls = transport.calls_to(MIRROR_B)
    assert len(mirror_b_calls) == 1
    assert "page=1" in mirror_b_calls[0]
    assert "page=2" not in mirror_b_calls[0]
    assert second.provider_id == "invidious:mirror-b.test"
    assert second.cursor == SyntheticPage(page=2, provider_id="invidious:mirror-b.test")


def test_synthetic_cursor_is_not_sent_to_the_authoritative_provider() -> None:
    transport = RoutingTransport(
        {
            API_BASE_URL: {
                "items": [
                    {
                        "id": {"kind": "youtube#video", "videoId": "aaaaaaaaaaa"},
                        "snippet": {"title": "First", "channelTitle": "A"},
                    }
                ],
            }
        }
    )
    dispatcher = _build_dispatcher(transport)

    outcome = dispatcher.dispatch(
        Operation.LIST_CHANNEL_VIDEOS,
        OperationParams(subject=CHANNEL_ID),
        SyntheticPage(page=4, provider_id="invidious:mirror-a.test"),
    )

    assert "pageToken" not in transport.calls[0]
    assert "page=4" not in transport.calls[0]
    assert outcome.cursor is None


def test_empty_synthetic_page_ends_pagination() -> None:
    transport = RoutingTransport({MIRROR_A: invidious_videos_page(0)})
    dispatcher = _build_dispatcher(transport, api_key=None)

    outcome = dispatcher.dispatch(
        Operation.LIST_CHANNEL_VIDEOS,
        OperationParams(subject=CHANNEL_ID),
        SyntheticPage(page=3, provider_id="invidious:mirror-a.test"),
    )

    assert "page=3" in transport.calls_to(MIRROR_A)[0]
    assert outcome.provider_id == "invidious:mirror-a.test"
    assert outcome.value == ()
    assert outcome.cursor is None


def test_cancelled_token_stops_before_any_attempt() -> None:
    transport = RoutingTransport({API_BASE_URL: youtube_video_payload()})
    dispatcher = _build_dispatcher(transport)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(ResolutionCancelledError):
        dispatcher.dispatch(
            Operation.FETCH_VIDEO_METADATA,
            OperationParams(subject=VIDEO_ID),
            cancel_token=token,
        )
    assert transport.calls == []


def test_cancelling_during_an_attempt_halts_fallthrough() -> None:
    inner = RoutingTransport(
        {
            MIRROR_A: invidious_video_payload(),
            MIRROR_B: invidious_video_payload(),
        }
    )
    transport = _SlowTransport(inner, slow_prefix=MIRROR_A, delay_seconds=1.0)
    dispatcher = _build_dispatcher(transport, api_key=None, timeout_seconds=5.0)
    token = CancellationToken()
    timer = threading.Timer(0.1, token.cancel)
    timer.start()

    try:
        with pytest.raises(ResolutionCancelledError):
            dispatcher.dispatch(
                Operation.FETCH_VIDEO_METADATA,
                OperationParams(subject=VIDEO_ID),
                cancel_token=token,
            )
    finally:
        timer.cancel()
    assert inner.calls_to(MIRROR_B) == []


def test_unexpected_normalizer_error_is_treated_as_failed_attempt() -> None:
    def _explode(url: str) -> Any:
        raise RuntimeError(f"unexpected failure for {url}")

    transport = RoutingTransport(
        {
            API_BASE_URL: _explode,
            MIRROR_A: invidious_video_payload(),
        }
    )
    dispatcher = _build_dispatcher(transport)

    outcome = dispatcher.dispatch(
        Operation.FETCH_VIDEO_METADATA,
        OperationParams(subject=VIDEO_ID),
    )

    assert outcome.provider_id == "invidious:mirror-a.test"
    assert outcome.attempts[0].reason == "unexpected_error"


def test_dispatch_emits_telemetry_without_credentials() -> None:
    sink = _CaptureSink()
    transport = RoutingTransport(
        {
            API_BASE_URL: UpstreamRejected("quota exceeded", status_code=403),
            MIRROR_A: invidious_video_payload(),
        }
    )
    dispatcher = _build_dispatcher(
        transport,
        telemetry=TelemetryClient(enabled=True, sink=sink),
    )

    dispatcher.dispatch(Operation.FETCH_VIDEO_METADATA, OperationParams(subject=VIDEO_ID))

    assert [name for name, _ in sink.events] == [
        "provider.attempt.failed",
        "provider.attempt.succeeded",
    ]
    failed = sink.events[0][1]
    assert failed["provider"] == "youtube_data_api"
    assert failed["reason"] == "upstream_rejected"
    assert all("test-key" not in str(value) for _, event in sink.events for value in event.values())


def test_oembed_fallback_answers_video_metadata_with_title_only() -> None:
    transport = RoutingTransport(
        {
            API_BASE_URL: UpstreamRejected("quota exceeded", status_code=403),
            MIRROR_A: TransportFailure("down"),
            MIRROR_B: TransportFailure("down"),
            MIRROR_C: TransportFailure("down"),
            PROXY_URL: {"title": "Never Gonna Give You Up", "author_name": "Rick Astley"},
        }
    )
    dispatcher = _build_dispatcher(transport)

    outcome = dispatcher.dispatch(
        Operation.FETCH_VIDEO_METADATA,
        OperationParams(subject=VIDEO_ID),
    )

    assert outcome.provider_id == "oembed_proxy"
    assert outcome.value == VideoMetadata(
        title="Never Gonna Give You Up",
        description=None,
        keywords=(),
        channel_id=None,
        channel_title="Rick Astley",
    )
    assert "quest=" in transport.calls_to(PROXY_URL)[0]


def test_following_mirror_cursors_serves_every_upload_of_long_pages() -> None:
    def _respond(url: str) -> Any:
        page = int(parse_qs(urlparse(url).query)["page"][0])
        return invidious_videos_page(20 if page < 3 else 0, prefix=f"p{page}")

    transport = RoutingTransport({MIRROR_A: _respond})
    dispatcher = _build_dispatcher(transport, api_key=None)

    served: list[str] = []
    cursor: PaginationCursor | None = None
    for _ in range(10):
        outcome = dispatcher.dispatch(
            Operation.LIST_CHANNEL_VIDEOS,
            OperationParams(subject=CHANNEL_ID),
            cursor,
        )
        assert len(outcome.value) <= 15
        served.extend(item.item_id for item in outcome.value)
        cursor = outcome.cursor
        if cursor is None:
            break

    assert len(served) == 40
    assert len(set(served)) == 40
    assert [urlparse(url).query for url in transport.calls] == [
        "page=1",
        "page=1",
        "page=2",
        "page=2",
        "page=3",
    ]


def test_cancel_before_transport_call_skips_the_request() -> None:
    token = CancellationToken()
    transport = RoutingTransport({MIRROR_A: invidious_video_payload()})

    def _build_then_cancel(
        params: OperationParams,
        _credential: Credential,
        _cursor: PaginationCursor | None,
    ) -> ProviderRequest:
        token.cancel()
        return ProviderRequest(url=f"{MIRROR_A}/api/v1/videos/{params.subject}")

    provider = ProviderDescriptor(
        provider_id="cancelling",
        kind="mirror",
        priority=0,
        base_url=MIRROR_A,
        operations={
            Operation.FETCH_VIDEO_METADATA: OperationBinding(
                _build_then_cancel, normalizer.invidious_video_metadata
            )
        },
    )
    dispatcher = RequestDispatcher(
        registry=ProviderRegistry([provider]),
        credential_resolver=CredentialResolver(override=None, default=None),
        transport=transport,
        classifier=KeywordClassifier(()),
        attempt_timeout_seconds=2.0,
    )

    with pytest.raises(ResolutionCancelledError):
        dispatcher.dispatch(
            Operation.FETCH_VIDEO_METADATA,
            OperationParams(subject=VIDEO_ID),
            cancel_token=token,
        )
    assert transport.calls == []


def test_each_attempt_uses_its_own_provider_binding() -> None:
    inner = RoutingTransport(
        {
            MIRROR_A: invidious_video_payload(),
            MIRROR_B: invidious_video_payload(),
        }
    )
    transport = _SlowTransport(inner, slow_prefix=MIRROR_A, delay_seconds=0.6)
    dispatcher = _build_dispatcher(transport, api_key=None, timeout_seconds=0.2)

    outcome = dispatcher.dispatch(
        Operation.FETCH_VIDEO_METADATA,
        OperationParams(subject=VIDEO_ID),
    )
    # Let the abandoned worker for mirror A finish its request.
    time.sleep(0.6)

    assert outcome.provider_id == "invidious:mirror-b.test"
    assert len(inner.calls_to(MIRROR_A)) == 1
    assert len(inner.calls_to(MIRROR_B)) == 1
    assert inner.calls_to(MIRROR_A)[0].endswith(f"/api/v1/videos/{VIDEO_ID}")
