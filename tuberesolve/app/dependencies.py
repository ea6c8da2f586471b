from __future__ import annotations

from functools import lru_cache

from tuberesolve.app.config import AppSettings, load_settings
from tuberesolve.app.services.content_classifier import KeywordClassifier
from tuberesolve.app.services.credential_resolver import (
    CredentialResolver,
    load_credential_override,
)
from tuberesolve.app.services.http_transport import JsonTransport, UrllibJsonTransport
from tuberesolve.app.services.metadata_service import MetadataService
from tuberesolve.app.services.provider_registry import ProviderRegistry, build_provider_registry
from tuberesolve.app.services.request_dispatcher import RequestDispatcher
from tuberesolve.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_metadata_service() -> MetadataService:
    return build_metadata_service(get_settings(), telemetry=get_telemetry())


def build_registry(settings: AppSettings) -> ProviderRegistry:
    return build_provider_registry(
        youtube_api_base_url=settings.youtube_api_base_url,
        mirror_base_urls=settings.mirror_base_urls,
        oembed_proxy_url=settings.oembed_proxy_url,
        search_max_results=settings.search_max_results,
        channel_videos_max_results=settings.channel_videos_max_results,
    )


def build_credential_resolver(settings: AppSettings) -> CredentialResolver:
    return CredentialResolver(
        override=load_credential_override(settings.overrides_path),
        default=settings.default_api_key,
    )


def build_metadata_service(
    settings: AppSettings,
    *,
    transport: JsonTransport | None = None,
    telemetry: TelemetryClient | None = None,
) -> MetadataService:
    dispatcher = RequestDispatcher(
        registry=build_registry(settings),
        credential_resolver=build_credential_resolver(settings),
        transport=transport or UrllibJsonTransport(),
        classifier=KeywordClassifier(settings.sensitive_terms),
        attempt_timeout_seconds=settings.provider_timeout_seconds,
        telemetry=telemetry,
    )
    return MetadataService(dispatcher=dispatcher)


def reset_cached_dependencies() -> None:
    get_metadata_service.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
