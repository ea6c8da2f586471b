from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any

import pytest

from tuberesolve.app.dependencies import reset_cached_dependencies
from tuberesolve.app.models.contracts import TransportFailure

API_BASE_URL = "https://api.test/youtube/v3"
MIRROR_A = "https://mirror-a.test"
MIRROR_B = "https://mirror-b.test"
MIRROR_C = "https://mirror-c.test"
PROXY_URL = "https://proxy.test/v1/proxy"

Route = Any | BaseException | Callable[[str], Any]


class RoutingTransport:
    """Answers by URL prefix and records every requested URL."""

    def __init__(self, routes: Mapping[str, Route] | None = None) -> None:
        self.routes: dict[str, Route] = dict(routes or {})
        self.calls: list[str] = []

    def get_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        timeout_seconds: float,
    ) -> Any:
        _ = (headers, timeout_seconds)
        self.calls.append(url)
        for prefix, response in self.routes.items():
            if not url.startswith(prefix):
                continue
            if isinstance(response, BaseException):
                raise response
            if callable(response):
                return response(url)
            return response
        raise TransportFailure(f"no route for {url}")

    def calls_to(self, prefix: str) -> list[str]:
        return [url for url in self.calls if url.startswith(prefix)]


@pytest.fixture(autouse=True)
def _isolated_env(  # pyright: ignore[reportUnusedFunction]
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[Path]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TUBERESOLVE_DATA_DIR", str(data_dir))
    monkeypatch.setenv("TUBERESOLVE_TELEMETRY_ENABLED", "0")
    monkeypatch.setenv("TUBERESOLVE_MIRROR_BASE_URLS", f"{MIRROR_A},{MIRROR_B},{MIRROR_C}")
    monkeypatch.setenv("TUBERESOLVE_YOUTUBE_API_BASE_URL", API_BASE_URL)
    monkeypatch.setenv("TUBERESOLVE_OEMBED_PROXY_URL", PROXY_URL)
    monkeypatch.delenv("TUBERESOLVE_DEFAULT_API_KEY", raising=False)
    reset_cached_dependencies()
    yield data_dir
    reset_cached_dependencies()


@pytest.fixture
def data_dir(_isolated_env: Path) -> Path:
    return _isolated_env


def youtube_video_payload() -> dict[str, Any]:
    return {
        "items": [
            {
                "id": "dQw4w9WgXcQ",
                "snippet": {
                    "title": "Never Gonna Give You Up",
                    "description": "The official video.",
                    "tags": ["rick astley", "80s"],
                    "channelId": "UCuAXFkgsw1L7xaCfnd5JJOw",
                    "channelTitle": "Rick Astley",
                },
            }
        ]
    }


def invidious_video_payload() -> dict[str, Any]:
    return {
        "title": "Never Gonna Give You Up",
        "description": "The official video.",
        "keywords": ["rick astley", "80s"],
        "authorId": "UCuAXFkgsw1L7xaCfnd5JJOw",
        "author": "Rick Astley",
        "lengthSeconds": 213,
    }


def invidious_videos_page(count: int, *, prefix: str = "vid") -> dict[str, Any]:
    return {
        "videos": [
            {
                "type": "video",
                "videoId": f"{prefix}{index:08d}"[:11].ljust(11, "x"),
                "title": f"Upload {index}",
                "author": "Test Channel",
                "published": 1_700_000_000 + index,
                "videoThumbnails": [
                    {"quality": "default", "url": f"https://img.test/{index}/default.jpg"},
                    {"quality": "high", "url": f"https://img.test/{index}/high.jpg"},
                ],
            }
            for index in range(count)
        ]
    }
