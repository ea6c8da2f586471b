from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from tuberesolve.app.models.contracts import (
    MalformedResponse,
    ProviderTimeout,
    TransportFailure,
    UpstreamRejected,
)

DEFAULT_USER_AGENT = "tuberesolve/0.1"


class JsonTransport(Protocol):
    def get_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        timeout_seconds: float,
    ) -> Any:
        ...


class UrllibJsonTransport:
    def __init__(self, *, user_agent: str = DEFAULT_USER_AGENT) -> None:
        self._user_agent = user_agent

    def get_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        timeout_seconds: float,
    ) -> Any:
        request_headers = {
            "accept": "application/json",
            "user-agent": self._user_agent,
            **dict(headers),
        }
        request = Request(url, headers=request_headers, method="GET")
        try:
            with urlopen(request, timeout=timeout_seconds) as response:
                status_code = int(response.getcode() or 0)
                raw_body = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            raise UpstreamRejected(
                f"upstream returned HTTP {exc.code}",
                status_code=int(exc.code),
            ) from exc
        except TimeoutError as exc:
            raise ProviderTimeout(f"request timed out after {timeout_seconds}s") from exc
        except URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise ProviderTimeout(f"connect timed out after {timeout_seconds}s") from exc
            raise TransportFailure(f"request failed: {exc.reason}") from exc
        except OSError as exc:
            raise TransportFailure(f"request failed: {exc}") from exc

        if status_code < 200 or status_code >= 300:
            raise UpstreamRejected(
                f"upstream returned HTTP {status_code}",
                status_code=status_code,
            )
        return parse_json_body(raw_body)


def parse_json_body(raw_body: str) -> Any:
    if not raw_body.strip():
        raise MalformedResponse("empty response body")
    try:
        return json.loads(raw_body)
    except json.JSONDecodeError as exc:
        raise MalformedResponse(f"response is not JSON: {exc.msg}") from exc
