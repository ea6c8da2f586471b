from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

from tuberesolve.app.models.contracts import AttemptRecord, Operation

_SENSITIVE_ATTRIBUTE_TOKENS: frozenset[str] = frozenset(
    {"api_key", "authorization", "credential", "key", "secret", "token"}
)
_QUERY_SECRET_PATTERN = re.compile(r"([?&](?:key|pageToken)=)[^&\s]+")
_MAX_STRING_LENGTH = 160

AttributeValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger("tuberesolve.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    """Best-effort provider health events. Never carries credentials."""

    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=_sanitize_attributes(attributes))

    def attempt_failed(self, operation: Operation, record: AttemptRecord) -> None:
        self.emit(
            "provider.attempt.failed",
            operation=operation.value,
            provider=record.provider_id,
            reason=record.reason,
            detail=record.detail,
            elapsed_seconds=record.elapsed_seconds,
        )

    def attempt_succeeded(
        self,
        operation: Operation,
        *,
        provider_id: str,
        elapsed_seconds: float,
        failed_before: int,
    ) -> None:
        self.emit(
            "provider.attempt.succeeded",
            operation=operation.value,
            provider=provider_id,
            elapsed_seconds=elapsed_seconds,
            failed_before=failed_before,
        )

    def dispatch_exhausted(self, operation: Operation, *, attempts: int) -> None:
        self.emit("dispatch.exhausted", operation=operation.value, attempts=attempts)


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger("tuberesolve.telemetry").warning(
        "unknown telemetry sink; telemetry disabled sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def scrub_url_secrets(text: str) -> str:
    return _QUERY_SECRET_PATTERN.sub(r"\1[redacted]", text)


def _sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, AttributeValue]:
    sanitized: dict[str, AttributeValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(token in key for token in _SENSITIVE_ATTRIBUTE_TOKENS):
            sanitized[key] = "[redacted]"
            continue
        sanitized[key] = _sanitize_value(raw_value)
    return sanitized


def _sanitize_value(value: Any) -> AttributeValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = scrub_url_secrets(" ".join(value.split()))
        if len(compact) <= _MAX_STRING_LENGTH:
            return compact
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    return type(value).__name__
