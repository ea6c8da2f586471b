from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from time import perf_counter
from typing import Any, TypeVar

from tuberesolve.app.models.contracts import (
    AttemptRecord,
    CancellationToken,
    ChannelDetails,
    Credential,
    DispatchOutcome,
    Operation,
    PaginationCursor,
    ProviderAttemptError,
    ProviderTimeout,
    ResolutionCancelledError,
    SearchResultItem,
    VideoMetadata,
)
from tuberesolve.app.services.content_classifier import Classifier, annotate_items
from tuberesolve.app.services.credential_resolver import CredentialResolver
from tuberesolve.app.services.http_transport import JsonTransport
from tuberesolve.app.services.pagination_bridge import PaginationBridge
from tuberesolve.app.services.provider_registry import (
    OperationBinding,
    OperationParams,
    ProviderDescriptor,
    ProviderRegistry,
)
from tuberesolve.app.services.response_normalizer import NormalizedPayload
from tuberesolve.app.telemetry import TelemetryClient, scrub_url_secrets

LOGGER = logging.getLogger("tuberesolve.dispatcher")

T = TypeVar("T")

LIST_OPERATIONS: frozenset[Operation] = frozenset(
    {Operation.SEARCH, Operation.LIST_CHANNEL_VIDEOS}
)
_CANCEL_POLL_SECONDS = 0.05


def exhausted_result(operation: Operation) -> Any:
    if operation == Operation.FETCH_VIDEO_METADATA:
        return VideoMetadata.empty()
    if operation == Operation.FETCH_CHANNEL_DETAILS:
        return ChannelDetails.empty()
    return ()


@dataclass
class _AttemptState:
    result: Any = None
    error: BaseException | None = None


class RequestDispatcher:
    """
    Walks the provider registry in priority order for one logical operation.

    Attempts are strictly sequential. Each one runs under its own deadline;
    transport errors, rejected statuses, malformed payloads and timeouts all
    move on to the next provider. The first provider that yields a normalized
    result wins. When every provider fails the operation's empty result is
    returned with no cursor.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        credential_resolver: CredentialResolver,
        transport: JsonTransport,
        classifier: Classifier,
        attempt_timeout_seconds: float,
        pagination: PaginationBridge | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._registry = registry
        self._credential_resolver = credential_resolver
        self._transport = transport
        self._classifier = classifier
        self._attempt_timeout_seconds = max(0.01, attempt_timeout_seconds)
        self._pagination = pagination or PaginationBridge()
        self._telemetry = telemetry or TelemetryClient.disabled()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def dispatch(
        self,
        operation: Operation,
        params: OperationParams,
        cursor: PaginationCursor | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> DispatchOutcome:
        credential = self._credential_resolver.resolve()
        attempts: list[AttemptRecord] = []

        for provider, binding in self._registry.bindings_for(operation):
            _raise_if_cancelled(cancel_token, operation)

            if provider.requires_credential and credential.is_empty:
                attempts.append(
                    AttemptRecord(
                        provider_id=provider.provider_id,
                        reason="credential_missing",
                        detail=None,
                        elapsed_seconds=0.0,
                    )
                )
                LOGGER.debug(
                    "skipping provider without credential operation=%s provider=%s",
                    operation.value,
                    provider.provider_id,
                )
                continue

            attempt_cursor = self._pagination.cursor_for_attempt(
                cursor,
                provider_id=provider.provider_id,
                paging_mode=binding.paging_mode,
            )
            started = perf_counter()
            try:
                normalized = self._run_with_deadline(
                    partial(
                        self._attempt,
                        provider,
                        binding,
                        params,
                        credential,
                        attempt_cursor,
                        operation,
                        cancel_token,
                    ),
                    cancel_token=cancel_token,
                    operation=operation,
                )
            except ProviderAttemptError as exc:
                record = AttemptRecord(
                    provider_id=provider.provider_id,
                    reason=exc.reason,
                    detail=_summarize_exception_message(exc),
                    elapsed_seconds=round(perf_counter() - started, 4),
                )
                attempts.append(record)
                self._log_failure(operation, record)
                continue
            except ResolutionCancelledError:
                raise
            except Exception as exc:
                record = AttemptRecord(
                    provider_id=provider.provider_id,
                    reason="unexpected_error",
                    detail=_summarize_exception_message(exc),
                    elapsed_seconds=round(perf_counter() - started, 4),
                )
                attempts.append(record)
                LOGGER.warning(
                    "provider attempt raised unexpectedly operation=%s provider=%s",
                    operation.value,
                    provider.provider_id,
                    exc_info=True,
                )
                self._log_failure(operation, record)
                continue

            value = normalized.value
            next_cursor: PaginationCursor | None = None
            if operation in LIST_OPERATIONS:
                window, next_cursor = self._pagination.paginate(
                    _search_items(value),
                    attempt_cursor,
                    provider_id=provider.provider_id,
                    paging_mode=binding.paging_mode,
                    page_size=binding.page_size,
                    continuation_token=normalized.continuation_token,
                )
                value = annotate_items(window, self._classifier)
            elapsed = round(perf_counter() - started, 4)
            LOGGER.info(
                "provider attempt succeeded operation=%s provider=%s elapsed_s=%s failed_before=%s",
                operation.value,
                provider.provider_id,
                elapsed,
                len(attempts),
                extra={"operation": operation.value, "provider": provider.provider_id},
            )
            self._telemetry.attempt_succeeded(
                operation,
                provider_id=provider.provider_id,
                elapsed_seconds=elapsed,
                failed_before=len(attempts),
            )
            return DispatchOutcome(
                value=value,
                cursor=next_cursor,
                provider_id=provider.provider_id,
                attempts=tuple(attempts),
            )

        LOGGER.warning(
            "all providers failed operation=%s attempts=%s",
            operation.value,
            len(attempts),
            extra={"operation": operation.value},
        )
        self._telemetry.dispatch_exhausted(operation, attempts=len(attempts))
        return DispatchOutcome(
            value=exhausted_result(operation),
            cursor=None,
            provider_id=None,
            attempts=tuple(attempts),
        )

    def _attempt(
        self,
        provider: ProviderDescriptor,
        binding: OperationBinding,
        params: OperationParams,
        credential: Credential,
        cursor: PaginationCursor | None,
        operation: Operation,
        cancel_token: CancellationToken | None,
    ) -> NormalizedPayload:
        request = binding.build_request(params, credential, cursor)
        _raise_if_cancelled(cancel_token, operation)
        payload = self._transport.get_json(
            request.url,
            headers=request.headers,
            timeout_seconds=self._attempt_timeout_seconds,
        )
        LOGGER.debug(
            "provider responded provider=%s kind=%s",
            provider.provider_id,
            provider.kind,
        )
        return binding.normalize(payload)

    def _run_with_deadline(
        self,
        func: Callable[[], T],
        *,
        cancel_token: CancellationToken | None,
        operation: Operation,
    ) -> T:
        state = _AttemptState()
        done = threading.Event()

        def _target() -> None:
            try:
                state.result = func()
            except BaseException as exc:
                state.error = exc
            finally:
                done.set()

        # An abandoned worker already inside the transport runs until its socket timeout.
        worker = threading.Thread(target=_target, name="tuberesolve-attempt", daemon=True)
        worker.start()

        deadline = perf_counter() + self._attempt_timeout_seconds
        while True:
            remaining = deadline - perf_counter()
            if remaining <= 0:
                raise ProviderTimeout(
                    f"attempt exceeded {self._attempt_timeout_seconds}s deadline"
                )
            if done.wait(timeout=min(remaining, _CANCEL_POLL_SECONDS)):
                break
            _raise_if_cancelled(cancel_token, operation)

        if state.error is not None:
            raise state.error
        return state.result

    def _log_failure(self, operation: Operation, record: AttemptRecord) -> None:
        LOGGER.info(
            "provider attempt failed operation=%s provider=%s reason=%s elapsed_s=%s detail=%s",
            operation.value,
            record.provider_id,
            record.reason,
            record.elapsed_seconds,
            record.detail,
            extra={
                "operation": operation.value,
                "provider": record.provider_id,
                "reason": record.reason,
            },
        )
        self._telemetry.attempt_failed(operation, record)


def _raise_if_cancelled(cancel_token: CancellationToken | None, operation: Operation) -> None:
    if cancel_token is not None and cancel_token.cancelled:
        raise ResolutionCancelledError(f"{operation.value} was cancelled by the caller")


def _search_items(value: Any) -> tuple[SearchResultItem, ...]:
    if not isinstance(value, tuple):
        return ()
    return tuple(item for item in value if isinstance(item, SearchResultItem))


def _summarize_exception_message(exc: BaseException, *, max_length: int = 400) -> str:
    raw = scrub_url_secrets(str(exc).strip())
    if not raw:
        raw = repr(exc)
    if len(raw) <= max_length:
        return raw
    return f"{raw[: max_length - 3]}..."
