from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from time import perf_counter
from typing import Any, Literal, Protocol

import structlog

# Attribute names containing any of these never reach a sink verbatim.
_SENSITIVE_ATTRIBUTE_TOKENS: frozenset[str] = frozenset(
    {
        "authorization",
        "body",
        "content",
        "cookie",
        "html",
        "markdown",
        "password",
        "payload",
        "secret",
        "token",
    }
)
_MAX_STRING_LENGTH = 160

TelemetryAttributes = dict[str, bool | int | float | str | None]


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    """Writes events through the `newsdesk.telemetry` logger (its own JSON file)."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger("newsdesk.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink
    context: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def bind(self, **attributes: Any) -> TelemetryClient:
        """Return a client that adds `attributes` to every event it emits."""
        return replace(self, context={**self.context, **attributes})

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(
            event_name=event_name,
            attributes=_sanitize_attributes({**self.context, **attributes}),
        )

    @contextmanager
    def timed(self, event_name: str, **attributes: Any) -> Iterator[dict[str, Any]]:
        """Emit `<event_name>.success` or `<event_name>.failure` with `duration_ms`.

        The yielded dict collects attributes that are only known once the work
        is done. Exceptions are reported with their type and re-raised.
        """
        outcome: dict[str, Any] = {}
        started_at = perf_counter()
        try:
            yield outcome
        except Exception as exc:
            self.emit(
                f"{event_name}.failure",
                **{
                    **attributes,
                    **outcome,
                    "duration_ms": _elapsed_ms(started_at),
                    "error_type": type(exc).__name__,
                },
            )
            raise
        self.emit(
            f"{event_name}.success",
            **{**attributes, **outcome, "duration_ms": _elapsed_ms(started_at)},
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger("newsdesk.telemetry").warning(
        "unsupported telemetry sink requested; disabling telemetry sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)


def _sanitize_attributes(attributes: Mapping[str, Any]) -> TelemetryAttributes:
    sanitized: TelemetryAttributes = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(token in key for token in _SENSITIVE_ATTRIBUTE_TOKENS):
            sanitized[key] = "[redacted]"
        else:
            sanitized[key] = _sanitize_value(raw_value)
    return sanitized


def _sanitize_value(value: Any) -> bool | int | float | str | None:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) <= _MAX_STRING_LENGTH:
            return compact
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    return type(value).__name__
