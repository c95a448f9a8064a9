from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import structlog

from backend.app.logging_config import TELEMETRY_LOGGER_NAME

TelemetryValue = bool | int | float | str | None
TelemetrySinkName = Literal["none", "log"]

REDACTED = "[redacted]"

# Page markup and request bodies never leave the process through telemetry.
DEFAULT_SENSITIVE_TOKENS: frozenset[str] = frozenset(
    {"authorization", "body", "cookie", "html", "markup", "payload", "secret", "token"}
)


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    attributes: Mapping[str, TelemetryValue]


class TelemetrySink(Protocol):
    def record(self, event: TelemetryEvent) -> None:
        ...


class NoOpTelemetrySink:
    def record(self, event: TelemetryEvent) -> None:
        _ = event


class InMemoryTelemetrySink:
    def __init__(self) -> None:
        self.events: list[TelemetryEvent] = []

    def record(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[TelemetryEvent]:
        return [event for event in self.events if event.name == name]


class StructuredLogTelemetrySink:
    """Writes each event as one structlog record on the telemetry logger."""

    def __init__(self, logger_name: str = TELEMETRY_LOGGER_NAME) -> None:
        self._logger = structlog.get_logger(logger_name)

    def record(self, event: TelemetryEvent) -> None:
        self._logger.info("telemetry", telemetry_event=event.name, **dict(event.attributes))


@dataclass(frozen=True)
class AttributeRedactor:
    sensitive_tokens: frozenset[str] = DEFAULT_SENSITIVE_TOKENS
    max_string_length: int = 160

    def redact(self, attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
        redacted: dict[str, TelemetryValue] = {}
        for raw_key, raw_value in attributes.items():
            key = str(raw_key).strip().lower()
            if not key:
                continue
            redacted[key] = REDACTED if self.is_sensitive(key) else self.flatten(raw_value)
        return redacted

    def is_sensitive(self, key: str) -> bool:
        return any(token in key for token in self.sensitive_tokens)

    def flatten(self, value: Any) -> TelemetryValue:
        """Reduce a value to a scalar; collections are reported by size."""
        if value is None or isinstance(value, bool | int | float):
            return value
        if isinstance(value, str):
            compact = " ".join(value.split())
            if len(compact) > self.max_string_length:
                return f"{compact[: self.max_string_length]}..."
            return compact
        if isinstance(value, list | tuple | set | frozenset | dict):
            return len(value)
        return type(value).__name__


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink
    redactor: AttributeRedactor = field(default_factory=AttributeRedactor)

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        event = TelemetryEvent(name=event_name, attributes=self.redactor.redact(attributes))
        self.sink.record(event)


def build_telemetry_client(*, enabled: bool, sink: TelemetrySinkName) -> TelemetryClient:
    if enabled and sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())
    if enabled and sink != "none":
        logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
            "telemetry disabled; unknown sink=%s",
            sink,
        )
    return TelemetryClient.disabled()
