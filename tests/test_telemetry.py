from __future__ import annotations

from typing import Any

from ingestor.core import telemetry
from ingestor.core.config import Settings


class RecordingExporter:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs


def _clear_otlp_env(monkeypatch) -> None:
    for name in ("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_EXPORTER_OTLP_HEADERS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(telemetry, "OTLPSpanExporter", RecordingExporter)


def test_exporter_falls_back_to_generic_endpoint_env(monkeypatch) -> None:
    _clear_otlp_env(monkeypatch)
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4318/v1/traces")

    exporter = telemetry._build_exporter(Settings())

    assert exporter.kwargs == {"endpoint": "http://collector:4318/v1/traces"}


def test_explicit_empty_traces_endpoint_disables_export(monkeypatch) -> None:
    _clear_otlp_env(monkeypatch)
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "")
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4318/v1/traces")

    assert telemetry._build_exporter(Settings()) is None


def test_exporter_headers_are_stripped(monkeypatch) -> None:
    _clear_otlp_env(monkeypatch)

    exporter = telemetry._build_exporter(
        Settings(
            otel_exporter_otlp_endpoint="http://collector:4318/v1/traces",
            otel_exporter_otlp_headers=" authorization = Bearer abc ,broken, =skipped",
        )
    )

    assert exporter.kwargs == {
        "endpoint": "http://collector:4318/v1/traces",
        "headers": {"authorization": "Bearer abc"},
    }
