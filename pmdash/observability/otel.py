"""OpenTelemetry + Prometheus fallback wiring for PMDash."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from pmdash import config

logger = logging.getLogger("pmdash.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_scan_counter: Any | None = None
_scan_latency_hist: Any | None = None
_findings_counter: Any | None = None
_issue_counter: Any | None = None
_export_counter: Any | None = None

_prom_enabled = False
_prom_scan_counter: Any | None = None
_prom_scan_latency_hist: Any | None = None
_prom_findings_counter: Any | None = None
_prom_issue_counter: Any | None = None
_prom_export_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _scan_counter, _scan_latency_hist, _findings_counter, _issue_counter, _export_counter
    global _prom_enabled
    global _prom_scan_counter, _prom_scan_latency_hist, _prom_findings_counter
    global _prom_issue_counter, _prom_export_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (PMDASH_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable (install pmdash[otel]): %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "pmdash"

    resource = Resource.create({"service.name": service_name, "service.namespace": "pmdash"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("pmdash")

    _scan_counter = meter.create_counter("pmdash_scans_total", unit="1", description="Completed scans")
    _scan_latency_hist = meter.create_histogram("pmdash_scan_duration_ms", unit="ms", description="Scan wall time")
    _findings_counter = meter.create_counter("pmdash_findings_total", unit="1", description="Findings reported by scans")
    _issue_counter = meter.create_counter("pmdash_issues_total", unit="1", description="Issue creation outcomes")
    _export_counter = meter.create_counter("pmdash_roadmap_exports_total", unit="1", description="Roadmap exports by format")

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("pmdash")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_scan_counter = Counter("pmdash_scans_total", "Completed scans", ["result"])
            _prom_scan_latency_hist = Histogram("pmdash_scan_duration_ms", "Scan wall time", ["result"])
            _prom_findings_counter = Counter("pmdash_findings_total", "Findings reported by scans", [])
            _prom_issue_counter = Counter("pmdash_issues_total", "Issue creation outcomes", ["status"])
            _prom_export_counter = Counter("pmdash_roadmap_exports_total", "Roadmap exports by format", ["format"])
            _prom_enabled = True
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except OSError as exc:
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    if app and _fastapi_instrumentor:
        _fastapi_instrumentor.uninstrument_app(app)
    if _meter_provider is not None:
        _meter_provider.shutdown()
    if _trace_provider is not None:
        _trace_provider.shutdown()
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_scan(files_scanned: int, findings: int, duration_ms: float, *, result: str = "ok") -> None:
    labels = {"result": result or "unknown"}
    if _enabled and _scan_counter is not None:
        _scan_counter.add(1, labels)
    if _enabled and _scan_latency_hist is not None:
        _scan_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _enabled and _findings_counter is not None and findings > 0:
        _findings_counter.add(int(findings))
    if _prom_enabled and _prom_scan_counter is not None:
        _prom_scan_counter.labels(**labels).inc()
    if _prom_enabled and _prom_scan_latency_hist is not None:
        _prom_scan_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))
    if _prom_enabled and _prom_findings_counter is not None and findings > 0:
        _prom_findings_counter.inc(int(findings))


def record_issue_result(status: str, count: int = 1) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {"status": (status or "").strip() or "unknown"}
    if _enabled and _issue_counter is not None:
        _issue_counter.add(safe_count, labels)
    if _prom_enabled and _prom_issue_counter is not None:
        _prom_issue_counter.labels(**labels).inc(safe_count)


def record_export(export_format: str) -> None:
    labels = {"format": (export_format or "").strip() or "unknown"}
    if _enabled and _export_counter is not None:
        _export_counter.add(1, labels)
    if _prom_enabled and _prom_export_counter is not None:
        _prom_export_counter.labels(**labels).inc()
