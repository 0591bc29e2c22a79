"""OpenTelemetry + Prometheus fallback wiring for the recorder."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from recorder import config

logger = logging.getLogger("recorder.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_classification_counter: Any | None = None
_store_failure_counter: Any | None = None
_search_latency_hist: Any | None = None

_prom_enabled = False
_prom_classification_counter: Any | None = None
_prom_store_failure_counter: Any | None = None
_prom_search_latency_hist: Any | None = None


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


def _labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _classification_counter, _store_failure_counter, _search_latency_hist
    global _prom_enabled, _prom_classification_counter, _prom_store_failure_counter, _prom_search_latency_hist

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (RECORDER_OTEL_ENABLED=false)")
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
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "dialogue-recorder"

    resource = Resource.create({"service.name": service_name, "service.namespace": "recorder"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("recorder")

    _classification_counter = meter.create_counter(
        "recorder_classified_lines_total",
        unit="1",
        description="Lines seen by the classifier, by deciding stage and role",
    )
    _store_failure_counter = meter.create_counter(
        "recorder_store_failures_total",
        unit="1",
        description="Record store operations that failed",
    )
    _search_latency_hist = meter.create_histogram(
        "recorder_search_latency_ms",
        unit="ms",
        description="End-to-end search latency",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("recorder")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_classification_counter = Counter(
                "recorder_classified_lines_total",
                "Lines seen by the classifier, by deciding stage and role",
                ["outcome", "role"],
            )
            _prom_store_failure_counter = Counter(
                "recorder_store_failures_total",
                "Record store operations that failed",
                ["operation"],
            )
            _prom_search_latency_hist = Histogram(
                "recorder_search_latency_ms",
                "End-to-end search latency",
                ["keyword_driven"],
            )
            _prom_enabled = True
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        try:
            if provider is not None:
                provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
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


def record_classification(outcome: str, role: str | None = None) -> None:
    labels = _labels(outcome=outcome, role=role or "none")
    if _enabled and _classification_counter is not None:
        _classification_counter.add(1, labels)
    if _prom_enabled and _prom_classification_counter is not None:
        _prom_classification_counter.labels(**labels).inc()


def record_store_failure(operation: str) -> None:
    labels = _labels(operation=operation)
    if _enabled and _store_failure_counter is not None:
        _store_failure_counter.add(1, labels)
    if _prom_enabled and _prom_store_failure_counter is not None:
        _prom_store_failure_counter.labels(**labels).inc()


def record_search(duration_ms: float, *, keyword_driven: bool) -> None:
    labels = _labels(keyword_driven="true" if keyword_driven else "false")
    value = max(0.0, float(duration_ms))
    if _enabled and _search_latency_hist is not None:
        _search_latency_hist.record(value, labels)
    if _prom_enabled and _prom_search_latency_hist is not None:
        _prom_search_latency_hist.labels(**labels).observe(value)
