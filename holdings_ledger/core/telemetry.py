"""OpenTelemetry wiring and ledger instruments for the holdings ledger service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.metrics import Counter, Histogram, Meter
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.semconv.resource import ResourceAttributes
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import LedgerSettings

logger = logging.getLogger(__name__)

_TELEMETRY_INITIALISED = False
_METRIC_EXPORT_INTERVAL_MS = 10000


@dataclass(frozen=True)
class LedgerMetrics:
    """Instruments recorded around each portfolio recomputation."""

    recompute_duration: Histogram
    price_fallbacks: Counter
    quantity_anomalies: Counter
    closed_positions: Counter

    @classmethod
    def from_meter(cls, meter: Meter) -> "LedgerMetrics":
        return cls(
            recompute_duration=meter.create_histogram(
                "ledger.recompute.duration",
                unit="s",
                description="Wall time of a full portfolio recomputation",
            ),
            price_fallbacks=meter.create_counter(
                "ledger.price.fallbacks",
                description="Open holdings valued at average cost because no price was available",
            ),
            quantity_anomalies=meter.create_counter(
                "ledger.quantity.anomalies",
                description="Sells or withdrawals clamped because they exceeded the held quantity",
            ),
            closed_positions=meter.create_counter(
                "ledger.closed_positions.stored",
                description="Closed position rows written by recomputations",
            ),
        )


@lru_cache(maxsize=1)
def get_ledger_metrics() -> LedgerMetrics:
    """Instruments on the global meter; they start exporting once telemetry is set up."""

    return LedgerMetrics.from_meter(metrics.get_meter("holdings_ledger"))


def _build_resource(settings: LedgerSettings) -> Resource:
    return Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: settings.telemetry_service_name or settings.app_name,
            ResourceAttributes.SERVICE_NAMESPACE: "holdings-ledger",
        }
    )


def _exporter_options(settings: LedgerSettings) -> dict[str, Any]:
    options: dict[str, Any] = {"insecure": settings.telemetry_otlp_insecure}
    if settings.telemetry_otlp_endpoint:
        options["endpoint"] = settings.telemetry_otlp_endpoint
    return options


def _install_tracing(settings: LedgerSettings, resource: Resource) -> TracerProvider:
    provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(settings.telemetry_sample_ratio)),
    )
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**_exporter_options(settings))))
    trace.set_tracer_provider(provider)
    return provider


def _install_metrics(settings: LedgerSettings, resource: Resource) -> MeterProvider:
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(**_exporter_options(settings)),
        export_interval_millis=_METRIC_EXPORT_INTERVAL_MS,
    )
    provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(provider)
    return provider


def _install_log_export(settings: LedgerSettings, resource: Resource) -> None:
    provider = LoggerProvider(resource=resource)
    provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(**_exporter_options(settings))))
    set_logger_provider(provider)
    LoggingInstrumentor().instrument(set_logging_format=False)


def setup_telemetry(app: FastAPI, settings: LedgerSettings, engine: AsyncEngine | None = None) -> bool:
    """Export recompute spans, ledger metrics and logs over OTLP.

    Runs once per process and returns ``True`` when exporters are active.
    """

    global _TELEMETRY_INITIALISED  # noqa: PLW0603

    if _TELEMETRY_INITIALISED:
        return True
    if not settings.telemetry_enabled:
        logger.info("Telemetry disabled via configuration")
        return False

    resource = _build_resource(settings)
    tracer_provider = _install_tracing(settings, resource)
    meter_provider = _install_metrics(settings, resource)
    _install_log_export(settings, resource)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider, meter_provider=meter_provider)
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=tracer_provider)

    _TELEMETRY_INITIALISED = True
    logger.info(
        "Telemetry initialised",
        extra={"otlp_endpoint": settings.telemetry_otlp_endpoint or "default"},
    )
    return True


__all__ = ["LedgerMetrics", "get_ledger_metrics", "setup_telemetry"]
