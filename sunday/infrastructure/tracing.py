"""OpenTelemetry tracing configuration.

Backends:
- disabled: no export
- local: OTLP gRPC to a local collector / Aspire dashboard
- appinsights: Azure Application Insights exporters
"""

import logging

from agent_framework.observability import configure_otel_providers

from sunday.config import Settings

logger = logging.getLogger(__name__)


def configure_tracing(settings: Settings, appinsights_connection_string: str | None = None) -> None:
    """Configure OpenTelemetry export from settings.

    Args:
        settings: Application settings (tracing_backend, endpoints)
        appinsights_connection_string: Required for the appinsights backend
    """
    backend = settings.tracing_backend
    if backend == "disabled":
        logger.info("Tracing is disabled")
        return

    if backend == "local":
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        exporters = [OTLPSpanExporter(endpoint=settings.local_otlp_endpoint)]
        target = settings.local_otlp_endpoint
    elif backend == "appinsights":
        if not appinsights_connection_string:
            logger.warning("App Insights connection string not provided, tracing disabled")
            return
        from azure.monitor.opentelemetry.exporter import AzureMonitorTraceExporter

        exporters = [AzureMonitorTraceExporter(connection_string=appinsights_connection_string)]
        target = "Azure Application Insights"
    else:
        logger.warning(f"Unknown tracing backend: {backend}, tracing disabled")
        return

    configure_otel_providers(
        exporters=exporters,
        enable_sensitive_data=settings.enable_sensitive_data,
    )
    logger.info(f"Tracing configured for {target}")
