import logging
from typing import Dict, Optional

from google.cloud import logging as cloud_logging
from google.cloud.logging.handlers import CloudLoggingHandler, setup_logging
from google.cloud.logging_v2.resource import Resource
from opentelemetry import propagate, trace
from opentelemetry.exporter.cloud_trace import CloudTraceSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ALWAYS_ON

from weather_common.errors import ExporterInitError

logger = logging.getLogger("telemetry")


def enable_tracing(project_id: str) -> None:
    try:
        tracer_provider = TracerProvider(sampler=ALWAYS_ON)
        tracer_provider.add_span_processor(
            BatchSpanProcessor(CloudTraceSpanExporter(project_id=project_id))
        )
        trace.set_tracer_provider(tracer_provider)
    except Exception as e:
        raise ExporterInitError(f"unable to register Cloud Trace exporter: {e}") from e
    logger.info("Cloud Trace exporter registered for project %s", project_id)


def enable_cloud_logging(project_id: str, function_name: str, region: str) -> None:
    """Ship root logger records to Cloud Logging under the function's resource."""
    try:
        client = cloud_logging.Client(project=project_id)
        resource = Resource(
            type="cloud_function",
            labels={"function_name": function_name, "region": region},
        )
        handler = CloudLoggingHandler(client, name=function_name, resource=resource)
        setup_logging(handler, log_level=logging.getLogger().level)
    except Exception as e:
        raise ExporterInitError(f"unable to register Cloud Logging handler: {e}") from e
    logger.info("Cloud Logging handler registered for %s in %s", function_name, region)


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def extract_context(headers):
    # Request header mappings from Flask and Starlette both look up keys
    # case-insensitively, so they are passed through as-is.
    return propagate.extract(headers)


def inject_headers(headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    carrier = dict(headers or {})
    propagate.inject(carrier)
    return carrier
