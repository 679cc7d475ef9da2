"""Structured logging configuration."""
import logging
import sys

from opentelemetry import trace
from pythonjsonlogger import jsonlogger

from storefront.config import SERVICE_NAME, Settings

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with trace context and service."""

    def __init__(self, *args, environment: str = "development", **kwargs):
        super().__init__(*args, **kwargs)
        self.environment = environment

    def add_fields(self, log_record, record, message_dict):
        """Add custom fields to log record."""
        super().add_fields(log_record, record, message_dict)

        span = trace.get_current_span()
        if span and span.get_span_context().is_valid:
            ctx = span.get_span_context()
            log_record['trace_id'] = format(ctx.trace_id, '032x')
            log_record['span_id'] = format(ctx.span_id, '016x')

        log_record['service'] = SERVICE_NAME
        log_record['env'] = self.environment

        if 'message' in log_record:
            log_record['msg'] = log_record.pop('message')


def _add_otlp_handler(root_logger: logging.Logger, settings: Settings) -> None:
    """Ship log records to the OTLP collector as well as stdout."""
    # The OpenTelemetry logs SDK is still published under private module names
    from opentelemetry._logs import set_logger_provider
    from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry.sdk.resources import Resource

    logger_provider = LoggerProvider(resource=Resource.create({
        "service.name": SERVICE_NAME,
        "deployment.environment": settings.env
    }))
    logger_provider.add_log_record_processor(
        BatchLogRecordProcessor(OTLPLogExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True
        ))
    )
    set_logger_provider(logger_provider)
    root_logger.addHandler(LoggingHandler(level=logging.INFO, logger_provider=logger_provider))


def setup_logging(settings: Settings) -> None:
    """
    Configure structured logging for the application.

    Replaces any handlers already on the root logger with a JSON stdout
    handler, plus an OTLP handler when telemetry is enabled.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = CustomJsonFormatter(
        '%(levelname)s %(name)s %(message)s',
        rename_fields={'levelname': 'level'},
        environment=settings.env,
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.otel_enabled:
        try:
            _add_otlp_handler(root_logger, settings)
            logging.info("OTLP logging handler configured")
        except Exception as e:
            # stdout logging keeps working without the collector
            logging.warning(f"Failed to configure OTLP logging handler: {e}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
