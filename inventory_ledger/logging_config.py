import logging
import os
import opentelemetry.trace
from azure.monitor.opentelemetry import configure_azure_monitor

# Only configure Azure Monitor when running inside the Functions host
if os.environ.get("FUNCTIONS_WORKER_RUNTIME"):
    try:
        configure_azure_monitor()
        logging.info("Azure Monitor OpenTelemetry configured successfully")
    except Exception as e:
        logging.error(f"Error configuring Azure Monitor: {str(e)}")

# Tracer shared by the pipelines and the projector
tracer = opentelemetry.trace.get_tracer("inventory_ledger")

logger = logging.getLogger("inventory_ledger")
logger.setLevel(logging.INFO)

if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)


def get_child_logger(name):
    """Get a child logger with the given name."""
    return logger.getChild(name)


def mark_span_error(span, exc: Exception) -> None:
    """Record the error attributes used across the service on a span."""
    span.set_attribute("error", True)
    span.set_attribute("error.type", type(exc).__name__)
    span.set_attribute("error.message", str(exc))
