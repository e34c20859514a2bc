"""
Patient-safe telemetry for the journal workflow.

No entry text, no symptoms, no wallet addresses, no keys.
Only step names, latencies, outcomes and exception class names.
"""
import logging
from typing import Literal, Optional

from azure.monitor.opentelemetry import configure_azure_monitor
from opentelemetry.trace import get_current_span

logger = logging.getLogger("medjournal.telemetry")

STEPS = ("classify", "sign", "persist")
OUTCOMES = ("success", "failure", "rejected", "timeout")


def init_telemetry(connection_string: Optional[str]) -> bool:
    """
    Initialize Azure Application Insights via OpenTelemetry.
    Returns False (telemetry disabled) when no connection string is set.
    """
    if not connection_string:
        return False

    configure_azure_monitor(connection_string=connection_string)
    logger.info("Telemetry exporter configured")
    return True


def emit_workflow_telemetry(
    step: Literal["classify", "sign", "persist"],
    latency_ms: int,
    outcome: Literal["success", "failure", "rejected", "timeout"],
):
    """
    Emit the single workflow event. Attributes are locked; no payloads.
    """
    assert step in STEPS, f"step must be one of {STEPS}, got {step}"
    assert isinstance(latency_ms, int), "latency_ms must be int"
    assert outcome in OUTCOMES, f"outcome must be one of {OUTCOMES}, got {outcome}"

    span = get_current_span()
    if not span:
        return

    span.add_event(
        name="medjournal.workflow_step",
        attributes={
            "step": step,
            "latency_ms": latency_ms,
            "outcome": outcome,
        },
    )


def scrub_exception_for_telemetry(exception: Exception) -> str:
    """Exception messages may quote upstream bodies; keep the class name only."""
    return type(exception).__name__


def emit_exception_telemetry(exception: Exception):
    span = get_current_span()
    if not span:
        return

    span.add_event(
        name="medjournal.exception",
        attributes={
            "exception_type": scrub_exception_for_telemetry(exception)
        },
    )
