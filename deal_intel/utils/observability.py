"""
Structured Logging & Observability
Colorized logs for local runs, JSON lines in production, and helpers for
the pipeline's phase, inference and business events.
"""
import sys
from loguru import logger
from typing import Any
from deal_intel.config import Settings, get_settings


def configure_logging(settings: Settings | None = None):
    """
    Install the loguru sink for the current environment.

    Development output shows the bound activity id next to each line; with
    structured logging enabled every record is serialized as JSON, extras included.
    """
    settings = settings or get_settings()

    logger.remove()
    logger.configure(extra={"activity_id": "-"})

    if not settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<magenta>{extra[activity_id]}</magenta> | "
                "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
                "{message}"
            ),
            level=settings.log_level,
            colorize=True,
        )
    else:
        logger.add(sys.stderr, format="{message}", level=settings.log_level, serialize=True)

    logger.debug(
        f"Logging ready: level={settings.log_level}, structured={settings.enable_structured_logging}, "
        f"environment={settings.environment}"
    )


def log_phase(
    phase: str,
    activity_id: str,
    duration_ms: float | None = None,
    **context
):
    """
    Structured logging for pipeline phase transitions.

    Args:
        phase: Phase name (e.g., "collect", "aggregate", "commit")
        activity_id: The activity being processed
        duration_ms: Phase duration in milliseconds
        **context: Additional context (pairs, deals, skipped, etc.)

    Example:
        >>> log_phase("collect", "665f...", duration_ms=1840.2, pairs=3, failed=1)
    """
    log_data = {
        "event_type": "pipeline_phase",
        "phase": phase,
        "activity_id": activity_id,
    }

    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 2)

    log_data.update(context)

    logger.bind(**log_data).info(f"Phase {phase} | activity={activity_id}")


def log_inference_call(
    agent_name: str,
    model: str,
    duration_ms: float,
    success: bool = True,
    degraded: bool = False,
    estimated_input_tokens: int | None = None,
    error: str | None = None
):
    """
    Structured logging for inference calls.

    Enables latency analysis and error tracking per analyzer.

    Args:
        agent_name: Which analyzer made the call
        model: Model used (e.g., "openai:gpt-4o")
        duration_ms: Call latency in milliseconds
        success: Whether the call succeeded
        degraded: Whether the reduced-context prompt was used
        estimated_input_tokens: Estimated size of the prompt
        error: Error message if failed
    """
    log_data = {
        "event_type": "inference_call",
        "agent": agent_name,
        "model": model,
        "duration_ms": round(duration_ms, 2),
        "success": success,
        "degraded": degraded,
    }

    if estimated_input_tokens is not None:
        log_data["estimated_input_tokens"] = estimated_input_tokens

    if error:
        log_data["error"] = error

    level = "INFO" if success else "ERROR"
    logger.bind(**log_data).log(
        level,
        f"Inference: {agent_name} | {model} | {duration_ms:.0f}ms"
        + (" | degraded" if degraded else "")
    )


def log_pipeline_event(
    event_type: str,
    activity_id: str,
    **details: Any
):
    """
    Log business-critical pipeline events.

    Examples:
        - Pairs discovered
        - Activity committed
        - Activity rolled back

    Args:
        event_type: Type of event (e.g., "activity_committed")
        activity_id: The activity involved
        **details: Event-specific data
    """
    log_data = {
        "event_type": event_type,
        "activity_id": activity_id,
        **details
    }

    logger.bind(**log_data).success(f"Pipeline Event: {event_type}")
