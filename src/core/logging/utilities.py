"""Logging utility functions."""

import logging
from typing import Any


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from PipelineError subclasses and
    truncates long error messages.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields

    Example:
        try:
            await store.upsert_user(user)
        except PersistenceError as e:
            log_exception(logger, e, "Upsert failed", event_id=envelope.event_id)
    """
    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)


def format_cycle_output(
    cycle_count: int,
    succeeded: int,
    dead_lettered: int,
    sink_failures: int = 0,
    commit_failures: int = 0,
    since_last: dict[str, int] | None = None,
    interval_seconds: int = 30,
) -> str:
    """
    Format standardized cycle output for workers with delta tracking.

    Args:
        cycle_count: Current cycle number
        succeeded: Total count of persisted envelopes
        dead_lettered: Total count of envelopes routed to the dead-letter sink
        sink_failures: Total count of dead-letter pushes that failed
        commit_failures: Total count of rejected offset commits
        since_last: Optional delta counts since last cycle (keys: succeeded, dead_lettered)
        interval_seconds: Cycle interval in seconds (default: 30)

    Returns:
        Formatted cycle output string

    Example:
        >>> format_cycle_output(1, 1200, 34)
        'Cycle 1: processed=1234 (succeeded=1200, dead_lettered=34)'
        >>> format_cycle_output(5, 1200, 34, since_last={"succeeded": 240, "dead_lettered": 0})
        'Cycle 5: +240 this cycle | total: 1200 succeeded, 34 dead-lettered | 8.0 msg/s'
    """
    if since_last is not None:
        delta_total = since_last.get("succeeded", 0) + since_last.get("dead_lettered", 0)
        rate = delta_total / interval_seconds if interval_seconds > 0 else 0

        total_parts = [f"{succeeded} succeeded"]
        if dead_lettered > 0:
            total_parts.append(f"{dead_lettered} dead-lettered")
        if sink_failures > 0:
            total_parts.append(f"{sink_failures} sink failures")
        if commit_failures > 0:
            total_parts.append(f"{commit_failures} commit failures")

        parts = [
            f"+{delta_total} this cycle",
            f"total: {', '.join(total_parts)}",
            f"{rate:.1f} msg/s",
        ]
        return f"Cycle {cycle_count}: {' | '.join(parts)}"

    parts = [f"succeeded={succeeded}", f"dead_lettered={dead_lettered}"]
    if sink_failures > 0:
        parts.append(f"sink_failures={sink_failures}")
    if commit_failures > 0:
        parts.append(f"commit_failures={commit_failures}")

    return f"Cycle {cycle_count}: processed={succeeded + dead_lettered} ({', '.join(parts)})"


_BANNER_FIELDS: list[tuple[str, str]] = [
    ("instance_id", "Instance:     {}"),
    ("domain", "Domain:       {}"),
    ("input_topic", "Input Topic:  {}"),
    ("consumer_group", "Group:        {}"),
    ("database", "Database:     {}"),
    ("dead_letter", "Dead Letter:  {}"),
    ("health_port", "Health:       http://localhost:{}"),
    ("metrics_port", "Metrics:      http://localhost:{}/metrics"),
]


def log_startup_banner(
    logger: logging.Logger,
    worker_name: str,
    **kwargs: Any,
) -> None:
    """
    Log startup banner with worker configuration.

    Args:
        logger: Logger instance
        worker_name: Worker name (e.g., "Event Ingester")
        **kwargs: Optional fields: instance_id, domain, input_topic,
            consumer_group, database, dead_letter, health_port, metrics_port, version
    """
    separator = "=" * 50

    lines = ["", separator, worker_name]

    version = kwargs.get("version")
    if version:
        lines.append(f"Version: {version}")

    lines.append(separator)

    for field_name, fmt in _BANNER_FIELDS:
        value = kwargs.get(field_name)
        if value:
            lines.append(fmt.format(value))

    lines.append(separator)
    lines.append("")

    logger.info("\n".join(lines))
