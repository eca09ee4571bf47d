"""Timing instrumentation for channel round-trips."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any
from typing import AsyncGenerator


logger = logging.getLogger(__name__)


def _render(operation: str, duration_ms: float, extra: dict[str, Any] | None) -> str:
    extra_str = " ".join(f"{k}={v}" for k, v in (extra or {}).items())
    return f"TIMING {operation} duration_ms={duration_ms:.2f} {extra_str}".strip()


@asynccontextmanager
async def async_timing_context(
    operation: str, *, log_threshold_ms: float = 0.0, extra: dict[str, Any] | None = None
) -> AsyncGenerator[dict[str, Any], None]:
    """Time an awaited block and log it once it exits.

    The yielded dict can be enriched inside the block (for example with the
    number of bytes moved); those keys are included in the log line.

    Example:
        async with async_timing_context("channel.send_message", extra={"batch": 0}) as t:
            message = await channel.send_message(channel_id, attachments)
            t["message_id"] = message.id
        # Logs: "TIMING channel.send_message duration_ms=812.40 batch=0 message_id=1313..."
    """
    ctx: dict[str, Any] = {"start": time.perf_counter()}
    if extra:
        ctx.update(extra)

    try:
        yield ctx
    finally:
        duration_ms = (time.perf_counter() - ctx["start"]) * 1000.0
        ctx["duration_ms"] = duration_ms

        if duration_ms >= log_threshold_ms:
            fields = {k: v for k, v in ctx.items() if k not in ("start", "duration_ms")}
            logger.info(_render(operation, duration_ms, fields))


def log_timing(operation: str, duration_ms: float, *, extra: dict[str, Any] | None = None) -> None:
    """Log a manually measured duration in the same ``TIMING`` format."""
    logger.info(_render(operation, duration_ms, extra))
