"""CloudWatch custom metrics emitter with background batching.

Publishes per-call metrics (count, latency, errors) for every external
service the assistant talks to (Anthropic, Google, GitHub, LinkedIn,
WhatsApp) plus a counter for turns that ran without long-term memory.

Design
------
* Metrics are collected in a thread-safe in-memory buffer.
* A daemon thread flushes the buffer to CloudWatch every
  ``FLUSH_INTERVAL_SECONDS`` (default 60 s).
* When running locally (``METRICS_ENABLED != "true"``), metrics are
  logged at DEBUG level but **not** pushed to CloudWatch.

Usage
-----
>>> from mnemo.services.metrics import metrics
>>> async with metrics.track("google", "GET /calendar/v3/events"):
...     ...
>>> metrics.record_degraded("memory.search")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "Mnemo"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self, enabled: bool | None = None) -> None:
        if enabled is None:
            enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._enabled = enabled
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful call to an external service."""
        now = datetime.now(UTC)
        self._append(self._datum(
            "Provider/RequestCount", 1, "Count", now,
            Service=service, Status="success",
        ))
        self._append(self._datum(
            "Provider/Latency", latency_ms, "Milliseconds", now,
            Service=service, Operation=operation,
        ))
        logger.debug(
            "Metric: %s %s success latency=%.1fms", service, operation, latency_ms,
        )

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed call to an external service."""
        now = datetime.now(UTC)
        self._append(self._datum(
            "Provider/RequestCount", 1, "Count", now,
            Service=service, Status="failure",
        ))
        self._append(self._datum(
            "Provider/ErrorCount", 1, "Count", now,
            Service=service, ErrorType=error_type,
        ))
        if latency_ms > 0:
            self._append(self._datum(
                "Provider/Latency", latency_ms, "Milliseconds", now,
                Service=service, Operation=operation,
            ))
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    def record_degraded(self, operation: str) -> None:
        """Record a turn step that fell back to running without memory."""
        self._append(self._datum(
            "Memory/DegradedCount", 1, "Count", datetime.now(UTC),
            Operation=operation,
        ))
        logger.debug("Metric: memory degraded during %s", operation)

    @asynccontextmanager
    async def track(self, service: str, operation: str) -> AsyncIterator[None]:
        """Time the wrapped block and record success or failure.

        Exceptions are recorded and re-raised unchanged.
        """
        t0 = time.perf_counter()
        try:
            yield
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            self.record_failure(
                service, operation, error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        else:
            elapsed = (time.perf_counter() - t0) * 1000
            self.record_success(service, operation, latency_ms=elapsed)

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    @staticmethod
    def _datum(
        name: str, value: float, unit: str, timestamp: datetime, **dimensions: str,
    ) -> dict[str, Any]:
        return {
            "MetricName": name,
            "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
            "Timestamp": timestamp,
            "Value": value,
            "Unit": unit,
        }

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info(
            "Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS,
        )


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
