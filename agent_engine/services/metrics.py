"""CloudWatch custom metrics emitter with background batching.

Publishes per-turn routing outcomes and per-provider call results for the
language-model fallback chain.  Every data point carries a ``Company``
dimension; nothing is aggregated across companies in-process.

* Metrics are collected in a thread-safe in-memory buffer.
* A daemon thread flushes the buffer to CloudWatch every
  ``FLUSH_INTERVAL_SECONDS`` when ``METRICS_ENABLED=true``.
* Otherwise data points are only logged at DEBUG level.

>>> from agent_engine.services.metrics import metrics
>>> metrics.record_provider_success("acme", "claude-primary", latency_ms=812.0)
>>> metrics.record_decision("acme", "escalated", latency_ms=40.2)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "AgentEngine"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
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

    def record_provider_success(self, company_id: str, provider_id: str, latency_ms: float) -> None:
        now = datetime.now(UTC)
        dims = [
            {"Name": "Company", "Value": company_id},
            {"Name": "Provider", "Value": provider_id},
        ]
        self._append(self._point("Provider/RequestCount", dims + [_status("success")], 1, "Count", now))
        self._append(self._point("Provider/Latency", dims, latency_ms, "Milliseconds", now))
        logger.debug("Metric: %s/%s success latency=%.1fms", company_id, provider_id, latency_ms)

    def record_provider_failure(
        self,
        company_id: str,
        provider_id: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        now = datetime.now(UTC)
        dims = [
            {"Name": "Company", "Value": company_id},
            {"Name": "Provider", "Value": provider_id},
        ]
        self._append(self._point("Provider/RequestCount", dims + [_status("failure")], 1, "Count", now))
        self._append(
            self._point(
                "Provider/ErrorCount",
                dims + [{"Name": "ErrorType", "Value": error_type}],
                1,
                "Count",
                now,
            )
        )
        if latency_ms > 0:
            self._append(self._point("Provider/Latency", dims, latency_ms, "Milliseconds", now))
        logger.debug(
            "Metric: %s/%s failure error=%s latency=%.1fms",
            company_id, provider_id, error_type, latency_ms,
        )

    def record_decision(self, company_id: str, outcome: str, latency_ms: float) -> None:
        now = datetime.now(UTC)
        dims = [
            {"Name": "Company", "Value": company_id},
            {"Name": "Outcome", "Value": outcome},
        ]
        self._append(self._point("Routing/DecisionCount", dims, 1, "Count", now))
        self._append(self._point("Routing/Latency", dims, latency_ms, "Milliseconds", now))
        logger.debug("Metric: %s decision=%s latency=%.1fms", company_id, outcome, latency_ms)

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
    def _point(name: str, dims: list[dict[str, str]], value: float, unit: str, ts: datetime) -> dict[str, Any]:
        return {"MetricName": name, "Dimensions": dims, "Timestamp": ts, "Value": value, "Unit": unit}

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
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


def _status(value: str) -> dict[str, str]:
    return {"Name": "Status", "Value": value}


metrics = MetricsClient()
