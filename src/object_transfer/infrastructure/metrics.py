"""Prometheus metrics for the transfer engine."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class TransferMetrics:
    """Registry of all transfer engine metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Transfer metrics
        self.transfers_started_total = Counter(
            "object_transfer_transfers_started_total",
            "Total transfers started",
            ["direction"],  # upload, download
            registry=self._registry,
        )

        self.transfers_completed_total = Counter(
            "object_transfer_transfers_completed_total",
            "Total transfers completed",
            ["direction"],
            registry=self._registry,
        )

        self.transfers_aborted_total = Counter(
            "object_transfer_transfers_aborted_total",
            "Total transfers aborted",
            ["direction", "reason"],  # reason: error type name
            registry=self._registry,
        )

        self.transfers_active = Gauge(
            "object_transfer_transfers_active",
            "Number of transfers in progress",
            ["direction"],
            registry=self._registry,
        )

        self.transfer_duration_seconds = Histogram(
            "object_transfer_transfer_duration_seconds",
            "Whole-transfer duration in seconds",
            ["direction"],
            buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0, 3600.0),
            registry=self._registry,
        )

        self.bytes_transferred_total = Counter(
            "object_transfer_bytes_transferred_total",
            "Total bytes moved by succeeded parts",
            ["direction"],
            registry=self._registry,
        )

        # Part metrics
        self.parts_transferred_total = Counter(
            "object_transfer_parts_transferred_total",
            "Total parts transferred",
            ["direction"],
            registry=self._registry,
        )

        self.part_retries_total = Counter(
            "object_transfer_part_retries_total",
            "Total part retries scheduled",
            ["direction", "error_type"],
            registry=self._registry,
        )

        self.part_failures_total = Counter(
            "object_transfer_part_failures_total",
            "Total parts that failed permanently",
            ["direction", "error_type"],
            registry=self._registry,
        )

        self.part_latency_seconds = Histogram(
            "object_transfer_part_latency_seconds",
            "Part transfer latency in seconds, across all attempts",
            ["direction"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
            registry=self._registry,
        )

        # Integrity metrics
        self.integrity_errors_total = Counter(
            "object_transfer_integrity_errors_total",
            "Total integrity check failures",
            ["kind"],  # size, md5, sha256, part_length
            registry=self._registry,
        )

        # Signing metrics
        self.requests_signed_total = Counter(
            "object_transfer_requests_signed_total",
            "Total requests signed through the service",
            registry=self._registry,
        )

        self.presigned_urls_total = Counter(
            "object_transfer_presigned_urls_total",
            "Total presigned URLs generated",
            ["method"],
            registry=self._registry,
        )

        # System info
        self.system_info = Info(
            "object_transfer",
            "Transfer engine information",
            registry=self._registry,
        )


_metrics: TransferMetrics | None = None


def get_metrics() -> TransferMetrics:
    """Get the global metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = TransferMetrics()
    return _metrics


def start_metrics_server(port: int = 8010) -> None:
    """Start the Prometheus metrics HTTP server."""
    start_http_server(port)
