"""Dependency injection container for the transfer engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

import structlog
from opentelemetry import trace

from object_transfer.application.transfer_service import TransferService
from object_transfer.infrastructure.config import Config, get_config
from object_transfer.infrastructure.logging import get_logger, setup_logging
from object_transfer.infrastructure.metrics import TransferMetrics, get_metrics
from object_transfer.infrastructure.tracing import setup_tracing


@dataclass
class Container:
    """Dependency injection container for transfer engine components."""

    config: Config
    logger: structlog.stdlib.BoundLogger
    tracer: trace.Tracer
    metrics: TransferMetrics
    service: TransferService

    _instance: ClassVar["Container | None"] = None

    @classmethod
    def create(cls) -> "Container":
        """Create and initialize the container with all dependencies."""
        if cls._instance is not None:
            return cls._instance

        config = get_config()
        setup_logging(config.observability.log_level, config.observability.log_format)
        logger = get_logger("object_transfer")
        tracer = setup_tracing(
            service_name=config.observability.otel_service_name,
            otlp_endpoint=config.observability.otlp_endpoint,
            environment=config.observability.environment,
        )
        metrics = get_metrics()
        service = TransferService.from_config(config, metrics=metrics)

        cls._instance = cls(
            config=config,
            logger=logger,
            tracer=tracer,
            metrics=metrics,
            service=service,
        )

        logger.info(
            "object_transfer_container_initialized",
            environment=config.observability.environment,
            endpoint=config.connection.base_url,
            region=config.connection.region,
            max_concurrency=config.transfer.max_concurrency,
        )

        return cls._instance

    @classmethod
    def get(cls) -> "Container":
        """Get the singleton container instance."""
        if cls._instance is None:
            return cls.create()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the container (useful for testing)."""
        if cls._instance is not None:
            cls._instance.service.close()
        cls._instance = None


def get_container() -> Container:
    """Get the dependency injection container."""
    return Container.get()
