"""Unit tests for the container, logging and metrics wiring."""

import pytest
from prometheus_client import CollectorRegistry

from object_transfer.application.transfer_service import TransferService
from object_transfer.infrastructure.container import Container
from object_transfer.infrastructure.logging import get_logger, redact_secrets
from object_transfer.infrastructure.metrics import TransferMetrics


@pytest.mark.unit
class TestContainer:
    """Test dependency wiring."""

    def test_create_wires_service(self, container, test_config):
        """Test that the container builds a service from configuration."""
        assert isinstance(container.service, TransferService)
        assert container.config is test_config
        assert container.service.client.base_url == "http://s3.test"
        assert container.service.coordinator.settings.max_concurrency == 2

    def test_singleton(self, container):
        """Test that the container is created once."""
        assert Container.get() is container

    def test_reset(self, container):
        """Test that reset drops the instance."""
        Container.reset()
        assert Container._instance is None


@pytest.mark.unit
class TestLogging:
    """Test structured logging helpers."""

    def test_secrets_redacted(self):
        """Test that credential fields are masked."""
        event = redact_secrets(
            None,
            "info",
            {"event": "signed", "secret_key": "abc", "Authorization": "AWS4 ...", "bucket": "b"},
        )

        assert event["secret_key"] == "***"
        assert event["Authorization"] == "***"
        assert event["bucket"] == "b"

    def test_get_logger_binds_context(self):
        """Test that initial context is bound to the logger."""
        logger = get_logger("object_transfer.test", endpoint="http://s3.test")
        assert logger is not None


@pytest.mark.unit
class TestMetrics:
    """Test metric registration."""

    def test_isolated_registries(self):
        """Test that separate registries do not collide."""
        first_registry, second_registry = CollectorRegistry(), CollectorRegistry()
        first = TransferMetrics(first_registry)
        TransferMetrics(second_registry)

        first.transfers_started_total.labels(direction="upload").inc()

        assert first_registry.get_sample_value(
            "object_transfer_transfers_started_total", {"direction": "upload"}
        ) == 1.0
        assert second_registry.get_sample_value(
            "object_transfer_transfers_started_total", {"direction": "upload"}
        ) is None
