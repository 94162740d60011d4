"""
Pytest configuration and shared fixtures.
"""

from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from filepuller.config import Settings
from filepuller.observability.metrics import MetricsCollector
from filepuller.types.transfer import TransferContext
from filepuller.worker.retrieval import ObjectRetriever
from tests.fakes import FakeObjectStore, FakeSubscription

TEST_TOPICBASE = "uploads"


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    """Destination root for transferred files."""
    root = tmp_path / "out"
    root.mkdir()
    return root


@pytest.fixture
def test_settings(tmp_path: Path, destination: Path) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        nats_url="tls://localhost:4222",
        nats_ca=str(tmp_path / "ca.pem"),
        nats_key=str(tmp_path / "client-key.pem"),
        nats_cert=str(tmp_path / "client.pem"),
        puller_stream="UPLOADS",
        puller_topicbase=TEST_TOPICBASE,
        puller_consumer="filepuller",
        puller_bucket="uploads",
        puller_destination=destination,
        puller_fetch_timeout_seconds=0.02,
        puller_retrieval_timeout_seconds=2,
        puller_heartbeat_interval_seconds=0,
        puller_provision_timeout_seconds=1,
        metrics_port=0,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def registry() -> CollectorRegistry:
    """Isolated metrics registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MetricsCollector:
    return MetricsCollector(registry=registry)


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def subscription() -> FakeSubscription:
    return FakeSubscription()


@pytest.fixture
def context(
    test_settings: Settings,
    store: FakeObjectStore,
    metrics: MetricsCollector,
) -> TransferContext:
    """Transfer context wired to the in-memory object store."""
    retriever = ObjectRetriever(
        store,
        show_deleted=test_settings.puller_show_deleted,
        delete_timeout=test_settings.puller_delete_timeout_seconds,
    )
    return TransferContext(settings=test_settings, retriever=retriever, metrics=metrics)

