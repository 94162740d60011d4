"""
Unit tests for queue topology provisioning.
"""

import pytest
from nats.js.api import (
    AckPolicy,
    DeliverPolicy,
    ReplayPolicy,
    RetentionPolicy,
    StorageType,
    StoreCompression,
    StreamConfig,
)

from filepuller.broker.topology import (
    build_consumer_config,
    build_object_store_config,
    ensure_object_store,
    ensure_stream,
    provision_topology,
)
from filepuller.config import Settings
from filepuller.constants import ExitCode
from filepuller.errors import ProvisioningError
from filepuller.worker.main import bind_subscription
from tests.fakes import FakeJetStream


@pytest.fixture
def js() -> FakeJetStream:
    return FakeJetStream()


class TestConfigs:
    """Tests for the declared broker policies."""

    def test_consumer_config(self, test_settings: Settings):
        config = build_consumer_config(test_settings)

        assert config.name == "filepuller"
        assert config.durable_name == "filepuller"
        assert config.description == "filepuller"
        assert config.ack_policy == AckPolicy.EXPLICIT
        assert config.ack_wait == 300
        assert config.deliver_policy == DeliverPolicy.ALL
        assert config.replay_policy == ReplayPolicy.INSTANT
        assert config.filter_subject == "uploads.upload"

    def test_object_store_config(self, test_settings: Settings):
        config = build_object_store_config(test_settings)

        assert config.bucket == "uploads"
        assert config.storage == StorageType.FILE
        assert config.replicas == 1
        assert config.max_bytes == -1


class TestProvisionTopology:
    """Tests for provision_topology."""

    @pytest.mark.asyncio
    async def test_creates_everything(self, js: FakeJetStream, test_settings: Settings):
        topology = await provision_topology(js, test_settings)

        stream = js.streams["UPLOADS"]
        assert stream.retention == RetentionPolicy.WORK_QUEUE
        assert stream.subjects == ["uploads.>"]
        assert ("UPLOADS", "filepuller") in js.consumers
        assert topology.object_store is js.buckets["uploads"]
        assert js.streams["OBJ_uploads"].compression == StoreCompression.S2

    @pytest.mark.asyncio
    async def test_is_idempotent(self, js: FakeJetStream, test_settings: Settings):
        await provision_topology(js, test_settings)
        js.calls.clear()

        await provision_topology(js, test_settings)

        assert "add_stream" not in js.calls
        assert "create_object_store" not in js.calls
        assert js.calls.count("update_stream") == 1

    @pytest.mark.asyncio
    async def test_existing_stream_is_updated(self, js: FakeJetStream, test_settings: Settings):
        js.streams["UPLOADS"] = StreamConfig(name="UPLOADS", subjects=["old.>"])

        await ensure_stream(js, test_settings)

        assert js.streams["UPLOADS"].subjects == ["uploads.>"]
        assert "add_stream" not in js.calls

    @pytest.mark.asyncio
    async def test_bucket_limits_applied(self, js: FakeJetStream, test_settings: Settings):
        settings = test_settings.model_copy(
            update={
                "puller_object_store_max_bytes": 1024,
                "puller_object_store_compression": False,
            }
        )

        await ensure_object_store(js, settings)

        backing = js.streams["OBJ_uploads"]
        assert backing.max_bytes == 1024
        assert backing.compression == StoreCompression.NONE

    @pytest.mark.parametrize(
        "call, stage, exit_code",
        [
            ("add_stream", "stream", ExitCode.STREAM),
            ("add_consumer", "consumer", ExitCode.CONSUMER),
            ("create_object_store", "object_store", ExitCode.OBJECT_STORE),
        ],
    )
    @pytest.mark.asyncio
    async def test_stage_failures_map_to_exit_codes(
        self,
        js: FakeJetStream,
        test_settings: Settings,
        call: str,
        stage: str,
        exit_code: ExitCode,
    ):
        js.fail[call] = RuntimeError("boom")

        with pytest.raises(ProvisioningError) as exc_info:
            await provision_topology(js, test_settings)

        assert exc_info.value.stage == stage
        assert exc_info.value.exit_code == exit_code
        assert "boom" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_stage_timeout(self, js: FakeJetStream, test_settings: Settings):
        js.delay["add_consumer"] = 5
        settings = test_settings.model_copy(update={"puller_provision_timeout_seconds": 0.05})

        with pytest.raises(ProvisioningError) as exc_info:
            await provision_topology(js, settings)

        assert exc_info.value.exit_code == ExitCode.CONSUMER
        assert "timed out" in exc_info.value.message


class TestBindSubscription:
    """Tests for binding the pull subscription."""

    @pytest.mark.asyncio
    async def test_binds_to_provisioned_consumer(
        self, js: FakeJetStream, test_settings: Settings
    ):
        await provision_topology(js, test_settings)

        subscription = await bind_subscription(js, test_settings)

        assert subscription is not None

    @pytest.mark.asyncio
    async def test_missing_consumer(self, js: FakeJetStream, test_settings: Settings):
        with pytest.raises(ProvisioningError) as exc_info:
            await bind_subscription(js, test_settings)

        assert exc_info.value.exit_code == ExitCode.CONSUMER
