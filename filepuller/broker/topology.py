"""
Queue topology provisioning.

Idempotently ensures the work-queue stream, the durable consumer and the
object-store bucket exist with the declared policies. Each stage maps to its
own exit code so a failed start tells the operator which piece is missing.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, TypeVar

from nats.js import JetStreamContext
from nats.js.api import (
    AckPolicy,
    ConsumerConfig,
    ConsumerInfo,
    DeliverPolicy,
    ObjectStoreConfig,
    ReplayPolicy,
    RetentionPolicy,
    StorageType,
    StoreCompression,
    StreamConfig,
    StreamInfo,
)
from nats.js.errors import BucketNotFoundError, NotFoundError
from nats.js.object_store import ObjectStore

from filepuller.config import Settings
from filepuller.constants import CONSUMER_DESCRIPTION, ExitCode
from filepuller.errors import ProvisioningError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Topology:
    """Handles produced by provisioning, consumed by the worker."""

    stream: StreamInfo
    consumer: ConsumerInfo
    object_store: ObjectStore


def build_stream_config(settings: Settings) -> StreamConfig:
    """Work-queue stream capturing every subject under the topic base."""
    return StreamConfig(
        name=settings.puller_stream,
        subjects=settings.stream_subjects,
        retention=RetentionPolicy.WORK_QUEUE,
    )


def build_consumer_config(settings: Settings) -> ConsumerConfig:
    """Durable, explicitly acknowledged consumer of upload notifications."""
    return ConsumerConfig(
        name=settings.puller_consumer,
        durable_name=settings.puller_consumer,
        description=CONSUMER_DESCRIPTION,
        deliver_policy=DeliverPolicy.ALL,
        ack_policy=AckPolicy.EXPLICIT,
        ack_wait=settings.puller_ack_wait_seconds,
        max_deliver=settings.puller_max_deliver,
        filter_subject=settings.upload_subject,
        replay_policy=ReplayPolicy.INSTANT,
    )


def build_object_store_config(settings: Settings) -> ObjectStoreConfig:
    """File-backed bucket holding the uploaded objects."""
    return ObjectStoreConfig(
        bucket=settings.puller_bucket,
        storage=StorageType.FILE,
        replicas=settings.puller_object_store_replicas,
        max_bytes=settings.puller_object_store_max_bytes or -1,
    )


async def _bounded(stage: str, exit_code: ExitCode, call: Awaitable[T], timeout: float) -> T:
    try:
        return await asyncio.wait_for(call, timeout)
    except ProvisioningError:
        raise
    except asyncio.TimeoutError as e:
        raise ProvisioningError(stage, exit_code, f"timed out after {timeout}s") from e


async def ensure_stream(js: JetStreamContext, settings: Settings) -> StreamInfo:
    """
    Create the stream, or update it in place when it already exists.

    Raises:
        ProvisioningError: With the stream exit code on any failure.
    """
    config = build_stream_config(settings)

    try:
        try:
            await js.stream_info(config.name)
        except NotFoundError:
            info = await js.add_stream(config=config)
            logger.info("Created stream", extra={"stream": config.name})
        else:
            info = await js.update_stream(config=config)
            logger.info("Updated stream", extra={"stream": config.name})
    except Exception as e:
        raise ProvisioningError(
            "stream", ExitCode.STREAM, f"Error creating stream {config.name}: {e}"
        ) from e

    return info


async def ensure_consumer(js: JetStreamContext, settings: Settings) -> ConsumerInfo:
    """
    Create or update the durable consumer on the stream.

    Raises:
        ProvisioningError: With the consumer exit code on any failure.
    """
    config = build_consumer_config(settings)

    try:
        info = await js.add_consumer(settings.puller_stream, config=config)
    except Exception as e:
        raise ProvisioningError(
            "consumer",
            ExitCode.CONSUMER,
            f"Unable to create consumer {config.durable_name}: {e}",
        ) from e

    logger.info(
        "Consumer ready",
        extra={
            "consumer": config.durable_name,
            "filter_subject": config.filter_subject,
            "num_pending": getattr(info, "num_pending", None),
        },
    )
    return info


async def ensure_object_store(js: JetStreamContext, settings: Settings) -> ObjectStore:
    """
    Bind to the bucket, creating it when missing, then apply compression
    and size limits to its backing stream.

    Raises:
        ProvisioningError: With the object store exit code on any failure.
    """
    config = build_object_store_config(settings)

    try:
        try:
            store = await js.object_store(config.bucket)
        except BucketNotFoundError:
            store = await js.create_object_store(config.bucket, config=config)
            logger.info("Created object store bucket", extra={"bucket": config.bucket})

        await _apply_bucket_limits(js, settings)
    except Exception as e:
        raise ProvisioningError(
            "object_store",
            ExitCode.OBJECT_STORE,
            f"Unable to create object store bucket connection {config.bucket}: {e}",
        ) from e

    return store


async def _apply_bucket_limits(js: JetStreamContext, settings: Settings) -> None:
    """Bring the bucket's backing stream in line with the configured limits."""
    stream_name = f"OBJ_{settings.puller_bucket}"
    info = await js.stream_info(stream_name)
    current = info.config

    wanted: dict[str, Any] = {
        "compression": (
            StoreCompression.S2
            if settings.puller_object_store_compression
            else StoreCompression.NONE
        ),
        "max_bytes": settings.puller_object_store_max_bytes or -1,
    }
    changed = {
        name: value for name, value in wanted.items() if getattr(current, name, None) != value
    }
    if not changed:
        return

    await js.update_stream(config=dataclasses.replace(current, **changed))
    logger.info(
        "Updated object store limits",
        extra={"bucket": settings.puller_bucket, "changed": sorted(changed)},
    )


async def provision_topology(js: JetStreamContext, settings: Settings) -> Topology:
    """
    Ensure stream, consumer and bucket exist, in that order.

    Every stage is bounded by the provisioning timeout.

    Raises:
        ProvisioningError: From the first stage that fails.
    """
    timeout = settings.puller_provision_timeout_seconds

    stream = await _bounded("stream", ExitCode.STREAM, ensure_stream(js, settings), timeout)
    consumer = await _bounded(
        "consumer", ExitCode.CONSUMER, ensure_consumer(js, settings), timeout
    )
    object_store = await _bounded(
        "object_store", ExitCode.OBJECT_STORE, ensure_object_store(js, settings), timeout
    )

    return Topology(stream=stream, consumer=consumer, object_store=object_store)
