"""
Notification handler.

Drives one notification through resolve -> retrieve -> ack -> delete. The
order is fixed: the broker only hears "done" once the file is durably in
place, and the source object is only removed once the broker has confirmed
the ack. Handlers may run several times for the same key (redelivery after
an ack timeout), so every step is safe to repeat.
"""

import logging
import time

from filepuller.constants import (
    SPAN_ACK_NOTIFICATION,
    SPAN_DELETE_OBJECT,
    SPAN_PROCESS_NOTIFICATION,
    SPAN_RETRIEVE_OBJECT,
    DeliveryOutcome,
)
from filepuller.errors import RetrievalError, UnsafeKeyError
from filepuller.observability.logging import bind_context
from filepuller.observability.tracing import get_tracer
from filepuller.types.transfer import Delivery, Notification, TransferContext
from filepuller.worker.paths import resolve_destination

logger = logging.getLogger(__name__)


async def nak_notification(msg: Delivery, key: str, delay: float | None) -> None:
    """
    Ask the broker to redeliver `msg`, after `delay` seconds if given.

    A failed nak is only logged: the broker redelivers anyway once the ack
    wait elapses.
    """
    try:
        await msg.nak(delay=delay)
    except Exception as e:
        logger.error(
            "Unable to negatively acknowledge notification",
            extra={"object_key": key, "error": str(e) or type(e).__name__},
        )


async def terminate_notification(msg: Delivery, key: str) -> None:
    """Tell the broker never to redeliver `msg`."""
    try:
        await msg.term()
    except Exception as e:
        logger.error(
            "Unable to terminate notification",
            extra={"object_key": key, "error": str(e) or type(e).__name__},
        )


async def process_notification(
    notification: Notification,
    context: TransferContext,
) -> DeliveryOutcome:
    """
    Process a single upload notification.

    Never raises for per-message failures; the returned outcome says which
    signal was sent to the broker.

    Args:
        notification: The notification to process.
        context: Shared handles.

    Returns:
        DeliveryOutcome for the notification.
    """
    bind_context(**notification.log_fields())

    with get_tracer().start_as_current_span(SPAN_PROCESS_NOTIFICATION) as span:
        span.set_attribute("object_key", notification.key)
        span.set_attribute("num_delivered", notification.num_delivered)

        outcome = await _run_sequence(notification, context)

        span.set_attribute("outcome", outcome.value)

    context.metrics.record_outcome(outcome)
    return outcome


async def _run_sequence(
    notification: Notification,
    context: TransferContext,
) -> DeliveryOutcome:
    settings = context.settings
    key = notification.key
    tracer = get_tracer()

    try:
        destination = resolve_destination(
            settings.puller_destination, notification.destination_name
        )
    except UnsafeKeyError as e:
        logger.error(
            "Rejecting notification",
            extra={"object_key": key, "error": e.reason},
        )
        await terminate_notification(notification.msg, key)
        return DeliveryOutcome.REJECTED

    logger.info(
        "Writing file to destination",
        extra={
            "object_key": key,
            "destination": str(destination),
            "redelivery": notification.is_redelivery,
            "redelivery_deadline": notification.redelivery_deadline.isoformat(),
        },
    )

    start_time = time.monotonic()
    try:
        with tracer.start_as_current_span(SPAN_RETRIEVE_OBJECT):
            result = await context.retriever.fetch(
                key,
                destination,
                timeout=settings.puller_retrieval_timeout_seconds,
            )
    except UnsafeKeyError as e:
        logger.error(
            "Rejecting notification",
            extra={"object_key": key, "error": e.reason},
        )
        context.metrics.record_transfer("failed", time.monotonic() - start_time)
        await terminate_notification(notification.msg, key)
        return DeliveryOutcome.REJECTED
    except RetrievalError as e:
        logger.warning(
            "Error getting file",
            extra={
                "object_key": key,
                "error": e.message,
                "retry_in_seconds": settings.puller_nak_delay_seconds,
            },
        )
        context.metrics.record_transfer("failed", time.monotonic() - start_time)
        await nak_notification(notification.msg, key, settings.puller_nak_delay_seconds)
        return DeliveryOutcome.RETRIEVAL_FAILED

    context.metrics.record_transfer(
        "succeeded", result.duration_ms / 1000, result.size_bytes
    )
    logger.info(
        "Successfully downloaded file",
        extra={
            "object_key": key,
            "destination": str(result.destination),
            "size_bytes": result.size_bytes,
            "duration": f"{result.duration_ms:.0f}ms",
        },
    )

    try:
        with tracer.start_as_current_span(SPAN_ACK_NOTIFICATION):
            await notification.msg.ack_sync(timeout=settings.puller_ack_timeout_seconds)
    except Exception as e:
        # The file is in place; a redelivery rewrites it and acks again.
        logger.error(
            "Unable to acknowledge notification",
            extra={"object_key": key, "error": str(e) or type(e).__name__},
        )
        return DeliveryOutcome.ACK_FAILED

    with tracer.start_as_current_span(SPAN_DELETE_OBJECT):
        deleted = await context.retriever.delete(key)
    if not deleted:
        context.metrics.record_delete_failure()

    return DeliveryOutcome.COMPLETED
