"""
Worker process for pulling uploaded files.

The worker fetches upload notifications from the durable consumer, hands
each one to the notification handler as its own task, and drains cleanly on
shutdown or when the subscription fails.
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Protocol

from nats.js import JetStreamContext
from pydantic import ValidationError

from filepuller.broker import connect, load_tls_context, open_jetstream, provision_topology
from filepuller.config import Settings, get_settings
from filepuller.constants import DeliveryOutcome, ExitCode
from filepuller.errors import ConsumptionError, ProvisioningError, UnsafeKeyError
from filepuller.observability.logging import setup_logging
from filepuller.observability.metrics import get_metrics, setup_metrics
from filepuller.observability.tracing import setup_tracing, shutdown_tracing
from filepuller.types.transfer import Delivery, Notification, TransferContext
from filepuller.worker.handlers import (
    nak_notification,
    process_notification,
    terminate_notification,
)
from filepuller.worker.retrieval import ObjectRetriever, sweep_partial_files

logger = logging.getLogger(__name__)


class PullSubscription(Protocol):
    """The subset of `nats.js.JetStreamContext.PullSubscription` the worker uses."""

    async def fetch(self, batch: int = 1, timeout: float | None = 5) -> list[Delivery]: ...

    async def unsubscribe(self) -> None: ...


class Worker:
    """
    Notification worker that fetches and processes uploads.

    Features:
    - Bounded concurrency, one task per notification
    - At most one notification per object key in flight
    - In-progress heartbeats so slow transfers are not redelivered elsewhere
    - Drain on SIGTERM/SIGINT or subscription failure: stop fetching, let
      in-flight notifications finish, then release the subscription
    """

    def __init__(
        self,
        subscription: PullSubscription,
        context: TransferContext,
        worker_id: str | None = None,
        max_concurrency: int | None = None,
        fetch_timeout: float | None = None,
        heartbeat_interval: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            subscription: Pull subscription bound to the durable consumer.
            context: Shared handles for the handler.
            worker_id: Identifier used in logs. Defaults to hostname + PID.
            max_concurrency: Notifications processed at once.
            fetch_timeout: Seconds to wait for notifications per fetch.
            heartbeat_interval: Seconds between in-progress signals; 0 disables.
        """
        settings = context.settings

        self.worker_id = worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.max_concurrency = max_concurrency or settings.puller_max_concurrency
        self.fetch_timeout = fetch_timeout or settings.puller_fetch_timeout_seconds
        self.heartbeat_interval = (
            settings.puller_heartbeat_interval_seconds
            if heartbeat_interval is None
            else heartbeat_interval
        )

        self.error: BaseException | None = None

        self._subscription = subscription
        self._context = context
        self._settings = settings
        self._running = False
        self._in_flight: dict[str, tuple[Notification, asyncio.Task]] = {}
        self._heartbeat_task: asyncio.Task | None = None
        self._metrics = context.metrics

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight_keys(self) -> list[str]:
        """Object keys currently being processed."""
        return list(self._in_flight)

    async def start(self) -> None:
        """Run the worker until stopped, then drain."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "max_concurrency": self.max_concurrency},
        )

        self._running = True

        if self.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        while self._running:
            try:
                await self._poll_and_dispatch()
            except Exception as e:
                self.fail(e)

        await self._drain()

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop fetching; in-flight notifications run to completion."""
        if self._running:
            logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False

    def fail(self, error: BaseException) -> None:
        """
        Handle a subscription-level error by draining instead of crashing.

        Only the first error is kept.
        """
        self._metrics.record_subscription_error()
        logger.error(
            "Error consuming notifications, draining",
            extra={"worker_id": self.worker_id, "error": str(error) or type(error).__name__},
        )
        if self.error is None:
            self.error = error
        self._running = False

    async def _poll_and_dispatch(self) -> int:
        """
        Fetch as many notifications as there are free slots and dispatch them.

        Returns:
            Number of notifications fetched.
        """
        free = self.max_concurrency - len(self._in_flight)
        if free <= 0:
            tasks = [task for _, task in self._in_flight.values()]
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            return 0

        try:
            msgs = await self._subscription.fetch(batch=free, timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            # No notifications pending
            return 0

        for msg in msgs:
            await self._dispatch(msg)

        return len(msgs)

    async def _dispatch(self, msg: Delivery) -> None:
        if not self._running:
            # Fetched while a stop was in progress: hand it straight back.
            await nak_notification(msg, _describe(msg), None)
            self._metrics.record_outcome(DeliveryOutcome.RELEASED)
            return

        logger.debug("Received notification", extra={"payload": _describe(msg)})

        try:
            notification = Notification.from_msg(
                msg,
                quote_chars=self._settings.puller_key_quote_chars,
                strip_destination_quotes=self._settings.puller_strip_destination_quotes,
                ack_wait_seconds=self._settings.puller_ack_wait_seconds,
            )
        except UnsafeKeyError as e:
            logger.error(
                "Rejecting notification",
                extra={"object_key": e.key, "error": e.reason},
            )
            await terminate_notification(msg, e.key)
            self._metrics.record_outcome(DeliveryOutcome.REJECTED)
            return

        if notification.key in self._in_flight:
            logger.info(
                "Object already in flight, deferring notification",
                extra={
                    "object_key": notification.key,
                    "retry_in_seconds": self._settings.puller_nak_delay_seconds,
                },
            )
            await nak_notification(
                msg, notification.key, self._settings.puller_nak_delay_seconds
            )
            self._metrics.record_outcome(DeliveryOutcome.DEFERRED)
            return

        task = asyncio.create_task(self._execute(notification))
        self._in_flight[notification.key] = (notification, task)

    async def _execute(self, notification: Notification) -> None:
        """
        Run the handler for one notification and release its slot.

        Args:
            notification: The notification to process.
        """
        self._metrics.in_flight.inc()

        try:
            await process_notification(notification, self._context)
        except Exception as e:
            logger.exception(
                "Exception processing notification",
                extra={"object_key": notification.key, "error": str(e)},
            )
            await nak_notification(
                notification.msg, notification.key, self._settings.puller_nak_delay_seconds
            )
        finally:
            self._in_flight.pop(notification.key, None)
            self._metrics.in_flight.dec()

    async def _heartbeat_loop(self) -> None:
        """
        Periodically signal progress on in-flight notifications.

        This keeps the broker from redelivering a notification whose
        transfer is still running when the ack wait elapses.
        """
        while True:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                for notification, _ in list(self._in_flight.values()):
                    try:
                        await notification.msg.in_progress()
                    except Exception as e:
                        logger.warning(
                            "Unable to extend ack wait",
                            extra={"object_key": notification.key, "error": str(e)},
                        )
                    else:
                        logger.debug(
                            "Extended ack wait",
                            extra={"object_key": notification.key},
                        )

            except asyncio.CancelledError:
                break

    async def _drain(self) -> None:
        """Wait for in-flight notifications, then release the subscription."""
        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} notifications to complete")
            tasks = [task for _, task in self._in_flight.values()]
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass

        try:
            await self._subscription.unsubscribe()
        except Exception as e:
            logger.warning("Unable to unsubscribe", extra={"error": str(e)})


def _describe(msg: Delivery) -> str:
    return msg.data.decode("utf-8", errors="replace")


async def bind_subscription(js: JetStreamContext, settings: Settings) -> PullSubscription:
    """
    Bind a pull subscription to the provisioned durable consumer.

    Raises:
        ProvisioningError: With the consumer exit code on failure.
    """
    try:
        return await js.pull_subscribe_bind(settings.puller_consumer, settings.puller_stream)
    except Exception as e:
        raise ProvisioningError(
            "consumer",
            ExitCode.CONSUMER,
            f"Unable to subscribe to consumer {settings.puller_consumer}: {e}",
        ) from e


async def run_async() -> int:
    """
    Run the worker asynchronously.

    Returns:
        Process exit code.
    """
    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging()
        logger.error(
            "Invalid configuration",
            extra={"error": str(e), "exit_code": int(ExitCode.CONFIG)},
        )
        return ExitCode.CONFIG

    setup_logging(
        settings.log_level,
        settings.log_format,
        static_fields={"consumer": settings.puller_consumer, "bucket": settings.puller_bucket},
    )
    setup_metrics(settings.metrics_port)
    setup_tracing(settings.otel_service_name, settings.otel_exporter_otlp_endpoint)

    worker: Worker | None = None

    async def on_connection_closed() -> None:
        if worker is not None and worker.running:
            worker.fail(ConsumptionError("Broker connection closed"))

    nc = None
    try:
        tls = load_tls_context(settings.nats_ca, settings.nats_key, settings.nats_cert)
        nc = await connect(
            settings.nats_url,
            tls,
            connect_timeout=settings.puller_connect_timeout_seconds,
            closed_cb=on_connection_closed,
        )
        js = await open_jetstream(nc, timeout=settings.puller_provision_timeout_seconds)
        topology = await provision_topology(js, settings)
        subscription = await bind_subscription(js, settings)
    except ProvisioningError as e:
        logger.error(
            "Startup failed",
            extra={"stage": e.stage, "error": e.message, "exit_code": int(e.exit_code)},
        )
        if nc is not None:
            await nc.close()
        shutdown_tracing()
        return e.exit_code

    if settings.puller_sweep_partials:
        sweep_partial_files(
            settings.puller_destination,
            min_age_seconds=settings.puller_retrieval_timeout_seconds,
        )

    retriever = ObjectRetriever(
        topology.object_store,
        show_deleted=settings.puller_show_deleted,
        delete_timeout=settings.puller_delete_timeout_seconds,
    )
    context = TransferContext(settings=settings, retriever=retriever, metrics=get_metrics())
    worker = Worker(subscription, context)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        try:
            await nc.drain()
        except Exception as e:
            logger.warning("Unable to drain broker connection", extra={"error": str(e)})
        shutdown_tracing()

    if worker.error is not None:
        return ExitCode.CONSUMPTION
    return ExitCode.OK


def run() -> None:
    """Run the worker."""
    sys.exit(asyncio.run(run_async()))


if __name__ == "__main__":
    run()
