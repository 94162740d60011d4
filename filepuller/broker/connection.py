"""
Broker connection management.
Handles the NATS connection and the JetStream context built on it.
"""

import logging
import ssl
from collections.abc import Awaitable, Callable

import nats
from nats.aio.client import Client
from nats.js import JetStreamContext

from filepuller.constants import ExitCode
from filepuller.errors import ProvisioningError

logger = logging.getLogger(__name__)

ClosedCallback = Callable[[], Awaitable[None]]


async def _error_cb(e: Exception) -> None:
    logger.warning("Broker connection error", extra={"error": str(e)})


async def _disconnected_cb() -> None:
    logger.warning("Disconnected from broker")


async def _reconnected_cb() -> None:
    logger.info("Reconnected to broker")


async def connect(
    url: str,
    tls: ssl.SSLContext,
    *,
    connect_timeout: float = 5.0,
    closed_cb: ClosedCallback | None = None,
) -> Client:
    """
    Connect to the broker over mutual TLS.

    Transient disconnects are handled by the client's own reconnect logic
    and only logged here. `closed_cb` fires once the connection is closed
    for good.

    Args:
        url: Broker address.
        tls: Client TLS context.
        connect_timeout: Seconds allowed for the initial connection.
        closed_cb: Awaited when the connection closes permanently.

    Returns:
        Client: Connected broker client.

    Raises:
        ProvisioningError: If the connection cannot be established.
    """
    try:
        nc = await nats.connect(
            servers=url,
            tls=tls,
            name="filepuller",
            connect_timeout=connect_timeout,
            error_cb=_error_cb,
            disconnected_cb=_disconnected_cb,
            reconnected_cb=_reconnected_cb,
            closed_cb=closed_cb,
        )
    except Exception as e:
        raise ProvisioningError(
            "connect", ExitCode.CONNECT, f"Error connecting to {url}: {e}"
        ) from e

    logger.info("Connected to broker", extra={"url": url})
    return nc


async def open_jetstream(nc: Client, timeout: float = 10.0) -> JetStreamContext:
    """
    Create a JetStream context and check that JetStream is enabled for
    this account.

    Raises:
        ProvisioningError: If JetStream is unavailable.
    """
    try:
        js = nc.jetstream(timeout=timeout)
        await js.account_info()
    except Exception as e:
        raise ProvisioningError(
            "jetstream", ExitCode.JETSTREAM, f"Error creating JetStream context: {e}"
        ) from e

    return js
