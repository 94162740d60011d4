"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import IntEnum, StrEnum


class ExitCode(IntEnum):
    """
    Process exit status, one per startup stage.

    A distinct code per failure class lets an operator tell from the exit
    status alone which piece of infrastructure was unavailable.
    """

    OK = 0
    CONFIG = 1
    CONNECT = 2
    JETSTREAM = 3
    STREAM = 4
    CONSUMER = 5
    OBJECT_STORE = 6
    TLS = 7
    CONSUMPTION = 8


class DeliveryOutcome(StrEnum):
    """
    Terminal decision taken for a single notification.

    - COMPLETED: file written, ack confirmed, source delete attempted
    - RETRIEVAL_FAILED: nak with delay, broker redelivers later
    - ACK_FAILED: file written but the ack was not confirmed
    - REJECTED: unusable key, terminated without retry
    - DEFERRED: same key already in flight, nak with delay
    - RELEASED: fetched after shutdown began, nak without delay
    """

    COMPLETED = "completed"
    RETRIEVAL_FAILED = "retrieval_failed"
    ACK_FAILED = "ack_failed"
    REJECTED = "rejected"
    DEFERRED = "deferred"
    RELEASED = "released"


# Default values
DEFAULT_RETRIEVAL_TIMEOUT_SECONDS = 300.0
DEFAULT_NAK_DELAY_SECONDS = 30.0
DEFAULT_ACK_WAIT_SECONDS = 300.0
CONSUMER_DESCRIPTION = "filepuller"

# Temporary files written next to the destination while a transfer is running
PARTIAL_FILE_PREFIX = ".filepuller-"
PARTIAL_FILE_SUFFIX = ".part"

# Metrics names
METRIC_NOTIFICATIONS = "filepuller_notifications_total"
METRIC_TRANSFER_DURATION = "filepuller_transfer_duration_seconds"
METRIC_BYTES_TRANSFERRED = "filepuller_bytes_transferred_total"
METRIC_DELETE_FAILURES = "filepuller_object_delete_failures_total"
METRIC_IN_FLIGHT = "filepuller_notifications_in_flight"
METRIC_SUBSCRIPTION_ERRORS = "filepuller_subscription_errors_total"

# Trace span names
SPAN_PROCESS_NOTIFICATION = "process_notification"
SPAN_RETRIEVE_OBJECT = "retrieve_object"
SPAN_ACK_NOTIFICATION = "ack_notification"
SPAN_DELETE_OBJECT = "delete_object"
