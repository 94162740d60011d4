"""
Type definitions for the file puller.
Contains input/output type definitions shared by the worker modules.
"""

from filepuller.types.transfer import (
    Delivery,
    Notification,
    TransferContext,
    TransferResult,
)

__all__ = [
    "Delivery",
    "Notification",
    "TransferContext",
    "TransferResult",
]
