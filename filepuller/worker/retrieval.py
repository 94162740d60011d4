"""
Object retrieval and cleanup.

Objects are streamed into a hidden temporary file beside the destination,
fsynced, and renamed into place, so a reader never sees a partially written
file under its final name. A failed or cancelled transfer removes its
temporary file, leaving nothing that would get in the way of a retry.
"""

import asyncio
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, BinaryIO, Protocol

from nats.js.errors import ObjectDeletedError, ObjectNotFoundError

from filepuller.constants import PARTIAL_FILE_PREFIX, PARTIAL_FILE_SUFFIX
from filepuller.errors import RetrievalError, UnsafeKeyError
from filepuller.types.transfer import TransferResult

logger = logging.getLogger(__name__)


class ObjectStoreHandle(Protocol):
    """
    The subset of `nats.js.object_store.ObjectStore` the retriever relies on.
    """

    async def get(
        self,
        name: str,
        writeinto: BinaryIO | None = None,
        show_deleted: bool | None = False,
    ) -> Any: ...

    async def delete(self, name: str) -> Any: ...


class ObjectRetriever:
    """
    Moves objects from the bucket to the local filesystem.

    Safe to share between concurrently running handlers as long as they
    work on different keys.
    """

    def __init__(
        self,
        store: ObjectStoreHandle,
        *,
        show_deleted: bool = False,
        delete_timeout: float = 10.0,
    ):
        """
        Initialize the retriever.

        Args:
            store: Object store bucket handle.
            show_deleted: Whether objects marked deleted but not yet purged
                may still be read.
            delete_timeout: Seconds allowed for a delete round-trip.
        """
        self._store = store
        self._show_deleted = show_deleted
        self._delete_timeout = delete_timeout

    async def fetch(self, key: str, destination: Path, *, timeout: float) -> TransferResult:
        """
        Write the object stored under `key` to `destination`.

        Returns only once the content has been fsynced and renamed into place.

        Args:
            key: Object key in the bucket.
            destination: Final path of the file.
            timeout: Seconds allowed for the whole transfer.

        Returns:
            TransferResult describing the written file.

        Raises:
            UnsafeKeyError: If a directory occupies `destination` or a file
                occupies one of its parents; retrying cannot help.
            RetrievalError: On any other failure.

        No file is left at `destination` or beside it on failure.
        """
        start_time = time.monotonic()

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, partial_name = tempfile.mkstemp(
                prefix=f"{PARTIAL_FILE_PREFIX}{destination.name}.",
                suffix=PARTIAL_FILE_SUFFIX,
                dir=destination.parent,
            )
        except (FileExistsError, NotADirectoryError) as e:
            raise UnsafeKeyError(key, f"{destination.parent} is not a directory") from e
        except OSError as e:
            raise RetrievalError(key, f"Unable to prepare {destination.parent}: {e}") from e

        partial = Path(partial_name)
        committed = False

        try:
            with os.fdopen(fd, "wb") as fh:
                await asyncio.wait_for(
                    self._store.get(key, writeinto=fh, show_deleted=self._show_deleted),
                    timeout,
                )
                fh.flush()
                size = fh.tell()
                await asyncio.to_thread(os.fsync, fh.fileno())

            await asyncio.to_thread(_commit, partial, destination)
            committed = True
        except (IsADirectoryError, NotADirectoryError) as e:
            raise UnsafeKeyError(key, f"cannot replace {destination}: {e.strerror}") from e
        except asyncio.TimeoutError as e:
            raise RetrievalError(key, f"timed out after {timeout}s") from e
        except Exception as e:
            raise RetrievalError(key, str(e) or type(e).__name__) from e
        finally:
            if not committed:
                partial.unlink(missing_ok=True)

        return TransferResult(
            key=key,
            destination=destination,
            size_bytes=size,
            duration_ms=(time.monotonic() - start_time) * 1000,
        )

    async def delete(self, key: str) -> bool:
        """
        Remove the object stored under `key`.

        Idempotent: an object that is already gone counts as removed.

        Returns:
            True if the object is gone, False if it may still be in the bucket.
        """
        try:
            await asyncio.wait_for(self._store.delete(key), self._delete_timeout)
        except (ObjectNotFoundError, ObjectDeletedError):
            logger.info("Object already absent", extra={"object_key": key})
            return True
        except Exception as e:
            logger.warning(
                "Unable to delete object",
                extra={"object_key": key, "error": str(e) or type(e).__name__},
            )
            return False

        logger.debug("Deleted object", extra={"object_key": key})
        return True


def _commit(partial: Path, destination: Path) -> None:
    """Rename `partial` over `destination` and persist the directory entry."""
    os.replace(partial, destination)

    dir_fd = os.open(destination.parent, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def sweep_partial_files(root: Path, min_age_seconds: float = 0.0) -> int:
    """
    Remove temporary files left under `root` by an interrupted process.

    Another puller may share the destination root, so only files untouched
    for at least `min_age_seconds` are removed. Pass the retrieval timeout:
    a live transfer created its file less than that long ago.

    Returns:
        Number of files removed.
    """
    if not root.is_dir():
        return 0

    cutoff = time.time() - min_age_seconds
    removed = 0
    for partial in root.rglob(f"{PARTIAL_FILE_PREFIX}*{PARTIAL_FILE_SUFFIX}"):
        try:
            if not partial.is_file() or partial.stat().st_mtime > cutoff:
                continue
            partial.unlink()
        except FileNotFoundError:
            continue
        removed += 1
        logger.info("Removed stale partial file", extra={"path": str(partial)})

    return removed
