# src/r2sync/worker.py
"""
Defines the transfer executor.

This module moves the bytes for a single work item in either direction:
streaming a local file into a `PutObject`, or streaming a `GetObject` body
into a local file. Every failure is converted into a failed outcome so one
bad item never takes down the rest of the run.
"""

import asyncio
import contextlib
import logging
import mimetypes
import os
import uuid
from pathlib import Path
from typing import IO, TYPE_CHECKING, Optional

from botocore.exceptions import BotoCoreError, ClientError

from r2sync.config import IMMUTABLE_CACHE_CONTROL
from r2sync.exceptions import TransferError
from r2sync.models import Direction, TransferOutcome, WorkItem

if TYPE_CHECKING:
    from aiobotocore.response import StreamingBody
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.type_defs import GetObjectOutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"
PARTIAL_SUFFIX: str = ".r2sync-part"


def guess_content_type(path: str) -> str:
    """
    Infers a MIME type from a file's extension.

    Args:
        path (str): The file path or key.

    Returns:
        str: The guessed type, or `application/octet-stream`.
    """
    content_type: Optional[str]
    content_type, _ = mimetypes.guess_type(path, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


def _describe(error: BaseException) -> str:
    if isinstance(error, ClientError):
        err = error.response.get("Error", {})
        return f"{err.get('Code', 'ClientError')}: {err.get('Message') or error}"
    return f"{type(error).__name__}: {error}"


class TransferExecutor:
    """
    Executes work items for one direction against one bucket.

    Instances hold no per-item state, so `execute` is safe to call
    concurrently for items addressing disjoint paths and keys.
    """

    def __init__(
        self,
        client: "S3Client",
        bucket: str,
        direction: Direction,
        max_attempts: int = 1,
        backoff_s: float = 0.5,
        chunk_size: int = 1024 * 1024,
        cache_control: str = IMMUTABLE_CACHE_CONTROL,
    ) -> None:
        """
        Initializes the executor.

        Args:
            client (S3Client): An initialized S3 client.
            bucket (str): The bucket to read from or write to.
            direction (Direction): Which way items flow.
            max_attempts (int): In-process attempts per item. 1 disables retries.
            backoff_s (float): Base delay between attempts.
            chunk_size (int): Read size when streaming downloads.
            cache_control (str): Cache-Control value set on uploads.
        """
        self._client: "S3Client" = client
        self._bucket: str = bucket
        self._direction: Direction = direction
        self._max_attempts: int = max(1, max_attempts)
        self._backoff_s: float = backoff_s
        self._chunk_size: int = chunk_size
        self._cache_control: str = cache_control

    async def execute(self, item: WorkItem) -> TransferOutcome:
        """
        Transfers a single item, capturing any failure in the outcome.

        Args:
            item (WorkItem): The item to transfer.

        Returns:
            TransferOutcome: Success with the byte count, or failure with
                a reason.
        """
        if item.destination is None:
            return TransferOutcome.failed(item, "no destination for item")

        attempt: int = 0
        while True:
            attempt += 1
            try:
                if self._direction is Direction.UPLOAD:
                    transferred: int = await self._upload(item.source, item.destination)
                else:
                    transferred = await self._download(item.source, item.destination)
                logger.debug(
                    f"Transferred '{item.source}' -> '{item.destination}' "
                    f"({transferred} bytes)"
                )
                return TransferOutcome.success(item, transferred)
            except (ClientError, BotoCoreError, OSError, TransferError) as e:
                reason: str = _describe(e)
            except Exception as e:
                logger.exception(f"Unexpected error transferring '{item.source}'")
                reason = _describe(e)

            if attempt >= self._max_attempts:
                logger.error(f"Failed to transfer '{item.source}': {reason}")
                return TransferOutcome.failed(item, reason)
            delay: float = self._backoff_s * (2 ** (attempt - 1))
            logger.warning(
                f"Transfer of '{item.source}' failed ({reason}). "
                f"Retrying in {delay:.1f}s ({attempt}/{self._max_attempts})."
            )
            await asyncio.sleep(delay)

    async def _upload(self, source: str, key: str) -> int:
        """
        Streams a local file into the bucket.

        Args:
            source (str): The local file path.
            key (str): The destination object key.

        Returns:
            int: Number of bytes uploaded.
        """
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        size: int = (await loop.run_in_executor(None, os.stat, source)).st_size
        content_type: str = guess_content_type(source)

        body: IO[bytes] = await loop.run_in_executor(None, open, source, "rb")
        try:
            await self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentLength=size,
                ContentType=content_type,
                CacheControl=self._cache_control,
            )
        finally:
            await loop.run_in_executor(None, body.close)
        logger.debug(f"Uploaded '{key}' ({content_type})")
        return size

    async def _download(self, key: str, destination: str) -> int:
        """
        Streams an object into a local file.

        The body is written to a uniquely named hidden sibling that is
        renamed over the destination only once the stream completes, so a
        file at the final path is never truncated. The temporary name is
        created exclusively and cannot collide with another key's target.

        Args:
            key (str): The source object key.
            destination (str): The local destination path.

        Returns:
            int: Number of bytes written.
        """
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        target: Path = Path(destination)
        partial: Path = target.with_name(
            f".{target.name}.{uuid.uuid4().hex}{PARTIAL_SUFFIX}"
        )

        response: "GetObjectOutputTypeDef" = await self._client.get_object(
            Bucket=self._bucket, Key=key
        )
        stream: "StreamingBody" = response["Body"]
        expected: Optional[int] = response.get("ContentLength")

        written: int = 0
        created: bool = False
        completed: bool = False
        try:
            await loop.run_in_executor(
                None, lambda: target.parent.mkdir(parents=True, exist_ok=True)
            )
            fh: IO[bytes] = await loop.run_in_executor(None, open, partial, "xb")
            created = True
            try:
                async for chunk in stream.iter_chunks(self._chunk_size):
                    await loop.run_in_executor(None, fh.write, chunk)
                    written += len(chunk)
            finally:
                await loop.run_in_executor(None, fh.close)

            if expected is not None and written != expected:
                raise TransferError(
                    f"Short read for '{key}': got {written} of {expected} bytes"
                )
            await loop.run_in_executor(None, os.replace, partial, target)
            completed = True
        finally:
            stream.close()
            if created and not completed:
                with contextlib.suppress(FileNotFoundError):
                    partial.unlink()
        return written
