# src/r2sync/enumerator.py
"""
Enumerators producing the source side of a run.

Both variants are lazy, finite async iterables of `SourceObject`. A listing
or directory scan that keeps failing past its retry budget raises
`EnumerationError`, which aborts the whole run.
"""

import abc
import asyncio
import logging
import os
import stat
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from botocore.exceptions import BotoCoreError, ClientError

from r2sync.exceptions import EnumerationError
from r2sync.models import SourceObject

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.paginator import ListObjectsV2Paginator
    from types_aiobotocore_s3.type_defs import ListObjectsV2OutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE: Tuple[type, ...] = (OSError, BotoCoreError, ClientError)


async def backoff_or_raise(
    error: BaseException,
    attempt: int,
    max_attempts: int,
    backoff_s: float,
    description: str,
) -> None:
    """
    Sleeps before the next attempt, or gives up once the budget is spent.

    Args:
        error (BaseException): The failure of attempt number `attempt`.
        attempt (int): How many attempts have failed so far (1-based).
        max_attempts (int): Total number of attempts allowed.
        backoff_s (float): Delay before the second attempt; doubles after.
        description (str): What is being attempted, for logs and errors.

    Raises:
        EnumerationError: If `attempt` has reached `max_attempts`.
    """
    attempts: int = max(1, max_attempts)
    if attempt >= attempts:
        raise EnumerationError(
            f"Failed to {description} after {attempts} attempt(s): {error}"
        ) from error
    delay: float = backoff_s * (2 ** (attempt - 1))
    logger.warning(
        f"Failed to {description} ({type(error).__name__}: {error}). "
        f"Retrying in {delay:.1f}s ({attempt}/{attempts})."
    )
    await asyncio.sleep(delay)


async def call_with_retries(
    operation: Callable[[], Awaitable[T]],
    description: str,
    max_attempts: int,
    backoff_s: float,
) -> T:
    """
    Awaits `operation`, retrying transient failures with exponential backoff.

    Args:
        operation (Callable[[], Awaitable[T]]): Factory for the awaitable.
        description (str): What is being attempted, for logs and errors.
        max_attempts (int): Total number of attempts.
        backoff_s (float): Delay before the second attempt; doubles after.

    Returns:
        T: The operation's result.

    Raises:
        EnumerationError: Once every attempt has failed.
    """
    attempt: int = 0
    while True:
        try:
            return await operation()
        except _RETRYABLE as e:
            attempt += 1
            await backoff_or_raise(e, attempt, max_attempts, backoff_s, description)


class Enumerator(abc.ABC):
    """A lazy, single-use sequence of addressable source objects."""

    def __init__(self, max_attempts: int = 3, backoff_s: float = 0.5) -> None:
        self._max_attempts: int = max_attempts
        self._backoff_s: float = backoff_s
        self._started: bool = False

    def __aiter__(self) -> AsyncIterator[SourceObject]:
        if self._started:
            raise EnumerationError(f"{type(self).__name__} cannot be restarted")
        self._started = True
        return self._iterate()

    @abc.abstractmethod
    def _iterate(self) -> AsyncIterator[SourceObject]:
        """Yields every source object exactly once."""

    async def collect(self) -> List[SourceObject]:
        """
        Drains the enumerator.

        Returns:
            List[SourceObject]: Every enumerated object.
        """
        return [obj async for obj in self]


def _scan_directory(directory: Path) -> Tuple[List[SourceObject], List[Path]]:
    """
    Lists one directory, splitting regular files from subdirectories.

    Symlinks and special files are skipped.

    Args:
        directory (Path): The directory to scan.

    Returns:
        Tuple[List[SourceObject], List[Path]]: Files found and
            subdirectories still to visit.
    """
    files: List[SourceObject] = []
    subdirs: List[Path] = []
    with os.scandir(directory) as entries:
        for entry in entries:
            if entry.is_symlink():
                logger.debug(f"Skipping symlink '{entry.path}'")
                continue
            if entry.is_dir(follow_symlinks=False):
                subdirs.append(Path(entry.path))
                continue
            st: os.stat_result = entry.stat(follow_symlinks=False)
            if stat.S_ISREG(st.st_mode):
                files.append(SourceObject(entry.path, st.st_size))
            else:
                logger.debug(f"Skipping special file '{entry.path}'")
    return files, subdirs


class LocalEnumerator(Enumerator):
    """Walks a local directory tree depth-first, yielding regular files."""

    def __init__(
        self,
        root: Path,
        max_attempts: int = 3,
        backoff_s: float = 0.5,
    ) -> None:
        """
        Args:
            root (Path): The directory to walk.
            max_attempts (int): Attempts per directory scan.
            backoff_s (float): Base backoff between attempts.
        """
        super().__init__(max_attempts, backoff_s)
        self._root: Path = root

    async def _iterate(self) -> AsyncIterator[SourceObject]:
        if not self._root.is_dir():
            raise EnumerationError(
                f"Local directory '{self._root}' does not exist or is not a directory"
            )

        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        # Explicit stack instead of recursion, so deep trees don't grow the call stack.
        pending: List[Path] = [self._root]
        while pending:
            directory: Path = pending.pop()
            files, subdirs = await call_with_retries(
                lambda: loop.run_in_executor(None, _scan_directory, directory),
                f"scan directory '{directory}'",
                self._max_attempts,
                self._backoff_s,
            )
            for obj in files:
                yield obj
            pending.extend(reversed(subdirs))


class RemoteEnumerator(Enumerator):
    """Lists every object key under a prefix through the list_objects_v2 paginator."""

    def __init__(
        self,
        client: "S3Client",
        bucket: str,
        prefix: str = "",
        max_attempts: int = 3,
        backoff_s: float = 0.5,
        page_size: Optional[int] = None,
    ) -> None:
        """
        Args:
            client (S3Client): An initialized S3 client.
            bucket (str): The bucket to list.
            prefix (str): Normalized remote folder, or "" for the whole bucket.
            max_attempts (int): Attempts per listing page.
            backoff_s (float): Base backoff between attempts.
            page_size (int, optional): Keys per listing page.
        """
        super().__init__(max_attempts, backoff_s)
        self._client: "S3Client" = client
        self._bucket: str = bucket
        self._prefix: str = prefix
        self._page_size: Optional[int] = page_size

    async def _iterate(self) -> AsyncIterator[SourceObject]:
        params: Dict[str, Any] = {"Bucket": self._bucket}
        if self._prefix:
            params["Prefix"] = f"{self._prefix}/"
        location: str = f"s3://{self._bucket}/{params.get('Prefix', '')}"

        paginator: "ListObjectsV2Paginator" = self._client.get_paginator(
            "list_objects_v2"
        )
        # Token of the next unread page; a failed page resumes from here.
        resume_token: Optional[str] = None
        page_number: int = 0
        failures: int = 0
        while True:
            pagination: Dict[str, Any] = {}
            if self._page_size:
                pagination["PageSize"] = self._page_size
            if resume_token:
                pagination["StartingToken"] = resume_token
            pages: AsyncIterator["ListObjectsV2OutputTypeDef"] = paginator.paginate(
                **params, PaginationConfig=pagination
            )
            try:
                async for page in pages:
                    page_number += 1
                    failures = 0
                    for obj in page.get("Contents", []):
                        key: str = obj["Key"]
                        if key.endswith("/"):
                            logger.debug(f"Skipping directory marker '{key}'")
                            continue
                        yield SourceObject(key, obj.get("Size"))
                    resume_token = page.get("NextContinuationToken")
                return
            except _RETRYABLE as e:
                failures += 1
                await backoff_or_raise(
                    e,
                    failures,
                    self._max_attempts,
                    self._backoff_s,
                    f"list '{location}' (page {page_number + 1})",
                )
