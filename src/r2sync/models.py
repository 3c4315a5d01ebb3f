# src/r2sync/models.py
"""
Data model shared by the enumerators, the executor and the pipeline.

All records are immutable except `SyncReport`, which the pipeline owns for
the duration of a single run and folds outcomes into as they arrive.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from r2sync.keymap import normalize_prefix


class Direction(str, Enum):
    """Which side of the mirror is the source of truth for a run."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


@dataclass(frozen=True)
class SyncRoot:
    """
    The pair of trees a run mirrors between.

    Attributes:
        local_directory (Path): Path of the local tree, made absolute.
        remote_prefix (str): Normalized remote folder scoping the run,
            or an empty string for the whole bucket.
        bucket (str): The bucket name.
    """

    local_directory: Path
    remote_prefix: str
    bucket: str

    def __post_init__(self) -> None:
        # Frozen, so normalize through object.__setattr__.
        object.__setattr__(
            self, "local_directory", Path(os.path.abspath(self.local_directory))
        )
        object.__setattr__(self, "remote_prefix", normalize_prefix(self.remote_prefix))

    @property
    def scoped_directory(self) -> Path:
        """
        The local directory matching the remote prefix.

        Returns:
            Path: `local_directory` joined with the prefix segments.
        """
        if not self.remote_prefix:
            return self.local_directory
        return self.local_directory.joinpath(*self.remote_prefix.split("/"))


@dataclass(frozen=True)
class SourceObject:
    """An address produced by an enumerator, with its size when known."""

    location: str
    size: Optional[int] = None


@dataclass(frozen=True)
class WorkItem:
    """
    One file to transfer in one direction.

    Attributes:
        source (str): Local path (upload) or object key (download).
        destination (str, optional): Object key (upload) or local path
            (download). None when the source could not be mapped.
        size_hint (int, optional): Size in bytes reported by the enumerator.
    """

    source: str
    destination: Optional[str]
    size_hint: Optional[int] = None


class TransferStatus(Enum):
    """Final status of a single work item."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferOutcome:
    """The result of executing one work item."""

    item: WorkItem
    status: TransferStatus
    bytes_transferred: int = 0
    reason: Optional[str] = None

    @classmethod
    def success(cls, item: WorkItem, bytes_transferred: int) -> "TransferOutcome":
        return cls(item, TransferStatus.SUCCESS, bytes_transferred)

    @classmethod
    def failed(cls, item: WorkItem, reason: str) -> "TransferOutcome":
        return cls(item, TransferStatus.FAILED, 0, reason)

    @property
    def ok(self) -> bool:
        return self.status is TransferStatus.SUCCESS


@dataclass
class SyncReport:
    """
    Aggregate result of one run.

    Attributes:
        direction (Direction): The direction of the run.
        total_items (int): Number of enumerated source objects.
        succeeded (int): Number of items transferred successfully.
        failed (List[Tuple[WorkItem, str]]): Failed items with their reasons,
            in the order the failures arrived.
        bytes_transferred (int): Total payload bytes moved.
    """

    direction: Direction
    total_items: int = 0
    succeeded: int = 0
    failed: List[Tuple[WorkItem, str]] = field(default_factory=list)
    bytes_transferred: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed

    def record(self, outcome: TransferOutcome) -> None:
        """
        Folds a single outcome into the report.

        Args:
            outcome (TransferOutcome): The outcome to account for.
        """
        if outcome.ok:
            self.succeeded += 1
            self.bytes_transferred += outcome.bytes_transferred
        else:
            self.failed.append((outcome.item, outcome.reason or "unknown error"))
