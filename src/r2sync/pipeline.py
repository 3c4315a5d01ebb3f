# src/r2sync/pipeline.py
"""Core orchestration logic for an r2sync run."""

import asyncio
import contextlib
import enum
import logging
from typing import TYPE_CHECKING, AsyncIterator, List, Optional

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)

from r2sync import keymap
from r2sync.config import Config, load_config
from r2sync.enumerator import Enumerator, LocalEnumerator, RemoteEnumerator
from r2sync.exceptions import (
    ConfigurationError,
    EnumerationError,
    InvalidPathError,
    SyncStateError,
)
from r2sync.models import (
    Direction,
    SourceObject,
    SyncReport,
    SyncRoot,
    TransferOutcome,
    WorkItem,
)
from r2sync.scheduler import BoundedScheduler
from r2sync.worker import TransferExecutor

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)


class SyncState(enum.Enum):
    """Lifecycle of a single pipeline instance."""

    IDLE = "idle"
    ENUMERATING = "enumerating"
    TRANSFERRING = "transferring"
    REPORTED = "reported"
    FAILED = "failed"


class SyncPipeline:
    """Orchestrates one upload or download run from start to finish."""

    def __init__(
        self,
        config: Config,
        shutdown_event: Optional[asyncio.Event] = None,
        client: Optional["S3Client"] = None,
    ) -> None:
        """
        Initializes the pipeline with the given configuration.

        Args:
            config (Config): The application configuration.
            shutdown_event (asyncio.Event, optional): Event to stop admitting
                new transfers.
            client (S3Client, optional): A ready client to use instead of
                creating one from `config.s3`.
        """
        self._config: Config = config
        self._shutdown_event: Optional[asyncio.Event] = shutdown_event
        self._client: Optional["S3Client"] = client
        self._session: AioSession = get_session()
        self._state: SyncState = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    @contextlib.asynccontextmanager
    async def _open_client(self, concurrency: int) -> AsyncIterator["S3Client"]:
        if self._client is not None:
            yield self._client
            return

        # Explicit SigV4 without payload signing keeps non-AWS providers
        # happy with streamed bodies.
        boto_config: BotoConfig = BotoConfig(
            signature_version="s3v4",
            max_pool_connections=concurrency + 10,
            retries={
                "max_attempts": self._config.app.client_max_attempts,
                "mode": "standard",
            },
            s3={"payload_signing_enabled": False},
        )
        async with self._session.create_client(
            "s3", **self._config.s3.as_boto_dict(), config=boto_config
        ) as client:
            yield client

    def _enumerator(
        self, direction: Direction, root: SyncRoot, client: "S3Client"
    ) -> Enumerator:
        app = self._config.app
        if direction is Direction.UPLOAD:
            return LocalEnumerator(
                root.scoped_directory,
                max_attempts=app.enumeration_max_attempts,
                backoff_s=app.retry_backoff_s,
            )
        return RemoteEnumerator(
            client,
            root.bucket,
            root.remote_prefix,
            max_attempts=app.enumeration_max_attempts,
            backoff_s=app.retry_backoff_s,
        )

    @staticmethod
    def _to_work_item(
        direction: Direction, root: SyncRoot, obj: SourceObject
    ) -> WorkItem:
        if direction is Direction.UPLOAD:
            destination: str = keymap.to_remote_key(
                root.local_directory, root.remote_prefix, obj.location
            )
        else:
            destination = str(
                keymap.to_local_path(
                    root.local_directory, root.remote_prefix, obj.location
                )
            )
        return WorkItem(obj.location, destination, obj.size)

    async def run(
        self, direction: Direction, root: SyncRoot, concurrency: int
    ) -> SyncReport:
        """
        Executes the full run: enumerate, map, transfer, report.

        Args:
            direction (Direction): Upload or download.
            root (SyncRoot): The local/remote pair to mirror.
            concurrency (int): Maximum number of in-flight transfers.

        Returns:
            SyncReport: The aggregated outcome of every item.

        Raises:
            EnumerationError: If the source side could not be enumerated.
                No transfers are attempted in that case.
            SyncStateError: If this pipeline has already run.
        """
        if self._state is not SyncState.IDLE:
            raise SyncStateError(
                f"Pipeline already ran (state: {self._state.value}); "
                "create a new one for another run."
            )
        if concurrency < 1:
            raise ConfigurationError(f"Concurrency must be at least 1, got {concurrency}")

        logger.info(
            f"Starting {direction.value}: '{root.local_directory}' <-> "
            f"'s3://{root.bucket}/{root.remote_prefix}' "
            f"(concurrency {concurrency})."
        )
        report: SyncReport = SyncReport(direction=direction)

        async with self._open_client(concurrency) as client:
            self._state = SyncState.ENUMERATING
            try:
                sources: List[SourceObject] = await self._enumerator(
                    direction, root, client
                ).collect()
            except EnumerationError as e:
                self._state = SyncState.FAILED
                logger.error(f"Enumeration failed; no transfers attempted: {e}")
                raise

            self._state = SyncState.TRANSFERRING
            report.total_items = len(sources)
            items: List[WorkItem] = []
            for obj in sources:
                try:
                    items.append(self._to_work_item(direction, root, obj))
                except InvalidPathError as e:
                    logger.error(f"Skipping '{obj.location}': {e}")
                    report.record(
                        TransferOutcome.failed(WorkItem(obj.location, None, obj.size), str(e))
                    )

            if not sources:
                logger.info("Nothing to transfer.")
            else:
                logger.info(
                    f"Found {len(sources)} objects; transferring {len(items)} "
                    f"with concurrency {concurrency}."
                )
                await self._run_transfers(direction, root, client, items, concurrency, report)

        self._state = SyncState.REPORTED
        self._log_summary(report)
        return report

    async def _run_transfers(
        self,
        direction: Direction,
        root: SyncRoot,
        client: "S3Client",
        items: List[WorkItem],
        concurrency: int,
        report: SyncReport,
    ) -> None:
        """
        Runs the transfers under the concurrency bound with a progress bar.

        Args:
            direction (Direction): Upload or download.
            root (SyncRoot): The local/remote pair.
            client (S3Client): The S3 client to transfer with.
            items (List[WorkItem]): Mapped items to execute.
            concurrency (int): Maximum number of in-flight transfers.
            report (SyncReport): Report to fold outcomes into.
        """
        app = self._config.app
        executor: TransferExecutor = TransferExecutor(
            client,
            root.bucket,
            direction,
            max_attempts=app.transfer_max_attempts,
            backoff_s=app.retry_backoff_s,
            chunk_size=app.chunk_size,
            cache_control=app.cache_control,
        )
        scheduler: BoundedScheduler = BoundedScheduler(concurrency, self._shutdown_event)

        progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            TextColumn("([bold red]{task.fields[failed]} failed)"),
            transient=True,
        )
        with progress:
            task_id: TaskID = progress.add_task(
                f"{direction.value.capitalize()}ing...", total=len(items), failed=0
            )

            def _on_outcome(outcome: TransferOutcome) -> None:
                report.record(outcome)
                progress.update(task_id, advance=1, failed=len(report.failed))

            await scheduler.run_all(items, executor.execute, on_outcome=_on_outcome)

        logger.debug(f"Peak in-flight transfers: {scheduler.peak_in_flight}")

    @staticmethod
    def _log_summary(report: SyncReport) -> None:
        logger.info(
            f"{report.direction.value.capitalize()} finished: "
            f"{report.succeeded}/{report.total_items} succeeded, "
            f"{len(report.failed)} failed, {report.bytes_transferred} bytes."
        )


async def sync(
    direction: Direction,
    root: SyncRoot,
    concurrency: int,
    config: Optional[Config] = None,
    *,
    client: Optional["S3Client"] = None,
    shutdown_event: Optional[asyncio.Event] = None,
) -> SyncReport:
    """
    Mirrors one tree onto the other.

    Args:
        direction (Direction): Upload (local to bucket) or download.
        root (SyncRoot): The local/remote pair to mirror.
        concurrency (int): Maximum number of in-flight transfers.
        config (Config, optional): The application configuration. Loaded
            with `load_config` when omitted.
        client (S3Client, optional): A ready S3 client to reuse.
        shutdown_event (asyncio.Event, optional): Stops admission when set.

    Returns:
        SyncReport: The aggregated outcome of every item.
    """
    if config is None:
        config = load_config()
    pipeline: SyncPipeline = SyncPipeline(config, shutdown_event, client=client)
    return await pipeline.run(direction, root, concurrency)

