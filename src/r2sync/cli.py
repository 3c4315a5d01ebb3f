# src/r2sync/cli.py
"""Command-line interface for the r2sync tool."""

import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from r2sync.config import AppConfig, Config, load_config
from r2sync.exceptions import R2SyncError
from r2sync.models import Direction, SyncReport, SyncRoot
from r2sync.signals import GracefulShutdown

logger: logging.Logger = logging.getLogger(__name__)

EXIT_OK: int = 0
EXIT_FAILURE: int = 1
EXIT_INTERRUPTED: int = 130


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "s3transfer", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


async def main_async(
    direction: Direction, root: SyncRoot, concurrency: int, config: Config
) -> SyncReport:
    """
    Asynchronously execute one sync run.

    Args:
        direction (Direction): Upload or download.
        root (SyncRoot): The local/remote pair to mirror.
        concurrency (int): Maximum number of in-flight transfers.
        config (Config): The application configuration.

    Returns:
        SyncReport: The finished report.
    """
    # Lazily import to keep `--help` fast
    from r2sync.pipeline import sync

    async with GracefulShutdown() as shutdown_event:
        return await sync(
            direction, root, concurrency, config, shutdown_event=shutdown_event
        )


def report_failures(report: SyncReport) -> None:
    """Log every failed item with its address and reason."""
    for item, reason in report.failed:
        target: str = f" -> {item.destination}" if item.destination else ""
        logger.error(f"FAILED {item.source}{target}: {reason}")


def run_sync(direction: Direction, options: Any) -> None:
    """
    Resolves configuration, runs the sync and exits with its status.

    Args:
        direction (Direction): Upload or download.
        options (Any): The parsed click options.
    """
    load_dotenv()
    setup_logging(options["log_level"])

    try:
        base: Config = load_config()
        retries: Optional[int] = options["retries"]
        app: AppConfig = (
            replace(base.app, transfer_max_attempts=retries) if retries else base.app
        )
        config: Config = Config(s3=base.s3, app=app)
        concurrency: int = options["concurrency"] or app.concurrency
        local: Path = Path(options["local"]) if options["local"] else app.local_backup
        root: SyncRoot = SyncRoot(
            local_directory=local.expanduser(),
            remote_prefix=options["remote"],
            bucket=config.s3.bucket,
        )

        report: SyncReport = asyncio.run(main_async(direction, root, concurrency, config))
    except R2SyncError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(EXIT_FAILURE)
    except KeyboardInterrupt:
        logger.warning("Interrupted. Exiting.")
        sys.exit(EXIT_INTERRUPTED)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(EXIT_FAILURE)

    if report.ok:
        logger.info(f"✅ {direction.value.capitalize()} completed successfully.")
        sys.exit(EXIT_OK)
    report_failures(report)
    logger.error(
        f"❌ {len(report.failed)} of {report.total_items} item(s) failed. "
        "Re-run to retry them."
    )
    sys.exit(EXIT_FAILURE)


def sync_options(func: Any) -> Any:
    """Attach the options shared by `upload` and `download`."""
    options = [
        click.option(
            "--remote",
            default="",
            help="Remote folder inside the bucket. Defaults to the whole bucket.",
        ),
        click.option(
            "--local",
            type=click.Path(file_okay=False, dir_okay=True),
            default=None,
            help="Local folder. Defaults to LOCAL_BACKUP from the config.",
        ),
        click.option(
            "--concurrency",
            type=click.IntRange(min=1),
            default=None,
            help="Maximum concurrent transfers. Defaults to CONCURRENCY_SPEED.",
        ),
        click.option(
            "--retries",
            type=click.IntRange(min=1),
            default=None,
            help="In-process attempts per file (1 disables retries).",
        ),
        click.option(
            "--log-level",
            default="INFO",
            type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
            help="Set the logging level.",
            show_default=True,
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
def cli() -> None:
    """
    Mirror a local folder and an S3-compatible bucket (Cloudflare R2 by default).

    Settings are read from `.r2syncrc` (or the file named by R2SYNC_CONFIG),
    falling back to R2SYNC_-prefixed environment variables. Every run is a
    full, unconditional push or pull; nothing is deleted on either side.
    """


@cli.command()
@sync_options
def upload(**kwargs: Any) -> None:
    """Upload every file under the local folder to the bucket."""
    run_sync(Direction.UPLOAD, kwargs)


@cli.command()
@sync_options
def download(**kwargs: Any) -> None:
    """Download every object under the remote folder to the local folder."""
    run_sync(Direction.DOWNLOAD, kwargs)


if __name__ == "__main__":
    cli()
