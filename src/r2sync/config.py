# src/r2sync/config.py
"""
Configuration for r2sync.

Settings are read from a `KEY=VALUE` file (`.r2syncrc` in the working
directory, or the file named by `R2SYNC_CONFIG`). When no such file exists
they fall back to `R2SYNC_`-prefixed environment variables. Everything is
validated before any I/O happens and exposed as typed, frozen dataclasses.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

from r2sync.exceptions import ConfigurationError

logger: logging.Logger = logging.getLogger(__name__)

CONFIG_FILE_ENV: str = "R2SYNC_CONFIG"
DEFAULT_CONFIG_FILE: str = ".r2syncrc"
ENV_PREFIX: str = "R2SYNC_"

REQUIRED_KEYS = ("R2_ACCESS_KEY", "R2_SECRET_KEY", "R2_BUCKET")
OPTIONAL_KEYS = (
    "CF_ACCOUNT_ID",
    "ENDPOINT_URL",
    "REGION",
    "LOCAL_BACKUP",
    "CONCURRENCY_SPEED",
)

DEFAULT_LOCAL_BACKUP: str = "./r2-backup"
DEFAULT_CONCURRENCY: int = 10
IMMUTABLE_CACHE_CONTROL: str = "public, max-age=31536000, immutable"


@dataclass(frozen=True)
class S3Config:
    """
    Represents the connection settings for the S3-compatible endpoint.

    Attributes:
        endpoint_url (str): The S3 endpoint URL.
        access_key_id (str): The access key ID.
        secret_access_key (str): The secret access key.
        bucket (str): The bucket name.
        region (str): The region name. R2 accepts "auto".
    """

    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str = "auto"

    def as_boto_dict(self) -> Dict[str, str]:
        """
        Returns the configuration as keyword arguments for `create_client`.

        Returns:
            Dict[str, str]: A dictionary of client parameters.
        """
        return {
            "endpoint_url": self.endpoint_url,
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "region_name": self.region,
        }


@dataclass(frozen=True)
class AppConfig:
    """
    Defines the application's operational parameters.

    Attributes:
        local_backup (Path): Default local directory for both directions.
        concurrency (int): Default maximum number of in-flight transfers.
        enumeration_max_attempts (int): Attempts per listing/scandir call
            before the run is aborted.
        retry_backoff_s (float): Base delay for exponential backoff.
        transfer_max_attempts (int): In-process attempts per transfer.
            1 disables in-process retries.
        client_max_attempts (int): botocore-level retry budget per request.
        chunk_size (int): Read size when streaming downloads to disk.
        cache_control (str): Cache-Control header set on every upload.
    """

    local_backup: Path = field(default_factory=lambda: Path(DEFAULT_LOCAL_BACKUP))
    concurrency: int = DEFAULT_CONCURRENCY
    enumeration_max_attempts: int = 3
    retry_backoff_s: float = 0.5
    transfer_max_attempts: int = 1
    client_max_attempts: int = 5
    chunk_size: int = 1024 * 1024
    cache_control: str = IMMUTABLE_CACHE_CONTROL


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container.

    Attributes:
        s3 (S3Config): Connection settings for the bucket.
        app (AppConfig): General application settings.
    """

    s3: S3Config
    app: AppConfig = field(default_factory=AppConfig)


def _read_settings(config_file: Path, environ: Mapping[str, str]) -> Dict[str, str]:
    """
    Collects raw settings from the config file, or from the environment.

    Args:
        config_file (Path): The `KEY=VALUE` file to try first.
        environ (Mapping[str, str]): The environment to fall back to.

    Returns:
        Dict[str, str]: Non-empty settings keyed without the env prefix.
    """
    if config_file.is_file():
        try:
            raw: Dict[str, Optional[str]] = dotenv_values(config_file)
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(
                f"Failed to read config file '{config_file}': {e}"
            ) from e
        logger.debug(f"Loaded configuration from '{config_file}'")
        return {k: v.strip() for k, v in raw.items() if v and v.strip()}

    logger.info(
        f"'{config_file}' not found. Loading configuration from "
        f"{ENV_PREFIX}* environment variables."
    )
    settings: Dict[str, str] = {}
    for key in REQUIRED_KEYS + OPTIONAL_KEYS:
        value: Optional[str] = environ.get(f"{ENV_PREFIX}{key}")
        if value and value.strip():
            settings[key] = value.strip()
    return settings


def _parse_concurrency(raw: Optional[str], source: str) -> int:
    if raw is None:
        return DEFAULT_CONCURRENCY
    try:
        value: int = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"CONCURRENCY_SPEED must be an integer, got '{raw}' ({source})."
        ) from None
    if value < 1:
        raise ConfigurationError(
            f"CONCURRENCY_SPEED must be at least 1, got {value} ({source})."
        )
    return value


def load_config(
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """
    Loads and validates the full application configuration.

    Args:
        config_file (Path, optional): Explicit config file. Defaults to
            `$R2SYNC_CONFIG` or `./.r2syncrc`.
        environ (Mapping[str, str], optional): Environment to read from.
            Defaults to `os.environ`.

    Returns:
        Config: The validated configuration.

    Raises:
        ConfigurationError: If a required setting is missing or invalid.
    """
    env: Mapping[str, str] = os.environ if environ is None else environ
    if config_file is None:
        config_file = Path(env.get(CONFIG_FILE_ENV) or DEFAULT_CONFIG_FILE)

    settings: Dict[str, str] = _read_settings(config_file, env)
    source: str = (
        f"file '{config_file}'" if config_file.is_file() else "environment variables"
    )

    for key in REQUIRED_KEYS:
        if key not in settings:
            raise ConfigurationError(
                f"Missing required setting '{key}' ({source}). Set it in "
                f"'{config_file}' or export {ENV_PREFIX}{key}."
            )

    endpoint_url: Optional[str] = settings.get("ENDPOINT_URL")
    if not endpoint_url:
        account_id: Optional[str] = settings.get("CF_ACCOUNT_ID")
        if not account_id:
            raise ConfigurationError(
                f"Missing required setting 'CF_ACCOUNT_ID' ({source}). "
                "Set it, or set ENDPOINT_URL for a non-R2 endpoint."
            )
        endpoint_url = f"https://{account_id}.r2.cloudflarestorage.com"

    s3: S3Config = S3Config(
        endpoint_url=endpoint_url,
        access_key_id=settings["R2_ACCESS_KEY"],
        secret_access_key=settings["R2_SECRET_KEY"],
        bucket=settings["R2_BUCKET"],
        region=settings.get("REGION", "auto"),
    )
    app: AppConfig = AppConfig(
        local_backup=Path(settings.get("LOCAL_BACKUP", DEFAULT_LOCAL_BACKUP)),
        concurrency=_parse_concurrency(settings.get("CONCURRENCY_SPEED"), source),
    )
    return Config(s3=s3, app=app)
