# tests/e2e/conftest.py
"""
Pytest fixtures for the r2sync end-to-end tests.

This module sets up:
- A Docker-based MinIO service standing in for the S3-compatible endpoint.
- An isolated bucket per test function, removed with its contents afterwards.
- A Config pointing the real client at that bucket.

The tests are skipped when no Docker CLI is available.
"""

import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncGenerator, Dict

import boto3
import pytest
import pytest_asyncio
import requests
from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError
from requests.exceptions import ConnectionError

from r2sync.config import AppConfig, Config, S3Config

if TYPE_CHECKING:
    from types_boto3_s3.service_resource import Bucket, S3ServiceResource

# --- Constants ---
S3_ACCESS_KEY: str = "minio-key"
S3_SECRET_KEY: str = "minio-secret"
S3_REGION: str = "us-east-1"


# --- Docker Fixtures ---
@pytest.fixture(scope="session")
def docker_compose_file(pytestconfig: pytest.Config) -> str:
    """
    Locate the docker-compose.yml file for the test suite.

    Args:
        pytestconfig (pytest.Config): The pytest configuration object.

    Returns:
        str: The absolute path to the docker-compose.yml file.
    """
    return str(Path(pytestconfig.rootdir) / "tests" / "docker-compose.yml")


@pytest.fixture(scope="session")
def docker_compose_project_name() -> str:
    """
    Define a static project name for the Docker stack.

    Returns:
        str: The docker-compose project name.
    """
    return "r2sync-tests"


def _is_s3_responsive(url: str) -> bool:
    """
    Check if the MinIO health endpoint is responsive.

    Args:
        url (str): The base URL of the MinIO API.

    Returns:
        bool: True if the service is responsive, False otherwise.
    """
    try:
        response: requests.Response = requests.get(f"{url}/minio/health/live")
        return response.status_code == 200
    except ConnectionError:
        return False


@pytest.fixture(scope="session")
def s3_service(request: pytest.FixtureRequest) -> Dict[str, Any]:
    """
    Ensure the MinIO service is running and return its connection details.

    Args:
        request (pytest.FixtureRequest): Used to pull in the pytest-docker
            fixtures only once Docker is known to be available.

    Returns:
        Dict[str, Any]: Connection details for aiobotocore and boto3 clients.
    """
    if shutil.which("docker") is None:
        pytest.skip("Docker is not available")

    docker_ip: str = request.getfixturevalue("docker_ip")
    docker_services: Any = request.getfixturevalue("docker_services")
    port: int = docker_services.port_for("minio", 9000)
    api_url: str = f"http://{docker_ip}:{port}"
    docker_services.wait_until_responsive(
        timeout=30.0, pause=0.1, check=lambda: _is_s3_responsive(api_url)
    )
    return {
        "endpoint_url": api_url,
        "aws_access_key_id": S3_ACCESS_KEY,
        "aws_secret_access_key": S3_SECRET_KEY,
        "region_name": S3_REGION,
    }


# --- Application Fixtures ---
@pytest_asyncio.fixture(scope="function")
async def s3_bucket(s3_service: Dict[str, Any]) -> AsyncGenerator[str, None]:
    """
    Create a unique, isolated bucket for a single test function.

    Args:
        s3_service (Dict[str, Any]): Connection details for MinIO.

    Yield:
        AsyncGenerator[str, None]: The name of the created bucket.
    """
    session: AioSession = get_session()
    bucket: str = f"r2sync-test-{uuid.uuid4()}"
    async with session.create_client("s3", **s3_service) as client:
        await client.create_bucket(Bucket=bucket)

    yield bucket

    # Cleanup: boto3 is simpler for synchronous, recursive delete
    boto_config: BotoConfig = BotoConfig(
        retries={"max_attempts": 0, "mode": "standard"}
    )
    resource: "S3ServiceResource" = boto3.resource(
        "s3", **s3_service, config=boto_config
    )
    try:
        bucket_obj: "Bucket" = resource.Bucket(bucket)
        bucket_obj.objects.all().delete()
        bucket_obj.delete()
    except ClientError as e:
        if e.response["Error"]["Code"] != "NoSuchBucket":
            raise


@pytest.fixture(scope="function")
def e2e_config(s3_service: Dict[str, Any], s3_bucket: str, tmp_path: Path) -> Config:
    """
    Provide a Config that makes the pipeline open its own client against MinIO.

    Args:
        s3_service (Dict[str, Any]): Connection details for MinIO.
        s3_bucket (str): The per-test bucket.
        tmp_path (Path): The pytest fixture for a temporary directory.

    Returns:
        Config: A Config instance for use in tests.
    """
    s3_config: S3Config = S3Config(
        endpoint_url=s3_service["endpoint_url"],
        access_key_id=S3_ACCESS_KEY,
        secret_access_key=S3_SECRET_KEY,
        bucket=s3_bucket,
        region=S3_REGION,
    )
    app_config: AppConfig = AppConfig(
        local_backup=tmp_path / "backup",
        concurrency=8,
        retry_backoff_s=0.1,
    )
    return Config(s3=s3_config, app=app_config)
