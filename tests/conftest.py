# tests/conftest.py
"""
Pytest configuration and fixtures for the r2sync test suite.

This module provides:
- An in-memory stand-in for the aiobotocore S3 client, with paginated
  listings, streaming bodies, injectable failures and latency.
- Fixtures for an isolated configuration and local directory trees.
"""

import asyncio
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Set

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from r2sync.config import AppConfig, Config, S3Config

BUCKET: str = "test-bucket"


class FakeStreamingBody:
    """Mimics `aiobotocore.response.StreamingBody` over an in-memory payload."""

    def __init__(self, data: bytes, fail_after: Optional[int] = None) -> None:
        self._data: bytes = data
        self._fail_after: Optional[int] = fail_after
        self.closed: bool = False

    async def iter_chunks(self, chunk_size: int = 1024) -> AsyncIterator[bytes]:
        for offset in range(0, len(self._data), chunk_size):
            if self._fail_after is not None and offset >= self._fail_after:
                raise EndpointConnectionError(endpoint_url="https://fake.invalid")
            await asyncio.sleep(0)
            yield self._data[offset : offset + chunk_size]

    async def read(self) -> bytes:
        return self._data

    def close(self) -> None:
        self.closed = True


class FakeListObjectsV2Paginator:
    """Mimics the aiobotocore `list_objects_v2` paginator over a `FakeS3Client`."""

    def __init__(self, client: "FakeS3Client") -> None:
        self._client: "FakeS3Client" = client

    async def paginate(
        self,
        Bucket: str,
        Prefix: str = "",
        PaginationConfig: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        pagination: Dict[str, Any] = PaginationConfig or {}
        token: Optional[str] = pagination.get("StartingToken")
        while True:
            page: Dict[str, Any] = await self._client.list_objects_v2(
                Bucket=Bucket,
                Prefix=Prefix,
                ContinuationToken=token,
                MaxKeys=pagination.get("PageSize"),
            )
            yield page
            if not page["IsTruncated"]:
                return
            token = page["NextContinuationToken"]


class FakeS3Client:
    """
    An in-memory S3 client exposing the calls r2sync makes.

    Attributes:
        objects (Dict[str, Dict[str, Any]]): Stored objects keyed by key,
            each with `Body`, `ContentType` and `CacheControl`.
        page_size (int): Keys returned per `list_objects_v2` page unless the
            caller asks for a page size.
        failing_keys (Set[str]): Keys whose get/put raises a `ClientError`.
        list_failures (int): Number of upcoming listing calls to fail.
        latency_s (float): Delay injected into get/put calls.
    """

    def __init__(self, page_size: int = 2, latency_s: float = 0.0) -> None:
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.page_size: int = page_size
        self.failing_keys: Set[str] = set()
        self.truncated_keys: Set[str] = set()
        self.list_failures: int = 0
        self.list_calls: int = 0
        self.put_calls: int = 0
        self.latency_s: float = latency_s

    def get_paginator(self, operation_name: str) -> FakeListObjectsV2Paginator:
        assert operation_name == "list_objects_v2"
        return FakeListObjectsV2Paginator(self)

    def seed(self, objects: Dict[str, bytes]) -> None:
        for key, data in objects.items():
            self.objects[key] = {"Body": data, "ContentType": None, "CacheControl": None}

    async def _delay(self) -> None:
        await asyncio.sleep(self.latency_s)

    def _maybe_fail(self, key: str, operation: str) -> None:
        if key in self.failing_keys:
            raise ClientError(
                {"Error": {"Code": "InternalError", "Message": "simulated network error"}},
                operation,
            )

    async def list_objects_v2(
        self,
        Bucket: str,
        Prefix: str = "",
        ContinuationToken: Optional[str] = None,
        MaxKeys: Optional[int] = None,
    ) -> Dict[str, Any]:
        self.list_calls += 1
        if self.list_failures > 0:
            self.list_failures -= 1
            raise EndpointConnectionError(endpoint_url="https://fake.invalid")

        keys: List[str] = sorted(k for k in self.objects if k.startswith(Prefix))
        start: int = int(ContinuationToken) if ContinuationToken else 0
        size: int = MaxKeys or self.page_size
        page: List[str] = keys[start : start + size]
        response: Dict[str, Any] = {
            "KeyCount": len(page),
            "IsTruncated": start + size < len(keys),
        }
        if page:
            response["Contents"] = [
                {"Key": k, "Size": len(self.objects[k]["Body"])} for k in page
            ]
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + size)
        return response

    async def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        await self._delay()
        self._maybe_fail(Key, "GetObject")
        if Key not in self.objects:
            raise ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The key does not exist"}},
                "GetObject",
            )
        data: bytes = self.objects[Key]["Body"]
        fail_after: Optional[int] = 1 if Key in self.truncated_keys else None
        return {
            "Body": FakeStreamingBody(data, fail_after=fail_after),
            "ContentLength": len(data),
        }

    async def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: Any,
        ContentLength: int,
        ContentType: str,
        CacheControl: str,
    ) -> Dict[str, Any]:
        await self._delay()
        self.put_calls += 1
        self._maybe_fail(Key, "PutObject")
        data: bytes = Body.read()
        assert len(data) == ContentLength
        self.objects[Key] = {
            "Body": data,
            "ContentType": ContentType,
            "CacheControl": CacheControl,
        }
        return {"ETag": f'"{hash(data) & 0xFFFFFFFF:08x}"'}


def make_tree(base: Path, files: Dict[str, bytes]) -> List[Path]:
    """
    Create files under `base` from a mapping of relative posix paths.

    Args:
        base (Path): Root directory to populate.
        files (Dict[str, bytes]): Relative path to content.

    Returns:
        List[Path]: The created file paths.
    """
    created: List[Path] = []
    for relative, content in files.items():
        path: Path = base.joinpath(*relative.split("/"))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        created.append(path)
    return created


@pytest.fixture(scope="function")
def s3_client() -> FakeS3Client:
    """
    Provide an empty in-memory S3 client.

    Returns:
        FakeS3Client: A fresh fake client.
    """
    return FakeS3Client()


@pytest.fixture(scope="function")
def test_config(tmp_path: Path) -> Config:
    """
    Provide a Config pointing at a temporary backup directory with no backoff.

    Args:
        tmp_path (Path): The pytest fixture for a temporary directory.

    Returns:
        Config: A Config instance for use in tests.
    """
    s3_config: S3Config = S3Config(
        endpoint_url="https://fake.invalid",
        access_key_id="test-key",
        secret_access_key="test-secret",
        bucket=BUCKET,
    )
    app_config: AppConfig = AppConfig(
        local_backup=tmp_path / "backup",
        concurrency=4,
        retry_backoff_s=0.0,
    )
    return Config(s3=s3_config, app=app_config)
