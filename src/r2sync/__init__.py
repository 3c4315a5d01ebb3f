# src/r2sync/__init__.py
"""
r2sync: mirror a local directory tree and an S3-compatible bucket.

This package uploads a local folder to a bucket, or downloads a bucket
(or one folder inside it) to a local folder, under a bounded number of
concurrent transfers. A failed file never stops the rest of the run.

The primary entry point for programmatic use is the `sync` coroutine.
"""

from typing import List

from r2sync.models import Direction, SyncReport, SyncRoot
from r2sync.pipeline import SyncPipeline, sync

__all__: List[str] = ["Direction", "SyncPipeline", "SyncReport", "SyncRoot", "sync"]
