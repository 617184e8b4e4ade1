"""Blob storage for the persisted login state and debug artifacts.

S3 is used in production; a directory-backed store stands in when no bucket
is configured (local runs, tests).  boto3 is synchronous, so S3 calls run in
the default thread executor to keep the event loop responsive.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

import boto3
from botocore.exceptions import ClientError

from nbrelay.surface import AutomationSurface

log = logging.getLogger(__name__)

_MISSING_CODES = ("NoSuchKey", "404", "NotFound")


class BlobStore(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def put(self, key: str, body: bytes, content_type: str = "") -> str: ...


class S3BlobStore:
    """BlobStore over a single S3 bucket."""

    def __init__(self, bucket: str, client=None) -> None:
        self.bucket = bucket
        self._client = client or boto3.client("s3")

    def uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    async def get(self, key: str) -> bytes | None:
        """Return the object body, or None if the key does not exist."""
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None, lambda: self._client.get_object(Bucket=self.bucket, Key=key)
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise
        return await loop.run_in_executor(None, response["Body"].read)

    async def put(self, key: str, body: bytes, content_type: str = "") -> str:
        kwargs = {"Bucket": self.bucket, "Key": key, "Body": body}
        if content_type:
            kwargs["ContentType"] = content_type
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: self._client.put_object(**kwargs))
        return self.uri(key)


class FileBlobStore:
    """BlobStore rooted at a local directory; keys may contain slashes."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def uri(self, key: str) -> str:
        return (self.root / key).resolve().as_uri()

    async def get(self, key: str) -> bytes | None:
        path = self.root / key
        if not path.exists():
            return None
        return path.read_bytes()

    async def put(self, key: str, body: bytes, content_type: str = "") -> str:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)
        return self.uri(key)


# -- Debug artifacts -----------------------------------------------------------

async def upload_snapshot(store: BlobStore, surface: AutomationSurface, key: str) -> str:
    """Screenshot *surface* to ``<key>.png``; returns the blob URI."""
    uri = await store.put(f"{key}.png", await surface.snapshot(), "image/png")
    log.debug("Snapshot uploaded: %s", uri)
    return uri


async def upload_dump(store: BlobStore, surface: AutomationSurface, key: str) -> str:
    """Store the page body HTML at ``<key>.html``; returns the blob URI."""
    html = await surface.page_html()
    return await store.put(f"{key}.html", html.encode(), "text/html")
