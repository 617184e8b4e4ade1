"""Unit tests for nbrelay.storage."""
from __future__ import annotations

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from nbrelay.storage import FileBlobStore, S3BlobStore, upload_dump, upload_snapshot
from tests.helpers import FakeBlobStore, FakeSurface


class TestS3BlobStore:
    async def test_get_returns_body(self):
        client = MagicMock()
        client.get_object.return_value = {"Body": io.BytesIO(b'{"cookies": []}')}
        store = S3BlobStore("nb-bucket", client=client)

        assert await store.get("chromium-contexts.json") == b'{"cookies": []}'
        client.get_object.assert_called_once_with(Bucket="nb-bucket", Key="chromium-contexts.json")

    async def test_missing_key_returns_none(self):
        client = MagicMock()
        client.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        assert await S3BlobStore("nb-bucket", client=client).get("missing") is None

    async def test_other_errors_propagate(self):
        client = MagicMock()
        client.get_object.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "GetObject")
        with pytest.raises(ClientError):
            await S3BlobStore("nb-bucket", client=client).get("state")

    async def test_put_returns_s3_uri(self):
        client = MagicMock()
        store = S3BlobStore("nb-bucket", client=client)

        uri = await store.put("screenshot/auth.png", b"png", "image/png")

        assert uri == "s3://nb-bucket/screenshot/auth.png"
        client.put_object.assert_called_once_with(
            Bucket="nb-bucket", Key="screenshot/auth.png", Body=b"png", ContentType="image/png",
        )


class TestFileBlobStore:
    async def test_round_trip_with_nested_key(self, tmp_path):
        store = FileBlobStore(tmp_path)
        uri = await store.put("screenshot/auth.png", b"png")
        assert uri.startswith("file://")
        assert await store.get("screenshot/auth.png") == b"png"

    async def test_missing(self, tmp_path):
        assert await FileBlobStore(tmp_path).get("nope") is None


async def test_upload_snapshot_appends_extension():
    store = FakeBlobStore()
    uri = await upload_snapshot(store, FakeSurface(), "screenshot/finally-1.0")
    assert uri == "mem://screenshot/finally-1.0.png"
    assert store.content_types["screenshot/finally-1.0.png"] == "image/png"


async def test_upload_dump_stores_body_html():
    store = FakeBlobStore()
    uri = await upload_dump(store, FakeSurface(), "dump/page")
    assert uri == "mem://dump/page.html"
    assert store.blobs["dump/page.html"] == b"<main>page</main>"
