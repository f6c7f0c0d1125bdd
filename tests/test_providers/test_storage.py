import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from facetag.common.storage import (
    S3_CLIENT_CONFIG,
    StorageError,
    StorageService,
    is_legacy_key,
)
from facetag.common.utils import extract_stream_id

BUCKET = "facetag-media"


@pytest.fixture
def s3():
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        config=S3_CLIENT_CONFIG,
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


def test_upload_uses_a_fresh_key(s3):
    client, stubber = s3
    stubber.add_response(
        "put_object",
        {},
        expected_params={"Bucket": BUCKET, "Key": ANY, "Body": b"jpeg", "ContentType": "image/jpeg"},
    )

    key = StorageService(client, BUCKET).upload(b"jpeg")

    assert key.startswith("faces/")
    assert key.endswith(".jpg")


def test_upload_failure_raises(s3):
    client, stubber = s3
    stubber.add_client_error("put_object", service_error_code="AccessDenied")

    with pytest.raises(StorageError):
        StorageService(client, BUCKET).upload(b"jpeg")


def test_download_object(s3):
    client, stubber = s3
    stubber.add_response(
        "get_object",
        {"Body": StreamingBody(io.BytesIO(b"jpeg"), 4)},
        expected_params={"Bucket": BUCKET, "Key": "faces/a.jpg"},
    )
    stubber.add_client_error("get_object", service_error_code="NoSuchKey")
    storage = StorageService(client, BUCKET)

    assert storage.download("faces/a.jpg") == b"jpeg"
    with pytest.raises(StorageError):
        storage.download("faces/missing.jpg")


def test_delete_is_best_effort(s3):
    client, stubber = s3
    stubber.add_response("delete_object", {}, expected_params={"Bucket": BUCKET, "Key": "faces/a.jpg"})
    stubber.add_client_error("delete_object", service_error_code="AccessDenied")
    storage = StorageService(client, BUCKET)

    assert storage.delete("faces/a.jpg") is True
    assert storage.delete("faces/b.jpg") is False
    assert storage.delete("/uploads/faces/c.jpg") is False


def test_legacy_keys_are_read_from_the_media_dir(s3, tmp_path):
    client, _ = s3
    (tmp_path / "uploads" / "faces").mkdir(parents=True)
    (tmp_path / "uploads" / "faces" / "old.jpg").write_bytes(b"legacy")
    storage = StorageService(client, BUCKET, local_media_dir=tmp_path)

    assert is_legacy_key("/uploads/faces/old.jpg")
    assert storage.download("/uploads/faces/old.jpg") == b"legacy"
    with pytest.raises(StorageError):
        storage.download("/uploads/faces/missing.jpg")
    with pytest.raises(StorageError):
        storage.download("/../outside.jpg")
    with pytest.raises(StorageError):
        StorageService(client, BUCKET).download("/uploads/faces/old.jpg")


def test_presigned_urls(s3):
    client, _ = s3
    storage = StorageService(client, BUCKET, presign_expires=600)

    assert storage.presigned_url("/uploads/faces/old.jpg") == "/uploads/faces/old.jpg"
    url = storage.presigned_url("faces/a.jpg")
    assert BUCKET in url
    assert "faces/a.jpg" in url
    assert "X-Amz-Expires=600" in url
    assert "X-Amz-Algorithm=AWS4-HMAC-SHA256" in url


@pytest.mark.asyncio
async def test_async_wrappers(s3):
    client, stubber = s3
    stubber.add_response("delete_object", {})
    storage = StorageService(client, BUCKET)

    assert await storage.delete_async("faces/a.jpg") is True
    assert await storage.presigned_url_async("/x.jpg") == "/x.jpg"


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://customer-x.cloudflarestream.com/abc123/manifest/video.m3u8", "abc123"),
        ("https://videodelivery.net/def456/manifest/video.mpd", "def456"),
        ("https://example.com/videos/clip.mp4", None),
        (None, None),
    ],
)
def test_extract_stream_id(url, expected):
    assert extract_stream_id(url) == expected
