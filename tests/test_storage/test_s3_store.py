import hashlib
import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from tunesnow.core.exceptions import TransientStoreError
from tunesnow.utils.aws import S3Client, S3ObjectStore, b64_to_hex, hex_to_b64

BUCKET = "tunesnow-test"
KEY = "uploads/b1/m1.flac"
DIGEST = hashlib.sha256(b"payload").hexdigest()


@pytest.fixture()
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture()
def stubbed(s3_client):
    with Stubber(s3_client) as stubber:
        yield stubber, S3ObjectStore(S3Client(BUCKET, client=s3_client))
        stubber.assert_no_pending_responses()


def _body(data: bytes) -> StreamingBody:
    return StreamingBody(io.BytesIO(data), len(data))


def test_checksum_encoding():
    b64 = hex_to_b64(DIGEST)
    assert b64_to_hex(b64) == DIGEST
    assert b64_to_hex("abc-3") is None
    assert b64_to_hex("not base64!") is None
    assert b64_to_hex(None) is None


@pytest.mark.anyio
async def test_presigned_put_is_bound_to_one_key(s3_client):
    store = S3ObjectStore(S3Client(BUCKET, client=s3_client))

    grant = await store.grant_upload(
        KEY, content_type="audio/flac", content_length=7, sha256_hex=DIGEST, expires_in=600
    )

    assert grant.key == KEY
    assert KEY in grant.url
    assert "X-Amz-Signature=" in grant.url
    assert grant.headers["x-amz-checksum-sha256"] == hex_to_b64(DIGEST)
    assert grant.headers["Content-Length"] == "7"


@pytest.mark.anyio
async def test_stat_missing_key(stubbed):
    stubber, store = stubbed
    stubber.add_client_error(
        "head_object",
        service_error_code="404",
        http_status_code=404,
        expected_params={"Bucket": BUCKET, "Key": KEY, "ChecksumMode": "ENABLED"},
    )

    st = await store.stat(KEY)

    assert not st.exists


@pytest.mark.anyio
async def test_stat_reports_size_and_checksum(stubbed):
    stubber, store = stubbed
    stubber.add_response(
        "head_object",
        {"ContentLength": 7, "ChecksumSHA256": hex_to_b64(DIGEST)},
        {"Bucket": BUCKET, "Key": KEY, "ChecksumMode": "ENABLED"},
    )

    st = await store.stat(KEY)

    assert st.exists and st.size == 7
    assert st.sha256 == DIGEST


@pytest.mark.anyio
async def test_throttling_is_transient(stubbed):
    stubber, store = stubbed
    stubber.add_client_error("head_object", service_error_code="SlowDown", http_status_code=503)

    with pytest.raises(TransientStoreError):
        await store.stat(KEY)


@pytest.mark.anyio
async def test_ranged_read_uses_content_range_total(stubbed):
    stubber, store = stubbed
    stubber.add_response(
        "get_object",
        {"Body": _body(b"ylo"), "ContentRange": "bytes 2-4/7", "ContentLength": 3},
        {"Bucket": BUCKET, "Key": KEY, "Range": "bytes=2-4"},
    )

    rng = await store.fetch_range(KEY, 2, 3)

    assert rng.data == b"ylo"
    assert rng.length == 3
    assert rng.total_size == 7


@pytest.mark.anyio
async def test_read_past_end_is_empty(stubbed):
    stubber, store = stubbed
    stubber.add_client_error(
        "get_object",
        service_error_code="InvalidRange",
        http_status_code=416,
        service_error_meta={"ActualObjectSize": "7"},
    )

    rng = await store.fetch_range(KEY, 7, 10)

    assert rng.length == 0
    assert rng.total_size == 7
