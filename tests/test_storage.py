import boto3
import pytest
from botocore.client import Config
from botocore.stub import ANY, Stubber

from resumedb.config import Settings, StorageBackend, StorageSettings
from resumedb.storage import (
    BlobNotFoundError,
    DatabaseBlobStore,
    S3BlobStore,
    StorageError,
    build_blob_store,
)


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        config=Config(signature_version="s3v4"),
    )


async def test_database_store_round_trip(session_maker):
    store = DatabaseBlobStore(session_maker, "http://api.test/")

    url = await store.put(b"%PDF-data", "resumes/jane_1.pdf")
    assert url == "http://api.test/api/files/resumes/jane_1.pdf"
    assert await store.open("resumes/jane_1.pdf") == (b"%PDF-data", "application/pdf")
    assert await store.get_signed_read_url("resumes/jane_1.pdf", 60) == url

    await store.delete("resumes/jane_1.pdf")
    with pytest.raises(BlobNotFoundError):
        await store.open("resumes/jane_1.pdf")
    with pytest.raises(BlobNotFoundError):
        await store.delete("resumes/jane_1.pdf")


async def test_database_store_duplicate_key_is_storage_error(session_maker):
    store = DatabaseBlobStore(session_maker, "http://api.test")
    await store.put(b"%PDF-1", "resumes/a.pdf")
    with pytest.raises(StorageError):
        await store.put(b"%PDF-2", "resumes/a.pdf")


async def test_s3_put_returns_locator(s3_client):
    store = S3BlobStore("chapter-resumes", region="us-east-1", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "put_object",
            {},
            {"Bucket": "chapter-resumes", "Key": "resumes/a.pdf", "Body": ANY, "ContentType": "application/pdf"},
        )
        url = await store.put(b"%PDF", "resumes/a.pdf")
        stubber.assert_no_pending_responses()

    assert url == "https://chapter-resumes.s3.us-east-1.amazonaws.com/resumes/a.pdf"


async def test_s3_put_failure_is_storage_error(s3_client):
    store = S3BlobStore("chapter-resumes", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(StorageError):
            await store.put(b"%PDF", "resumes/a.pdf")


async def test_s3_delete_missing_key(s3_client):
    store = S3BlobStore("chapter-resumes", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        with pytest.raises(BlobNotFoundError):
            await store.delete("resumes/missing.pdf")


async def test_s3_delete(s3_client):
    store = S3BlobStore("chapter-resumes", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response("head_object", {}, {"Bucket": "chapter-resumes", "Key": "resumes/a.pdf"})
        stubber.add_response("delete_object", {}, {"Bucket": "chapter-resumes", "Key": "resumes/a.pdf"})
        await store.delete("resumes/a.pdf")
        stubber.assert_no_pending_responses()


async def test_s3_signed_url(s3_client):
    store = S3BlobStore("chapter-resumes", client=s3_client)
    url = await store.get_signed_read_url("resumes/a.pdf", 900)
    assert "resumes/a.pdf" in url
    assert "X-Amz-Algorithm=AWS4-HMAC-SHA256" in url
    assert "X-Amz-Expires=900" in url


def test_s3_requires_bucket(s3_client):
    with pytest.raises(StorageError):
        S3BlobStore("", client=s3_client)


def test_build_blob_store(session_maker):
    config = Settings(storage=StorageSettings(backend=StorageBackend.DATABASE, public_base_url="http://x"))
    store = build_blob_store(config, session_maker)
    assert isinstance(store, DatabaseBlobStore)

    config = Settings(storage=StorageSettings(backend=StorageBackend.S3, bucket="b", region="eu-west-1"))
    store = build_blob_store(config)
    assert isinstance(store, S3BlobStore)
    assert store.locator("k.pdf") == "https://b.s3.eu-west-1.amazonaws.com/k.pdf"
