import os

import pytest
from botocore.exceptions import ClientError

from storefront import create_app
from storefront.errors import StorageError
from storefront.storage import LocalBlobStorage, R2BlobStorage, build_storage


class StubS3Client:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def _record(self, operation, **kwargs):
        self.calls.append((operation, kwargs))
        if self.fail:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, operation)

    def put_object(self, **kwargs):
        self._record("PutObject", **kwargs)

    def delete_object(self, **kwargs):
        self._record("DeleteObject", **kwargs)


def make_r2(client, public_base=None):
    return R2BlobStorage(
        "acct123", "key-id", "key-secret", "catalog", public_base=public_base, client=client
    )


def test_r2_upload_uses_random_prefixed_key_and_public_base():
    client = StubS3Client()
    storage = make_r2(client, public_base="https://img.storefront.io/")

    blob = storage.upload(b"data", "image/png", prefix="products/", extension=".png")

    assert blob.key.startswith("products/") and blob.key.endswith(".png")
    assert blob.url == f"https://img.storefront.io/{blob.key}"
    operation, kwargs = client.calls[0]
    assert operation == "PutObject"
    assert kwargs == {
        "Bucket": "catalog",
        "Key": blob.key,
        "Body": b"data",
        "ContentType": "image/png",
    }


def test_r2_keys_are_unique():
    storage = make_r2(StubS3Client())

    keys = {storage.upload(b"x", "image/png").key for _ in range(5)}

    assert len(keys) == 5


def test_r2_url_falls_back_to_bucket_host():
    storage = make_r2(StubS3Client())

    assert storage.public_url("products/a.png") == (
        "https://catalog.acct123.r2.cloudflarestorage.com/products/a.png"
    )


def test_r2_errors_become_storage_errors():
    storage = make_r2(StubS3Client(fail=True))

    with pytest.raises(StorageError):
        storage.upload(b"x", "image/png")
    with pytest.raises(StorageError):
        storage.delete("products/a.png")


def test_local_storage_roundtrip(tmp_path):
    storage = LocalBlobStorage(str(tmp_path), public_base="https://cdn.storefront.test")

    blob = storage.upload(b"pixels", "image/png", extension=".png")

    path = storage.path_for(blob.key)
    with open(path, "rb") as handle:
        assert handle.read() == b"pixels"
    assert blob.url == f"https://cdn.storefront.test/{blob.key}"

    storage.delete(blob.key)
    assert not os.path.exists(path)
    storage.delete(blob.key)


def test_local_storage_serves_uploads(tmp_path, db):
    local_app = create_app(
        config={
            "JWT_SECRET_KEY": "storefront-test-secret-key-0123456789abcdef",
            "UPLOAD_FOLDER": str(tmp_path / "served"),
            "R2_ACCOUNT_ID": "",
        },
        db=db,
    )
    storage = local_app.extensions["storefront"]["storage"]
    assert isinstance(storage, LocalBlobStorage)

    with local_app.test_request_context(base_url="http://shop.local/"):
        blob = storage.upload(b"pixels", "image/png", extension=".png")
    assert blob.url == f"http://shop.local/uploads/{blob.key}"

    response = local_app.test_client().get(f"/uploads/{blob.key}")
    assert response.status_code == 200
    assert response.data == b"pixels"


def test_build_storage_prefers_r2_when_configured(app, monkeypatch):
    created = {}

    def fake_client(service, **kwargs):
        created["service"] = service
        created.update(kwargs)
        return StubS3Client()

    monkeypatch.setattr("storefront.storage.boto3.client", fake_client)
    app.config.update(
        R2_ACCOUNT_ID="acct123",
        R2_ACCESS_KEY_ID="key-id",
        R2_SECRET_ACCESS_KEY="key-secret",
        R2_BUCKET="catalog",
        R2_PUBLIC_BASE="",
    )

    storage = build_storage(app)

    assert isinstance(storage, R2BlobStorage)
    assert created["service"] == "s3"
    assert created["endpoint_url"] == "https://acct123.r2.cloudflarestorage.com"
    assert created["region_name"] == "auto"
