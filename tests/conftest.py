import io

import mongomock
import pytest

from storefront import create_app
from storefront.errors import StorageError
from storefront.storage import LocalBlobStorage

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class RecordingStorage(LocalBlobStorage):
    """Local storage that remembers what it did and can fail chosen deletes."""

    def __init__(self, folder):
        super().__init__(folder, public_base="https://cdn.storefront.test")
        self.uploaded = []
        self.deleted = []
        self.fail_deletes = set()

    def upload(self, data, content_type, prefix="products/", extension=""):
        blob = super().upload(data, content_type, prefix=prefix, extension=extension)
        self.uploaded.append(blob.key)
        return blob

    def delete(self, key):
        if key in self.fail_deletes:
            raise StorageError("Failed to delete image") from OSError("bucket unavailable")
        super().delete(key)
        self.deleted.append(key)


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def storage(tmp_path):
    return RecordingStorage(str(tmp_path / "uploads"))


@pytest.fixture
def app(db, storage):
    app = create_app(
        config={
            "TESTING": True,
            "JWT_SECRET_KEY": "storefront-test-secret-key-0123456789abcdef",
            "BCRYPT_LOG_ROUNDS": 4,
            "PRODUCT_MAX_IMAGES": 5,
            "PRODUCT_NAME_UNIQUE": True,
        },
        db=db,
        storage=storage,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def image(name="photo.png", content=PNG_BYTES, content_type="image/png"):
    return (io.BytesIO(content), name, content_type)


@pytest.fixture
def register(client):
    def _register(email, name="Ada Lovelace", password="secret123", role=None):
        payload = {"name": name, "email": email, "password": password}
        if role:
            payload["role"] = role
        return client.post("/api/auth/register", json=payload)

    return _register


@pytest.fixture
def admin_token(register):
    response = register("admin@storefront.io", name="Grace Admin", role="admin")
    return response.get_json()["token"]


@pytest.fixture
def user_token(register):
    response = register("shopper@storefront.io", name="Sam Shopper")
    return response.get_json()["token"]


@pytest.fixture
def create_product(client, admin_token):
    def _create_product(name="Key Lime Tart", images=(), **fields):
        data = {"name": name, **fields}
        if images:
            data["images"] = list(images)
        response = client.post(
            "/api/products",
            data=data,
            headers=bearer(admin_token),
            content_type="multipart/form-data",
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()["product"]

    return _create_product
