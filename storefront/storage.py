"""Blob storage for product images.

Images are written under a random key and referenced afterwards by the public
URL the store hands back. Production uses Cloudflare R2 through its S3
compatible API; without R2 credentials images are kept on local disk and
served by the app itself.
"""
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import request

from .errors import StorageError


@dataclass(frozen=True)
class StoredBlob:
    key: str
    url: str


def generate_key(prefix: str = "", extension: str = "") -> str:
    return f"{prefix or ''}{uuid4().hex}{extension or ''}"


class BlobStorage:
    def upload(
        self, data: bytes, content_type: str, prefix: str = "products/", extension: str = ""
    ) -> StoredBlob:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class R2BlobStorage(BlobStorage):
    def __init__(
        self,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        public_base: Optional[str] = None,
        client=None,
    ):
        self.account_id = account_id
        self.bucket = bucket
        self.public_base = (public_base or "").rstrip("/")
        self.client = client or boto3.client(
            "s3",
            endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name="auto",
        )

    def public_url(self, key: str) -> str:
        if self.public_base:
            return f"{self.public_base}/{key}"
        return f"https://{self.bucket}.{self.account_id}.r2.cloudflarestorage.com/{key}"

    def upload(self, data, content_type, prefix="products/", extension=""):
        key = generate_key(prefix, extension)
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("Failed to upload images") from exc
        return StoredBlob(key=key, url=self.public_url(key))

    def delete(self, key):
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("Failed to delete image") from exc


class LocalBlobStorage(BlobStorage):
    def __init__(self, folder: str, public_base: Optional[str] = None):
        self.folder = folder
        self.public_base = (public_base or "").rstrip("/")
        os.makedirs(folder, exist_ok=True)

    def path_for(self, key: str) -> str:
        return os.path.join(self.folder, *key.split("/"))

    def public_url(self, key: str) -> str:
        if self.public_base:
            return f"{self.public_base}/{key}"
        return urljoin(request.host_url, f"uploads/{key}")

    def upload(self, data, content_type, prefix="products/", extension=""):
        key = generate_key(prefix, extension)
        destination = self.path_for(key)
        try:
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            with open(destination, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            raise StorageError("Failed to upload images") from exc
        return StoredBlob(key=key, url=self.public_url(key))

    def delete(self, key):
        try:
            os.remove(self.path_for(key))
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError("Failed to delete image") from exc


def build_storage(app) -> BlobStorage:
    config = app.config
    r2_settings = (
        config.get("R2_ACCOUNT_ID"),
        config.get("R2_ACCESS_KEY_ID"),
        config.get("R2_SECRET_ACCESS_KEY"),
        config.get("R2_BUCKET"),
    )
    if all(r2_settings):
        account_id, access_key_id, secret_access_key, bucket = r2_settings
        return R2BlobStorage(
            account_id,
            access_key_id,
            secret_access_key,
            bucket,
            public_base=config.get("R2_PUBLIC_BASE"),
        )

    upload_folder = config.get("UPLOAD_FOLDER") or os.path.join(app.root_path, "uploads")
    app.logger.warning(
        "R2 storage is not configured; storing uploads in %s", upload_folder
    )
    config["UPLOAD_FOLDER"] = upload_folder
    return LocalBlobStorage(upload_folder)
