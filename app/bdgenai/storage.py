from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from werkzeug.utils import secure_filename


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    public_id: str
    url: str


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> StoredObject:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    base_url: str = "/storage"

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> StoredObject:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return StoredObject(public_id=key, url=f"{self.base_url.rstrip('/')}/{key.lstrip('/')}")

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        try:
            import boto3  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("boto3 required for S3 storage. Install boto3.") from e
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def _public_url(self, key: str) -> str:
        if self.endpoint:
            return f"https://{self.bucket}.{self.endpoint}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> StoredObject:
        extra: dict[str, object] = {"ACL": "public-read"}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        return StoredObject(public_id=key, url=self._public_url(key))

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except Exception:
            return False


@dataclass(frozen=True)
class CloudinaryStorage(Storage):
    """Image CDN backend; files are uploaded to Cloudinary and served from its secure_url."""

    cloud_name: str
    api_key: str
    api_secret: str
    folder: str = "bdgenai"

    def _configure(self):
        try:
            import cloudinary
            import cloudinary.uploader
        except Exception as e:  # pragma: no cover
            raise StorageError("cloudinary required for Cloudinary storage. Install cloudinary.") from e
        cloudinary.config(
            cloud_name=self.cloud_name,
            api_key=self.api_key,
            api_secret=self.api_secret,
            secure=True,
        )
        return cloudinary.uploader

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> StoredObject:
        uploader = self._configure()
        public_id = os.path.splitext(key)[0]
        try:
            result = uploader.upload(data, public_id=public_id, folder=self.folder, resource_type="auto")
        except Exception as e:
            raise StorageError(f"Cloudinary upload failed: {e}") from e
        return StoredObject(public_id=result["public_id"], url=result["secure_url"])

    def open(self, key: str) -> BinaryIO:
        raise StorageError("Cloudinary objects are served from their CDN URL.")

    def exists(self, key: str) -> bool:
        try:
            import cloudinary.api
        except Exception:  # pragma: no cover
            return False
        self._configure()
        try:
            cloudinary.api.resource(f"{self.folder}/{os.path.splitext(key)[0]}")
            return True
        except Exception:
            return False


def build_upload_key(user_id: int, filename: str) -> str:
    safe_filename = secure_filename(filename) or "upload.bin"
    return f"uploads/{user_id}/{uuid.uuid4().hex}-{safe_filename}"


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    if backend == "cloudinary":
        return CloudinaryStorage(
            cloud_name=(config.get("CLOUDINARY_CLOUD_NAME") or "").strip(),
            api_key=(config.get("CLOUDINARY_API_KEY") or "").strip(),
            api_secret=(config.get("CLOUDINARY_API_SECRET") or "").strip(),
        )
    # default local
    root = Path(config.get("LOCAL_STORAGE_ROOT") or (Path(os.getcwd()) / "storage"))
    return LocalStorage(root=root)
