"""Object storage for uploaded file bytes.

Two backends share one small interface: ``LocalStorage`` keeps objects
under ``UPLOAD_DIR`` and ``MinioStorage`` keeps them in a MinIO bucket.
All methods are blocking; callers run them through ``run_in_threadpool``.
Objects are written once and never modified in place.
"""
import logging
import os
import shutil
from typing import BinaryIO, Optional, Protocol

from minio import Minio
from minio.error import S3Error

from .config import settings

logger = logging.getLogger("forumfiles")


class ObjectNotFound(Exception):
    pass


class ObjectStorage(Protocol):
    def initialize(self) -> None: ...

    def put_file(self, object_name: str, source_path: str, content_type: str) -> None: ...

    def exists(self, object_name: str) -> bool: ...

    def open(self, object_name: str) -> BinaryIO: ...

    def remove(self, object_name: str) -> None: ...


class LocalStorage:
    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _path(self, object_name: str) -> str:
        path = os.path.abspath(os.path.join(self.root, object_name))
        if os.path.commonpath([self.root, path]) != self.root:
            raise ObjectNotFound(object_name)
        return path

    def initialize(self) -> None:
        os.makedirs(self.root, exist_ok=True)
        logger.info("Local storage ready at %s", self.root)

    def put_file(self, object_name: str, source_path: str, content_type: str) -> None:
        dest = self._path(object_name)
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        shutil.copyfile(source_path, dest)

    def exists(self, object_name: str) -> bool:
        try:
            return os.path.isfile(self._path(object_name))
        except ObjectNotFound:
            return False

    def open(self, object_name: str) -> BinaryIO:
        try:
            return open(self._path(object_name), "rb")
        except FileNotFoundError:
            raise ObjectNotFound(object_name)

    def remove(self, object_name: str) -> None:
        try:
            os.remove(self._path(object_name))
        except FileNotFoundError:
            pass


class _MinioObject:
    def __init__(self, response):
        self._response = response

    def read(self, size: int = -1) -> bytes:
        return self._response.read(size)

    def close(self) -> None:
        self._response.close()
        self._response.release_conn()


class MinioStorage:
    def __init__(self, client: Minio, bucket: str):
        self.client = client
        self.bucket = bucket

    def initialize(self) -> None:
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info(f"Bucket '{self.bucket}' created successfully")
            else:
                logger.info(f"Bucket '{self.bucket}' already exists")
        except S3Error as e:
            logger.error(f"MinIO error: {e}")
            raise RuntimeError(f"Failed to initialize MinIO bucket: {e}")

    def put_file(self, object_name: str, source_path: str, content_type: str) -> None:
        self.client.fput_object(self.bucket, object_name, source_path, content_type=content_type)

    def exists(self, object_name: str) -> bool:
        try:
            self.client.stat_object(self.bucket, object_name)
            return True
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject", "NoSuchBucket"):
                return False
            raise

    def open(self, object_name: str) -> _MinioObject:
        try:
            return _MinioObject(self.client.get_object(self.bucket, object_name))
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject", "NoSuchBucket"):
                raise ObjectNotFound(object_name)
            raise

    def remove(self, object_name: str) -> None:
        self.client.remove_object(self.bucket, object_name)


def build_storage() -> ObjectStorage:
    if settings.STORAGE_BACKEND == "minio":
        client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        return MinioStorage(client, settings.MINIO_BUCKET)
    return LocalStorage(settings.UPLOAD_DIR)


_storage: Optional[ObjectStorage] = None


def get_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        _storage = build_storage()
    return _storage
