from __future__ import annotations

from typing import Any

import boto3
from botocore.exceptions import ClientError

from sysguard.core.errors import StorageError
from sysguard.logging import get_logger

logger = get_logger()


class S3BackupStorage:
    name = "s3"

    def __init__(self, bucket: str, *, prefix: str = "", client: Any | None = None, **client_kwargs: Any) -> None:
        if not bucket:
            raise StorageError("BACKUP_S3_BUCKET is required for the s3 backup disk")
        self.bucket = bucket
        self.prefix = prefix
        self._client = client or boto3.client("s3", **client_kwargs)

    def put(self, path: str, content: bytes) -> None:
        try:
            self._client.put_object(Bucket=self.bucket, Key=self._key(path), Body=content)
        except ClientError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc
        logger.debug("storage_object_written", uri=f"s3://{self.bucket}/{self._key(path)}")

    def get(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=self._key(path))
        except ClientError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        return response["Body"].read()

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=self._key(path))
        except ClientError:
            return False
        return True

    def delete(self, path: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=self._key(path))

    def size(self, path: str) -> int:
        return int(self._head(path)["ContentLength"])

    def last_modified(self, path: str) -> float:
        return self._head(path)["LastModified"].timestamp()

    def files(self, prefix: str) -> list[str]:
        directory = f"{self._key(prefix).rstrip('/')}/"
        paginator = self._client.get_paginator("list_objects_v2")
        keys: list[str] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=directory, Delimiter="/"):
            for item in page.get("Contents", []):
                keys.append(item["Key"][len(self.prefix):])
        return sorted(keys)

    def _head(self, path: str) -> dict[str, Any]:
        try:
            return self._client.head_object(Bucket=self.bucket, Key=self._key(path))
        except ClientError as exc:
            raise StorageError(f"File not found: {path}") from exc

    def _key(self, path: str) -> str:
        return f"{self.prefix}{path.lstrip('/')}"


__all__ = ["S3BackupStorage"]
