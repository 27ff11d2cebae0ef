import mimetypes
from datetime import UTC
from typing import BinaryIO, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from volaticus.core.config import logger
from volaticus.core.exceptions import NotFound, StorageError
from volaticus.storage.base import CACHE_CONTROL, CHUNK_SIZE, BlobInfo, BlobStream
from volaticus.storage.mime import OCTET_STREAM

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class _CountingReader:
    def __init__(self, raw: BinaryIO):
        self.raw = raw
        self.count = 0

    def read(self, size: int = -1) -> bytes:
        data = self.raw.read(size)
        self.count += len(data)
        return data


class ObjectStorage:
    """
    Blobs stored in an S3 compatible bucket.

    ``endpoint_url`` points the client at an emulator (MinIO, LocalStack,
    fake-gcs-server) or at the GCS interoperability endpoint, in which case
    ``project_id`` is sent with bucket creation.
    """

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        project_id: Optional[str] = None,
        timeout: float = 30.0,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.project_id = project_id

        if client is None:
            kwargs = {
                "region_name": region,
                "config": Config(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"max_attempts": 3, "mode": "standard"},
                ),
            }
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("s3", **kwargs)
        self.client = client

        if project_id:
            self.client.meta.events.register("before-sign.s3.CreateBucket", self._add_project_header)

        self._ensure_bucket()

    def _add_project_header(self, request, **kwargs):
        request.headers["x-goog-project-id"] = self.project_id

    def _ensure_bucket(self) -> None:
        """Create the bucket if it does not exist. Failures are only logged."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info(f"Bucket '{self.bucket}' exists")
            return
        except ClientError as e:
            if _error_code(e) not in _MISSING_BUCKET_CODES:
                logger.error(f"Error checking bucket '{self.bucket}': {e}")
                return
        except BotoCoreError as e:
            logger.error(f"Error checking bucket '{self.bucket}': {e}")
            return

        try:
            params = {"Bucket": self.bucket}
            if self.region and self.region != "us-east-1":
                params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
            self.client.create_bucket(**params)
            logger.info(f"Created bucket '{self.bucket}'")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error creating bucket '{self.bucket}': {e}")

    def write(self, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> int:
        reader = _CountingReader(stream)
        extra = {"CacheControl": CACHE_CONTROL, "ContentType": content_type or OCTET_STREAM}
        try:
            self.client.upload_fileobj(reader, self.bucket, key, ExtraArgs=extra)
        except (ClientError, BotoCoreError, OSError, ValueError) as e:
            self._discard(key)
            raise StorageError(f"Failed to write blob {key}") from e
        except BaseException:
            self._discard(key)
            raise

        logger.debug(f"Stored object {key} ({reader.count} bytes)")
        return reader.count

    def _discard(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to remove partial object {key}: {e}")

    def stream(self, key: str) -> BlobStream:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                raise NotFound("File not found")
            raise StorageError(f"Failed to read object {key}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read object {key}") from e

        return BlobStream(
            content_type=response.get("ContentType") or OCTET_STREAM,
            size=response.get("ContentLength", 0),
            chunks=self._iter_body(response["Body"]),
            cache_control=response.get("CacheControl") or CACHE_CONTROL,
        )

    @staticmethod
    def _iter_body(body) -> Iterator[bytes]:
        try:
            yield from body.iter_chunks(CHUNK_SIZE)
        finally:
            body.close()

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return False
            raise StorageError(f"Error checking object {key}") from e
        except BotoCoreError as e:
            raise StorageError(f"Error checking object {key}") from e
        return True

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete object {key}") from e

    def enumerate(self, prefix: str = "") -> list[BlobInfo]:
        blobs = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    modified = obj["LastModified"]
                    if modified.tzinfo is not None:
                        modified = modified.astimezone(UTC).replace(tzinfo=None)
                    blobs.append(
                        BlobInfo(
                            name=obj["Key"],
                            size=obj["Size"],
                            content_type=mimetypes.guess_type(obj["Key"])[0] or OCTET_STREAM,
                            modified_at=modified,
                        )
                    )
        except ClientError as e:
            if _error_code(e) in _MISSING_BUCKET_CODES:
                return blobs
            raise StorageError("Error listing objects") from e
        except BotoCoreError as e:
            raise StorageError("Error listing objects") from e
        return blobs

    def close(self) -> None:
        self.client.close()
