from __future__ import annotations

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from scribe_api.core.config import settings

log = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class ObjectStorage:
    """Thin wrapper over the S3 multipart API used for chunked staging."""

    def __init__(self, bucket: str | None = None, client=None):
        self.bucket = bucket or settings.s3_bucket
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=settings.s3_region,
                endpoint_url=settings.s3_endpoint_url,
            )
        return self._client

    def start_multipart(self, key: str, content_type: str | None = None) -> str:
        kwargs = {"Bucket": self.bucket, "Key": key}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            resp = self.client.create_multipart_upload(**kwargs)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"could not start multipart upload for {key}: {e}") from e
        return resp["UploadId"]

    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        try:
            resp = self.client.upload_part(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"part {part_number} of {key} failed: {e}") from e
        return str(resp["ETag"])

    def complete_multipart(self, key: str, upload_id: str, parts: list[tuple[int, str]]) -> None:
        try:
            self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": [{"PartNumber": n, "ETag": etag} for n, etag in parts]},
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"could not complete multipart upload for {key}: {e}") from e

    def presigned_get_url(self, key: str, ttl_seconds: int | None = None) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=int(ttl_seconds or settings.presigned_url_ttl_seconds),
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"could not presign {key}: {e}") from e


def get_storage() -> ObjectStorage:
    return ObjectStorage()
