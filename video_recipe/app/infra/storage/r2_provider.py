# video_recipe/app/infra/storage/r2_provider.py
"""
Cloudflare R2 storage provider implementation.
R2 is S3-compatible, so we use boto3 with custom endpoint.
Logical buckets are mapped to key prefixes inside one R2 bucket.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from video_recipe.app.domain.errors import StorageError, UploadConflict
from video_recipe.app.infra.storage.base import BlobStorage, StoredObject

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000
PRECONDITION_CODES = ("PreconditionFailed", "412")


class R2BlobStorage(BlobStorage):
    """
    Cloudflare R2 storage provider using boto3 (S3-compatible).

    Environment variables required:
    - R2_ACCOUNT_ID: Cloudflare account ID
    - R2_ACCESS_KEY_ID: R2 access key ID
    - R2_SECRET_ACCESS_KEY: R2 secret access key
    - R2_BUCKET_NAME: Name of the R2 bucket
    - R2_PUBLIC_URL: (Optional) Public URL for the bucket
    """

    def __init__(
        self,
        account_id: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        bucket_name: Optional[str] = None,
        public_url: Optional[str] = None,
        client=None,
    ):
        self.account_id = account_id or os.getenv("R2_ACCOUNT_ID")
        self.access_key_id = access_key_id or os.getenv("R2_ACCESS_KEY_ID")
        self.secret_access_key = secret_access_key or os.getenv("R2_SECRET_ACCESS_KEY")
        self.bucket_name = bucket_name or os.getenv("R2_BUCKET_NAME")
        self.public_url = (public_url or os.getenv("R2_PUBLIC_URL") or "").rstrip("/")

        if client is not None:
            self._client = client
            return

        if not all([self.account_id, self.access_key_id, self.secret_access_key, self.bucket_name]):
            raise StorageError(
                "Missing R2 configuration. Required: R2_ACCOUNT_ID, R2_ACCESS_KEY_ID, "
                "R2_SECRET_ACCESS_KEY, R2_BUCKET_NAME"
            )

        self.endpoint_url = f"https://{self.account_id}.r2.cloudflarestorage.com"

        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
            region_name="auto",  # R2 uses 'auto' as region
        )

        logger.info(
            "R2BlobStorage initialized: bucket=%s, endpoint=%s",
            self.bucket_name,
            self.endpoint_url,
        )

    @staticmethod
    def _key(bucket: str, path: str) -> str:
        return f"{bucket}/{path.lstrip('/')}"

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        key = self._key(bucket, path)
        try:
            self._client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code in PRECONDITION_CODES:
                raise UploadConflict(bucket, path) from e
            logger.error("Failed to upload to R2: key=%s, error=%s", key, e)
            raise StorageError(f"Failed to upload {key}: {e}") from e
        except BotoCoreError as e:
            logger.error("R2 upload transport error: key=%s, error=%s", key, e)
            raise StorageError(f"Failed to upload {key}: {e}") from e

        logger.debug("Uploaded to R2: key=%s, size=%d bytes", key, len(data))
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        key = self._key(bucket, path)
        if self.public_url:
            return f"{self.public_url}/{key}"
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=7 * 24 * 3600,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to generate signed GET URL: %s", e)
            raise StorageError(f"Failed to generate download URL: {e}") from e

    def remove(self, bucket: str, paths: list[str]) -> None:
        keys = [self._key(bucket, path) for path in paths]
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                self._client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as e:
                logger.error("Failed to delete objects from R2: %s", e)
                raise StorageError(f"Failed to delete objects: {e}") from e
        if keys:
            logger.info("Deleted %d objects from R2 under %s/", len(keys), bucket)

    def list(self, bucket: str, prefix: str) -> list[str]:
        key_prefix = self._key(bucket, prefix)
        strip = len(bucket) + 1
        paths: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=key_prefix):
                for item in page.get("Contents", []):
                    paths.append(item["Key"][strip:])
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to list R2 objects: %s", e)
            raise StorageError(f"Failed to list objects: {e}") from e
        return paths

    def list_objects(self, bucket: str, prefix: str = "") -> list[StoredObject]:
        """List objects under a prefix. Custom metadata needs one HEAD request per object."""
        key_prefix = self._key(bucket, prefix)
        strip = len(bucket) + 1
        objects: list[StoredObject] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=key_prefix):
                for item in page.get("Contents", []):
                    head = self._client.head_object(Bucket=self.bucket_name, Key=item["Key"])
                    objects.append(
                        StoredObject(
                            path=item["Key"][strip:],
                            metadata=dict(head.get("Metadata") or {}),
                            updated_at=item.get("LastModified"),
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to list R2 objects with metadata: %s", e)
            raise StorageError(f"Failed to list objects: {e}") from e
        return objects

    def create_signed_upload_url(self, bucket: str, path: str, expires_seconds: int = 3600) -> str:
        """Generate a pre-signed PUT URL for direct upload to R2."""
        key = self._key(bucket, path)
        try:
            url = self._client.generate_presigned_url(
                ClientMethod="put_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=expires_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to generate signed PUT URL: %s", e)
            raise StorageError(f"Failed to generate upload URL: {e}") from e

        logger.debug("Generated signed PUT URL: key=%s", key)
        return url
