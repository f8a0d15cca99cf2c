from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class UploadError(RuntimeError):
    """Raised when an object could not be written to the object store."""


class S3Uploader:
    """Writes content-addressed media objects to an S3 bucket."""

    def __init__(
        self,
        *,
        bucket: str,
        region: str = "us-east-1",
        access_key_id: str = "",
        secret_access_key: str = "",
        client: Any | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("S3 bucket name can't be empty")
        self.bucket = bucket
        self.region = region

        if client is None:
            kwargs: dict[str, Any] = {"region_name": region}
            # Fall back to the default credential chain when no keys are given.
            if access_key_id and secret_access_key:
                kwargs["aws_access_key_id"] = access_key_id
                kwargs["aws_secret_access_key"] = secret_access_key
            client = boto3.client("s3", **kwargs)
        self._client = client

    def upload(self, key: str, content: bytes) -> None:
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=content)
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"Failed to upload s3://{self.bucket}/{key}: {e}") from e
