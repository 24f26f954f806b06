from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings

logger = logging.getLogger(__name__)


class ObjectStore:
    """Thin wrapper over the S3/MinIO bucket; only mints presigned retrieval handles."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._client: Any = None

    @property
    def bucket(self) -> str:
        return self._settings.s3_bucket

    @property
    def client(self):
        if self._client is None:
            s = self._settings
            self._client = boto3.client(
                "s3",
                aws_access_key_id=s.s3_access_key,
                aws_secret_access_key=s.s3_secret_key,
                endpoint_url=s.s3_endpoint_url,
                region_name=s.s3_region,
                config=BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path" if s.s3_use_path_style else "virtual"},
                ),
            )
        return self._client

    def presign_get(self, key: str, expires_in: int, filename: str | None = None) -> str:
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if filename:
            safe_name = filename.replace('"', "")
            params["ResponseContentDisposition"] = f'attachment; filename="{safe_name}"'
        return self.client.generate_presigned_url("get_object", Params=params, ExpiresIn=expires_in)

    def ping(self) -> str:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return "ok"
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Object store check failed for bucket {self.bucket}: {e}")
            return f"error: {type(e).__name__}"
