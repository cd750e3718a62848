import logging
from typing import Iterator, Optional
from urllib.parse import urlparse

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from video_interview.core.config import settings


logger = logging.getLogger(__name__)


class S3ObjectStorage:
    """S3-backed clip storage.

    The boto3 client is created on first use so credentials and bucket are read
    from the environment at call time.
    """

    def __init__(self, bucket: Optional[str] = None, public_base_url: Optional[str] = None) -> None:
        self.bucket = bucket or settings.s3_bucket
        self.public_base_url = (public_base_url or settings.s3_public_base_url or "").rstrip("/") or None
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=settings.aws_region or None,
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
                config=Config(signature_version="s3v4"),
            )
        return self._client

    def _require_bucket(self) -> str:
        if not self.bucket:
            raise RuntimeError("S3_BUCKET not configured")
        return self.bucket

    def put(self, key: str, body: bytes, content_type: str) -> str:
        """Upload raw bytes at the given key (overwrite) and return its public locator."""
        bucket = self._require_bucket()
        self.client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body,
            ContentType=content_type or "application/octet-stream",
        )
        url = self.locator_for(key)
        logger.info("[S3 PUT] uploaded %d bytes to s3://%s/%s", len(body), bucket, key)
        return url

    def get(self, key: str) -> tuple[bytes, str]:
        bucket = self._require_bucket()
        obj = self.client.get_object(Bucket=bucket, Key=key)
        body = obj["Body"].read()
        content_type = obj.get("ContentType") or "application/octet-stream"
        return body, content_type

    def exists(self, key: str) -> bool:
        if not self.bucket:
            return False
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    def delete(self, key: str) -> None:
        bucket = self._require_bucket()
        self.client.delete_object(Bucket=bucket, Key=key)
        logger.info("[S3 DELETE] s3://%s/%s", bucket, key)

    def list_keys(self, prefix: str) -> Iterator[str]:
        bucket = self._require_bucket()
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                yield item["Key"]

    def locator_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        bucket = self._require_bucket()
        return f"https://{bucket}.s3.{settings.aws_region}.amazonaws.com/{key}"

    def key_for(self, locator: str) -> Optional[str]:
        if not locator:
            return None
        if locator.startswith("s3://"):
            return locator.split("/", 3)[-1]
        if self.public_base_url and locator.startswith(self.public_base_url + "/"):
            return locator[len(self.public_base_url) + 1:]
        return urlparse(locator).path.lstrip("/") or None

    def upsert_lifecycle_rule(self, prefix: str, expire_days: int) -> dict:
        """Create or update a bucket lifecycle rule for a given prefix."""
        bucket = self._require_bucket()
        try:
            existing = self.client.get_bucket_lifecycle_configuration(Bucket=bucket)
            rules = list(existing.get("Rules", []))
        except ClientError:
            rules = []

        rule_id = f"ttl-{prefix.strip('/').replace('/', '_')}"
        new_rule = {
            "ID": rule_id,
            "Status": "Enabled",
            "Filter": {"Prefix": prefix},
            "Expiration": {"Days": int(expire_days)},
        }
        for i, r in enumerate(rules):
            if r.get("ID") == rule_id or r.get("Filter", {}).get("Prefix") == prefix:
                rules[i] = new_rule
                break
        else:
            rules.append(new_rule)
        self.client.put_bucket_lifecycle_configuration(Bucket=bucket, LifecycleConfiguration={"Rules": rules})
        return {"bucket": bucket, "rules": rules}
