#!/usr/bin/env python3
"""S3 access for darwin_tracker: find the newest timetable object and open its body."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from .errors import AuthError, NotFoundError, TransientStorageError
from .models import DEFAULT_IO_TIMEOUT, TimetableObject, mask

logger = logging.getLogger(__name__)

AUTH_ERROR_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
    "403",
}
MISSING_BUCKET_CODES = {"NoSuchBucket"}


@dataclass(frozen=True)
class StorageCredentials:
    access_key_id: str = ""
    secret_access_key: str = ""

    @property
    def present(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StorageCredentials":
        env = os.environ if environ is None else environ
        key = (env.get("AWS_ACCESS_KEY_ID") or env.get("ACCESS_KEY_ID") or "").strip()
        secret = (env.get("AWS_SECRET_ACCESS_KEY") or env.get("SECRET_ACCESS_KEY") or "").strip()
        return cls(access_key_id=key, secret_access_key=secret)

    def __repr__(self) -> str:
        return f"StorageCredentials(access_key_id={mask(self.access_key_id)!r})"


def build_s3_client(credentials: StorageCredentials, region: str, timeout: float = DEFAULT_IO_TIMEOUT):
    """S3 client with static credentials; every call bounded by connect/read timeouts."""
    if not credentials.present:
        raise AuthError("AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set in environment")
    config = Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"max_attempts": 3, "mode": "standard"},
    )
    return boto3.client(
        "s3",
        region_name=region,
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        config=config,
    )


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


def translate_storage_error(exc: Exception, action: str, *, stage: str):
    """Map a boto/botocore failure onto the pass error taxonomy."""
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return AuthError(f"{action}: credentials unavailable ({exc})", stage=stage)
    if isinstance(exc, ClientError):
        code = _error_code(exc)
        if code in AUTH_ERROR_CODES:
            return AuthError(f"{action}: credentials rejected ({code})", stage=stage)
        if code in MISSING_BUCKET_CODES:
            return NotFoundError(f"{action}: bucket does not exist ({code})", stage=stage)
        return TransientStorageError(f"{action}: {code or 'ClientError'} {exc}", stage=stage)
    return TransientStorageError(f"{action}: {type(exc).__name__}: {exc}", stage=stage)


def select_latest(objects: Iterable[TimetableObject]) -> TimetableObject:
    candidates = list(objects)
    if not candidates:
        raise NotFoundError("No timetable files found in S3 bucket")
    return max(candidates, key=TimetableObject.sort_key)


class ObjectLocator:
    """Lists a bucket prefix and picks the most recently modified object."""

    def __init__(self, client_factory, bucket: str, prefix: str) -> None:
        self._client_factory = client_factory
        self.bucket = bucket
        self.prefix = prefix

    def list_objects(self) -> List[TimetableObject]:
        client = self._client_factory()
        objects: List[TimetableObject] = []
        try:
            paginator = client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for item in page.get("Contents", []):
                    key = item.get("Key") or ""
                    # zero-byte "folder" markers created by console uploads
                    if not key or key.endswith("/"):
                        continue
                    objects.append(TimetableObject(key=key, last_modified=item["LastModified"]))
        except (ClientError, BotoCoreError) as exc:
            raise translate_storage_error(exc, f"list s3://{self.bucket}/{self.prefix}", stage="listing") from exc
        logger.debug("Listed %d objects under s3://%s/%s", len(objects), self.bucket, self.prefix)
        return objects

    def latest(self) -> TimetableObject:
        latest = select_latest(self.list_objects())
        logger.info("Latest timetable: %s (modified %s)", latest.key, latest.last_modified.isoformat())
        return latest


class StreamFetcher:
    """Opens an object body as a stream. The caller owns the returned stream."""

    def __init__(self, client_factory, bucket: str) -> None:
        self._client_factory = client_factory
        self.bucket = bucket

    def fetch(self, obj: TimetableObject) -> Any:
        client = self._client_factory()
        try:
            response = client.get_object(Bucket=self.bucket, Key=obj.key)
        except (ClientError, BotoCoreError) as exc:
            raise translate_storage_error(exc, f"get s3://{self.bucket}/{obj.key}", stage="fetching") from exc
        body = response["Body"]
        logger.info("Downloading timetable %s (%s bytes)", obj.key, response.get("ContentLength", "?"))
        return body


class S3ClientFactory:
    """Builds the boto3 client once, on first use, so missing credentials fail the pass rather than startup."""

    def __init__(self, credentials: StorageCredentials, region: str, timeout: float = DEFAULT_IO_TIMEOUT) -> None:
        self.credentials = credentials
        self.region = region
        self.timeout = timeout
        self._client = None

    def __call__(self):
        if self._client is None:
            logger.info("Using AWS_ACCESS_KEY_ID: %s", mask(self.credentials.access_key_id))
            self._client = build_s3_client(self.credentials, self.region, self.timeout)
        return self._client
