"""
S3 relay uploader - pushes local files to a content-addressed S3 key.

boto3 is blocking, so every call runs in a worker thread via asyncio.to_thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from relay_agent.config import Settings
from relay_agent.core.exceptions import AuthError, ConnectivityError, RelayError
from relay_agent.models import UploadOutcome
from relay_agent.services.transfer.content_types import get_content_type

NOT_FOUND_CODES = {"404", "NotFound", "NoSuchKey"}
AUTH_ERROR_CODES = {
    "403",
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
}


@dataclass
class UploadResult:
    outcome: UploadOutcome
    key: str
    message: str

    @property
    def skipped(self) -> bool:
        return self.outcome == UploadOutcome.ALREADY_EXISTS


def classify_client_error(error: Exception, operation: str) -> RelayError:
    """Map a boto3/botocore error to AuthError or ConnectivityError."""
    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return AuthError(f"S3 {operation} failed: missing AWS credentials ({error})")

    if isinstance(error, ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        if code in AUTH_ERROR_CODES:
            return AuthError(
                f"S3 {operation} failed: access denied. Check AWS credentials and permissions ({code})"
            )
        if code == "NoSuchBucket":
            return ConnectivityError(f"S3 {operation} failed: bucket does not exist")
        return ConnectivityError(f"S3 {operation} failed: {error}")

    if isinstance(error, S3UploadFailedError) and "AccessDenied" in str(error):
        return AuthError(f"S3 {operation} failed: {error}")

    return ConnectivityError(f"S3 {operation} failed: {error}")


def _is_not_found(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in NOT_FOUND_CODES or status == 404


class S3RelayUploader:
    """Relay-uploader backed by a single S3 bucket."""

    def __init__(self, settings: Settings, s3_client=None):
        self.settings = settings
        self.bucket = settings.s3_bucket_name
        self._client = s3_client

        logging.info(
            f"S3RelayUploader initialiseret: bucket={self.bucket}, region={settings.aws_region}"
        )

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3", region_name=self.settings.aws_region)
        return self._client

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise classify_client_error(e, "head") from e
        except BotoCoreError as e:
            raise classify_client_error(e, "head") from e

    async def upload(
        self,
        source_path: Union[str, Path],
        key: str,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        """Upload ``source_path`` to ``key`` unless the key already exists."""
        if await self.exists(key):
            return UploadResult(
                outcome=UploadOutcome.ALREADY_EXISTS,
                key=key,
                message=f"File already exists: {key}",
            )

        file_name = Path(source_path).name
        extra_args = {
            "ContentType": content_type or get_content_type(file_name),
            "StorageClass": self.settings.s3_storage_class,
            "Metadata": {
                "originalFileName": file_name,
                "uploadedAt": datetime.now(timezone.utc).isoformat(),
            },
        }

        try:
            await asyncio.to_thread(
                self.client.upload_file,
                str(source_path),
                self.bucket,
                key,
                ExtraArgs=extra_args,
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise classify_client_error(e, "upload") from e

        logging.debug(f"Uploaded {file_name} to s3://{self.bucket}/{key}")
        return UploadResult(
            outcome=UploadOutcome.UPLOADED,
            key=key,
            message=f"Successfully uploaded: {key}",
        )

    async def verify_bucket(self) -> bool:
        """
        Probe the bucket with a HEAD on a key that should not exist.

        A 404 proves the bucket is reachable and readable. Anything else is
        raised as AuthError or ConnectivityError.
        """
        try:
            await asyncio.to_thread(
                self.client.head_object,
                Bucket=self.bucket,
                Key="relay-agent-connection-test-key-that-does-not-exist",
            )
            return True
        except ClientError as e:
            if _is_not_found(e) and e.response.get("Error", {}).get("Code") != "NoSuchBucket":
                return True
            raise classify_client_error(e, "connection test") from e
        except BotoCoreError as e:
            raise classify_client_error(e, "connection test") from e
