import logging
from datetime import datetime, timezone
from pathlib import Path

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from .errors import TransferError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
REMUXED_CONTENT_TYPE = "video/webm"
MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def get_s3_client():
    """
    SDK client for server-side download/upload.
    """
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,  # e.g. https://<account>.r2.cloudflarestorage.com
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        ),
    )


def create_presigned_get(key: str, expires: int | None = None, client=None, bucket: str | None = None) -> str:
    """
    Create a presigned GET URL to download an object.
    """
    s3 = client or get_s3_client()
    return s3.generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": bucket or settings.S3_BUCKET, "Key": key},
        ExpiresIn=expires or settings.S3_PRESIGN_EXPIRE_SECONDS,
        HttpMethod="GET",
    )


def _error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


class S3ObjectStore:
    """Object store gateway over an S3-compatible bucket (R2, MinIO, AWS)."""

    def __init__(self, client=None, bucket: str | None = None, http_client: httpx.Client | None = None,
                 processor_name: str | None = None):
        self.client = client or get_s3_client()
        self.bucket = bucket or settings.S3_BUCKET
        self.http_client = http_client
        self.processor_name = processor_name or settings.REMUX_PROCESSOR_NAME

    def exists(self, key: str) -> bool:
        """HEAD the key; True only when it is present with a non-zero length."""
        try:
            resp = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in MISSING_CODES:
                return False
            raise TransferError(f"HEAD {key} failed: {e}") from e
        except BotoCoreError as e:
            raise TransferError(f"HEAD {key} failed: {e}") from e
        return (resp.get("ContentLength") or 0) > 0

    def download(self, key: str, dest: Path) -> None:
        """
        Stream the object into dest. If the SDK stream fails, retry once through
        a presigned URL over plain HTTP.
        """
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
            with open(dest, "wb") as f:
                for chunk in resp["Body"].iter_chunks(CHUNK_SIZE):
                    f.write(chunk)
            return
        except (ClientError, BotoCoreError, OSError) as e:
            logger.warning("Direct download of %s failed (%s); using signed URL", key, e)

        url = create_presigned_get(key, client=self.client, bucket=self.bucket)
        try:
            self._download_url(url, dest)
        except (httpx.HTTPError, OSError) as e:
            raise TransferError(f"Download of {key} failed: {e}") from e

    def _download_url(self, url: str, dest: Path) -> None:
        client = self.http_client or httpx.Client(timeout=httpx.Timeout(60.0, read=None))
        try:
            with client.stream("GET", url) as resp:
                resp.raise_for_status()
                with open(dest, "wb") as f:
                    for chunk in resp.iter_bytes(CHUNK_SIZE):
                        f.write(chunk)
        finally:
            if client is not self.http_client:
                client.close()

    def upload(self, src: Path, key: str) -> None:
        """Overwrite key with src, tagged with remux provenance."""
        metadata = {
            "remuxed": "true",
            "remuxed-at": datetime.now(timezone.utc).isoformat(),
            "processor": self.processor_name,
        }
        try:
            with open(src, "rb") as body:
                self.client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=body,
                    ContentType=REMUXED_CONTENT_TYPE,
                    Metadata=metadata,
                )
        except (ClientError, BotoCoreError, OSError) as e:
            raise TransferError(f"Upload of {key} failed: {e}") from e
