"""
Storage Service - uploads source archives to S3/MinIO
With retry logic for resilient operations
"""

import asyncio
from functools import partial
from typing import Optional, Set

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, BotoCoreError

from app.core.config import settings
from app.core.exceptions import StorageError
from app.core.logging_config import logger


class ObjectStorageService:
    """
    S3-compatible blob store. A "container" maps to a bucket and blob names
    map to object keys, e.g. ``source-zips/{build_id}/source.zip``.
    """

    def __init__(self, client=None, max_retries: Optional[int] = None):
        self._client = client
        self._max_retries = max_retries or settings.STORAGE_MAX_RETRIES
        self._known_buckets: Set[str] = set()

    def _get_client(self):
        """Lazy initialization of S3/MinIO client"""
        if self._client is None:
            if settings.USE_MINIO:
                self._client = boto3.client(
                    's3',
                    endpoint_url=f"http://{settings.MINIO_ENDPOINT}",
                    aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                    config=Config(
                        signature_version='s3v4',
                        s3={'addressing_style': 'path'}
                    ),
                    region_name=settings.AWS_REGION
                )
            elif settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
                self._client = boto3.client(
                    's3',
                    aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                    region_name=settings.AWS_REGION
                )
            else:
                # Use IAM role credentials (automatic in ECS/EC2)
                self._client = boto3.client('s3', region_name=settings.AWS_REGION)
                logger.info("S3 client using IAM role credentials")
        return self._client

    def _ensure_bucket(self, bucket: str) -> None:
        """Create bucket if it doesn't exist"""
        if bucket in self._known_buckets:
            return
        client = self._get_client()
        try:
            client.head_bucket(Bucket=bucket)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code not in ['404', 'NoSuchBucket']:
                raise
            if settings.USE_MINIO or settings.AWS_REGION == 'us-east-1':
                client.create_bucket(Bucket=bucket)
            else:
                client.create_bucket(
                    Bucket=bucket,
                    CreateBucketConfiguration={'LocationConstraint': settings.AWS_REGION}
                )
            logger.info(f"Created bucket '{bucket}'")
        self._known_buckets.add(bucket)

    def public_url(self, container: str, blob_name: str) -> str:
        if settings.STORAGE_PUBLIC_BASE_URL:
            return f"{settings.STORAGE_PUBLIC_BASE_URL.rstrip('/')}/{container}/{blob_name}"
        if settings.USE_MINIO:
            return f"http://{settings.MINIO_ENDPOINT}/{container}/{blob_name}"
        return f"https://{container}.s3.{settings.AWS_REGION}.amazonaws.com/{blob_name}"

    def _put(self, container: str, blob_name: str, data: bytes, content_type: str) -> None:
        self._ensure_bucket(container)
        self._get_client().put_object(
            Bucket=container,
            Key=blob_name,
            Body=data,
            ContentType=content_type,
        )

    async def upload(
        self,
        container: str,
        blob_name: str,
        data: bytes,
        content_type: str = 'application/zip',
    ) -> str:
        """
        Upload a blob with retry logic and return its URL.

        Retry behavior:
            - Retries on ClientError, BotoCoreError, ConnectionError, TimeoutError
            - Exponential backoff: 1s, 2s, 4s...
        """
        loop = asyncio.get_running_loop()
        last_exception: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                await loop.run_in_executor(
                    None, partial(self._put, container, blob_name, data, content_type)
                )
                url = self.public_url(container, blob_name)
                logger.info(f"[S3-Upload] Uploaded: {container}/{blob_name} ({len(data)} bytes)")
                return url

            except (ClientError, BotoCoreError, ConnectionError, TimeoutError) as e:
                last_exception = e
                if attempt < self._max_retries - 1:
                    delay = 1.0 * (2 ** attempt)  # 1s, 2s, 4s
                    logger.warning(f"[S3-Upload] Attempt {attempt + 1}/{self._max_retries} failed for {blob_name}: {e}. Retrying in {delay:.1f}s...")
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"[S3-Upload] All {self._max_retries} attempts failed for {blob_name}: {e}")

        raise StorageError(f"Upload failed: {last_exception}", key=f"{container}/{blob_name}")

    async def upload_source_archive(self, build_id: str, data: bytes) -> str:
        return await self.upload(settings.SOURCE_ARCHIVE_CONTAINER, f"{build_id}/source.zip", data)
