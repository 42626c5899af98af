import logging
import uuid
from typing import Optional

from botocore.exceptions import ClientError
import boto3

from .config import settings
from .exceptions import StorageError

logger = logging.getLogger(__name__)

# Basic upload limits
MAX_IMAGE_SIZE_BYTES = settings.MAX_FILE_SIZE
ALLOWED_IMAGE_EXTS = {"png", "jpeg", "webp"}
DISALLOWED_CONTENT_TYPES = {"image/svg+xml"}


class MediaStorage:
    def __init__(self, client=None):
        if not settings.S3_BUCKET:
            raise RuntimeError("S3_BUCKET is not set")
        self.bucket = settings.S3_BUCKET
        # You can override this with a CDN / custom domain if you have one.
        self.public_url = settings.PUBLIC_CDN_URL or f"{settings.S3_ENDPOINT}/{self.bucket}"

        if client is None:
            if not settings.S3_ACCESS_KEY:
                raise RuntimeError("S3_ACCESS_KEY is not set")
            if not settings.S3_SECRET_KEY:
                raise RuntimeError("S3_SECRET_KEY is not set")
            client = boto3.client(
                "s3",
                endpoint_url=settings.S3_ENDPOINT,
                region_name=settings.S3_REGION,
                aws_access_key_id=settings.S3_ACCESS_KEY,
                aws_secret_access_key=settings.S3_SECRET_KEY,
            )
        self.client = client

    def upload_cover(self, file_bytes: bytes, content_type: str) -> str:
        """Загружает обложку и возвращает публичный URL."""

        if content_type in DISALLOWED_CONTENT_TYPES:
            raise ValueError("Unsupported image type")

        if len(file_bytes) > MAX_IMAGE_SIZE_BYTES:
            raise ValueError("Image too large")

        # image/jpeg -> jpeg
        ext = (content_type or "").split("/")[-1].lower().strip()
        if ext == "jpg":
            ext = "jpeg"

        if ext not in ALLOWED_IMAGE_EXTS:
            raise ValueError("Unsupported image type")

        key = f"covers/{uuid.uuid4()}.{ext}"

        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=file_bytes,
                ContentType=content_type,
                ACL="public-read",
            )
        except ClientError as e:
            logger.error("Cover upload to %s failed: %s", self.bucket, e)
            raise StorageError(e.response["Error"].get("Message", "upload failed")) from e

        logger.info("Uploaded cover %s", key)
        return f"{self.public_url}/{key}"


_storage: Optional[MediaStorage] = None


def get_media_storage() -> MediaStorage:
    # создаём лениво, чтобы сервис поднимался без S3
    global _storage
    if _storage is None:
        _storage = MediaStorage()
    return _storage
