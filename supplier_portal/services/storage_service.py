"""
Object Storage Service for S3-compatible storage (MinIO, AWS S3, DigitalOcean Spaces).

Dispatch order item photos are uploaded here after the order itself has
been saved. Uploads report byte-level progress so the submission pipeline
can show per-image and overall progress.

Architecture:
- Uses boto3 (AWS SDK for Python)
- Compatible with MinIO (local), AWS S3, DigitalOcean Spaces
- Automatic bucket creation on init
"""
import json
import logging
import mimetypes
import os
import uuid
from typing import Callable, Dict, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError
from flask import current_app

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class StorageService:
    """
    S3-compatible object storage service.

    Usage:
        storage = StorageService()
        url = storage.upload_file(file, 'dispatch-orders/12/0/photo.jpg', on_progress=print)
    """

    def __init__(self, config: Optional[dict] = None, client=None):
        """Initialize S3 client from Flask config (or an explicit mapping)."""
        config = config if config is not None else current_app.config
        self.endpoint = config['S3_ENDPOINT']
        self.bucket = config['S3_BUCKET']
        self.region = config['S3_REGION']
        self.public_url = config['S3_PUBLIC_URL']
        self.max_size = config.get('MAX_UPLOAD_SIZE', 5 * 1024 * 1024)
        self.allowed_types = set(config.get('ALLOWED_MIME_TYPES') or ())

        if client is None:
            client = boto3.client(
                's3',
                endpoint_url=self.endpoint,
                aws_access_key_id=config['S3_ACCESS_KEY'],
                aws_secret_access_key=config['S3_SECRET_KEY'],
                region_name=self.region,
                config=BotoConfig(signature_version='s3v4')
            )
            self.client = client
            self._ensure_bucket_exists()
        else:
            self.client = client

    def _ensure_bucket_exists(self):
        """Create bucket if it doesn't exist."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info(f"[STORAGE] Bucket '{self.bucket}' exists")
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code')
            if error_code != '404':
                logger.error(f"[STORAGE] ✗ Failed to check bucket: {e}")
                raise
            try:
                self.client.create_bucket(Bucket=self.bucket)
                policy = {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Principal": {"AWS": "*"},
                            "Action": "s3:GetObject",
                            "Resource": f"arn:aws:s3:::{self.bucket}/*"
                        }
                    ]
                }
                self.client.put_bucket_policy(Bucket=self.bucket, Policy=json.dumps(policy))
                logger.info(f"[STORAGE] ✓ Bucket '{self.bucket}' created (public-read)")
            except ClientError as create_error:
                logger.error(f"[STORAGE] ✗ Failed to create bucket: {create_error}")
                raise

    def upload_file(
        self,
        file,
        object_name: str,
        content_type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> str:
        """
        Upload file to S3-compatible storage.

        Args:
            file: Werkzeug FileStorage (or any object with a readable stream)
            object_name: S3 object key
            content_type: MIME type (auto-detected if None)
            on_progress: called with integer percentages, non-decreasing, 0 first and 100 last

        Returns:
            Public URL of uploaded file

        Raises:
            ValueError: If file validation fails
            ClientError: If upload fails
        """
        size = self._validate_file(file)
        filename = getattr(file, 'filename', None) or getattr(file, 'name', '') or ''

        if not content_type:
            content_type = (
                getattr(file, 'content_type', None)
                or mimetypes.guess_type(filename)[0]
                or 'application/octet-stream'
            )

        reporter = _ProgressReporter(size, on_progress)
        stream = getattr(file, 'stream', file)
        stream.seek(0)

        try:
            logger.info(f"[STORAGE] Uploading '{object_name}' to bucket '{self.bucket}'...")
            reporter.start()
            self.client.upload_fileobj(
                stream,
                self.bucket,
                object_name,
                ExtraArgs={'ContentType': content_type, 'ACL': 'public-read'},
                Callback=reporter
            )
            reporter.finish()
        except ClientError as e:
            logger.exception(f"[STORAGE] ✗ Upload failed: {e}")
            raise

        url = self.get_public_url(object_name)
        logger.info(f"[STORAGE] ✓ File uploaded: {url}")
        return url

    def get_public_url(self, object_name: str) -> str:
        return f"{self.public_url.rstrip('/')}/{self.bucket}/{object_name.lstrip('/')}"

    def _validate_file(self, file) -> int:
        """Validate size and type; returns the size in bytes."""
        filename = getattr(file, 'filename', None) or getattr(file, 'name', None)
        if not file or not filename:
            raise ValueError("Image file is required")

        stream = getattr(file, 'stream', file)
        stream.seek(0, 2)
        size = stream.tell()
        stream.seek(0)

        if size > self.max_size:
            raise ValueError(f"File size exceeds {self.max_size / (1024 * 1024):.0f}MB limit")

        content_type = getattr(file, 'content_type', None)
        if self.allowed_types and content_type not in self.allowed_types:
            raise ValueError(f"Invalid file type: {content_type}. Only JPG, PNG, and WebP are allowed")

        return size


class _ProgressReporter:
    """boto3 transfer callback translating byte counts into percentages."""

    def __init__(self, total: int, on_progress: Optional[ProgressCallback]):
        self.total = total
        self.sent = 0
        self.last = -1
        self.on_progress = on_progress

    def start(self):
        self._report(0)

    def __call__(self, bytes_amount: int):
        self.sent += bytes_amount
        if self.total:
            self._report(min(99, int(self.sent * 100 / self.total)))

    def finish(self):
        self._report(100)

    def _report(self, pct: int):
        if self.on_progress is None or pct <= self.last:
            return
        self.last = pct
        self.on_progress(pct)


def build_object_name(order_id: int, item_index: int, filename: str) -> str:
    """Object key for an item photo: dispatch-orders/<order>/<item>/<uuid><ext>."""
    ext = os.path.splitext(filename or '')[1].lower() or '.jpg'
    return f"dispatch-orders/{order_id}/{item_index}/{uuid.uuid4().hex}{ext}"


class ItemImageTransport:
    """
    Uploads one item photo and attaches its URL to the saved order.

    Implements the transport contract used by the submission pipeline:
    ``upload_item_image(order_id, item_index, file, on_progress) -> {'url': ...}``.
    """

    def __init__(self, store, storage: Optional[StorageService] = None):
        self.store = store
        self._storage = storage

    @property
    def storage(self) -> StorageService:
        # Resolved on first upload so orders without images never touch S3
        if self._storage is None:
            self._storage = get_storage_service()
        return self._storage

    def upload_item_image(self, order_id, item_index: int, file, on_progress: Optional[ProgressCallback] = None) -> Dict[str, str]:
        if not order_id:
            raise ValueError("Dispatch order ID is required")
        if not isinstance(item_index, int) or item_index < 0:
            raise ValueError("Valid item index is required")
        if file is None:
            raise ValueError("Image file is required")

        filename = getattr(file, 'filename', None) or getattr(file, 'name', '') or ''
        object_name = build_object_name(order_id, item_index, filename)
        url = self.storage.upload_file(file, object_name, on_progress=on_progress)
        self.store.append_item_image(order_id, item_index, url)
        return {'url': url}


# Singleton instance
_storage_service = None


def get_storage_service() -> StorageService:
    """
    Get or create StorageService singleton.

    Returns:
        StorageService instance
    """
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
