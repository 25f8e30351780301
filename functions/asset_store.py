"""
Asset store: binary image assets in Firebase Storage.

Handles uploads of originals and processed images, token-bearing download URLs
with retry, single and recursive deletes, and the image codecs used before an
upload.
"""
import os
import time
import uuid
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

from firebase_admin import storage

import image_handling
from config import (
    COMPRESSION_INITIAL_QUALITY,
    DOWNLOAD_URL_MAX_RETRIES,
    DOWNLOAD_URL_RETRY_DELAY,
    THUMBNAIL_MAX_HEIGHT,
    THUMBNAIL_MAX_WIDTH,
    THUMBNAIL_QUALITY,
    get_storage_bucket,
)
from errors import NotFoundError, TransientError, ValidationError, classify_storage_error


DOWNLOAD_TOKEN_KEY = 'firebaseStorageDownloadTokens'


class AssetStore:
    """Upload, download-URL and delete operations against a storage bucket."""

    def __init__(
        self,
        bucket=None,
        max_retries: int = DOWNLOAD_URL_MAX_RETRIES,
        retry_delay: float = DOWNLOAD_URL_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.bucket = bucket or storage.bucket(get_storage_bucket() or None)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep

    def build_download_url(self, path: str, token: str) -> str:
        emulator_host = os.getenv('FIREBASE_STORAGE_EMULATOR_HOST')
        base_url = f"http://{emulator_host}" if emulator_host else "https://firebasestorage.googleapis.com"
        return f"{base_url}/v0/b/{self.bucket.name}/o/{quote(path, safe='')}?alt=media&token={token}"

    def upload(
        self,
        data: bytes,
        path: str,
        content_type: str = 'image/jpeg',
        on_progress: Optional[Callable[[float], None]] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        """
        Upload bytes to a storage path.

        Args:
            data: File content
            path: Destination path in the bucket
            content_type: MIME type stored with the object
            on_progress: Called with the progress percentage, always with 0 and 100
            metadata: Custom metadata stored with the object

        Returns:
            dict: {'url': download URL, 'path': storage path}
        """
        if not path:
            raise ValidationError("No storage path provided")

        token = str(uuid.uuid4())
        blob = self.bucket.blob(path)
        blob.metadata = {**(metadata or {}), DOWNLOAD_TOKEN_KEY: token}

        if on_progress:
            on_progress(0)
        try:
            blob.upload_from_string(data, content_type=content_type)
        except Exception as e:
            print(f"Upload error for {path}: {str(e)}")
            raise classify_storage_error(e, path)
        if on_progress:
            on_progress(100)

        print(f"Uploaded {len(data)} bytes to {path}")
        return {'url': self.build_download_url(path, token), 'path': path}

    def _fetch_download_url(self, path: str) -> str:
        try:
            blob = self.bucket.get_blob(path)
            if blob is None:
                raise NotFoundError(f"Object does not exist: {path}")

            token = (blob.metadata or {}).get(DOWNLOAD_TOKEN_KEY)
            if not token:
                token = str(uuid.uuid4())
                blob.metadata = {**(blob.metadata or {}), DOWNLOAD_TOKEN_KEY: token}
                blob.patch()
        except Exception as e:
            raise classify_storage_error(e, path)

        # Several tokens may be stored comma separated, any of them works
        return self.build_download_url(path, token.split(',')[0])

    def get_download_url(self, path: str) -> str:
        """
        Get a download URL, retrying transient failures.

        A missing object fails immediately since retrying cannot help.

        Args:
            path: Storage path of the object

        Returns:
            str: Token-bearing download URL

        Raises:
            NotFoundError: If the object does not exist
            TransientError: If every attempt failed
        """
        if not path:
            raise ValidationError("No image path provided")

        last_error = None
        for attempt in range(self.max_retries):
            # Give network and permission issues time to settle
            if attempt > 0:
                self.sleep(self.retry_delay * attempt)

            try:
                url = self._fetch_download_url(path)
                print(f"Successfully got download URL on attempt {attempt + 1}")
                return url
            except NotFoundError:
                print(f"Object not found, not retrying: {path}")
                raise
            except TransientError as e:
                last_error = e
                print(f"Failed to get download URL on attempt {attempt + 1}: {e.message}")

        print(f"Failed to get download URL after {self.max_retries} attempts")
        raise TransientError(f"Failed to get download URL for {path}", last_error)

    def delete(self, path: str) -> None:
        try:
            self.bucket.blob(path).delete()
        except Exception as e:
            raise classify_storage_error(e, path)
        print(f"Deleted {path}")

    def delete_all(self, prefix: str) -> Dict[str, List[str]]:
        """
        Delete every object under a folder, continuing past individual failures.

        Args:
            prefix: Folder path (e.g., 'users/user123')

        Returns:
            dict: {'deleted': [...paths], 'failed': [...paths]}
        """
        folder = prefix.rstrip('/') + '/'
        try:
            blobs = list(self.bucket.list_blobs(prefix=folder))
        except Exception as e:
            print(f"Error listing {folder}: {str(e)}")
            raise classify_storage_error(e, folder)

        deleted, failed = [], []
        for blob in blobs:
            try:
                blob.delete()
                deleted.append(blob.name)
            except Exception as e:
                print(f"File deletion failed for {blob.name}: {str(e)}")
                failed.append(blob.name)

        print(f"Deleted {len(deleted)} files under {folder}, {len(failed)} failed")
        return {'deleted': deleted, 'failed': failed}

    @staticmethod
    def generate_thumbnail(
        image: bytes,
        max_width: int = THUMBNAIL_MAX_WIDTH,
        max_height: int = THUMBNAIL_MAX_HEIGHT,
        quality: float = THUMBNAIL_QUALITY
    ) -> bytes:
        return image_handling.generate_thumbnail(image, max_width, max_height, quality)

    @staticmethod
    def compress_to_size_limit(
        image: bytes,
        max_bytes: int,
        initial_quality: float = COMPRESSION_INITIAL_QUALITY
    ) -> bytes:
        return image_handling.compress_to_size_limit(image, max_bytes, initial_quality)
