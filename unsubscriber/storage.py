"""
Object storage for browser traces.

Uploads go to Google Cloud Storage through the JSON upload API, authorized
with an access token from the instance metadata server. Without a bucket
configured no storage is created and traces stay on local disk.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import requests

from .config import Config
from .exceptions import StorageUploadError

logger = logging.getLogger(__name__)

METADATA_TOKEN_URL = (
    'http://metadata.google.internal/computeMetadata/v1/instance/service-accounts/default/token'
)
UPLOAD_URL = 'https://storage.googleapis.com/upload/storage/v1/b/{bucket}/o'


class GcsTraceStorage:
    """Uploads local files into a private bucket."""

    def __init__(self, bucket: str, timeout: int = 30, http=None):
        self.bucket = bucket
        self.timeout = timeout
        self.http = http if http is not None else requests

    def _access_token(self) -> str:
        try:
            response = self.http.get(METADATA_TOKEN_URL, headers={'Metadata-Flavor': 'Google'},
                                     timeout=self.timeout)
            response.raise_for_status()
            return response.json()['access_token']
        except (requests.exceptions.RequestException, KeyError, ValueError) as e:
            raise StorageUploadError("Failed to get storage access token", {'error': str(e)}) from e

    def upload(self, local_path: str, remote_path: str,
               content_type: str = 'application/octet-stream') -> str:
        """
        Upload a file and return its ``gs://`` URI.

        Raises:
            StorageUploadError: on any token or upload failure
        """
        token = self._access_token()
        data = Path(local_path).read_bytes()

        try:
            response = self.http.post(
                UPLOAD_URL.format(bucket=self.bucket),
                params={'uploadType': 'media', 'name': remote_path},
                headers={'Authorization': f'Bearer {token}', 'Content-Type': content_type},
                data=data,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise StorageUploadError("Upload failed", {'path': remote_path, 'error': str(e)}) from e

        if not 200 <= response.status_code < 300:
            raise StorageUploadError("Upload failed", {'path': remote_path,
                                                       'status': response.status_code})

        uri = f"gs://{self.bucket}/{remote_path}"
        logger.info("Uploaded %s to %s", local_path, uri)
        return uri

    def upload_and_cleanup(self, local_path: str, remote_path: str,
                           content_type: str = 'application/octet-stream') -> str:
        """Upload, then delete the local copy."""
        uri = self.upload(local_path, remote_path, content_type)
        try:
            os.remove(local_path)
        except OSError as e:
            logger.warning("Could not remove %s after upload: %s", local_path, e)
        return uri


def get_trace_storage(bucket: Optional[str] = None) -> Optional[GcsTraceStorage]:
    """Storage for the configured bucket, or None when no bucket is set."""
    bucket = bucket or Config.PRIVATE_BUCKET_NAME
    if not bucket:
        return None
    return GcsTraceStorage(bucket, timeout=Config.REQUEST_TIMEOUT)
