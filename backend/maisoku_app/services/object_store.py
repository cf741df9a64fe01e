"""
Document/object store for uploaded flyers and rendered page images.

Uploads never abort a batch: when the store is unconfigured or a put
fails, a placeholder URL is returned instead and the failure is logged.
"""
import logging
from typing import Dict, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from maisoku_app.config import Config

logger = logging.getLogger(__name__)


class ObjectStoreError(Exception):
    """An object could not be read back from the store."""


def mock_url(path: str, base_url: Optional[str] = None) -> str:
    """Placeholder URL used when an upload cannot be stored."""
    base = (base_url or Config.MOCK_STORAGE_BASE_URL).rstrip('/')
    return f"{base}/mock-{path}"


class ObjectStore:
    """put(path, bytes) -> url; get(url) -> bytes."""

    def put(self, path: str, data: bytes, public: bool = True, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    def get(self, url: str) -> bytes:
        raise NotImplementedError


class S3ObjectStore(ObjectStore):
    """Object store backed by an S3 bucket."""

    def __init__(
        self,
        bucket: Optional[str] = None,
        client=None,
        public_base_url: Optional[str] = None,
        mock_base_url: Optional[str] = None
    ):
        """
        Initialize the S3 store.

        Args:
            bucket: Bucket name (defaults to Config.S3_BUCKET)
            client: Optional pre-configured boto3 S3 client
            public_base_url: Base URL objects are served from (defaults to the bucket URL)
            mock_base_url: Base of placeholder URLs used on failure
        """
        self.bucket = bucket or Config.S3_BUCKET
        self.public_base_url = public_base_url or Config.S3_PUBLIC_BASE_URL
        self.mock_base_url = mock_base_url or Config.MOCK_STORAGE_BASE_URL
        self.client = client

        if self.client is None and self.bucket:
            try:
                config = Config.get_boto3_config()
                if 'profile_name' in config:
                    session = boto3.Session(profile_name=config['profile_name'])
                    self.client = session.client('s3', region_name=config['region_name'])
                else:
                    self.client = boto3.client('s3', **config)
                logger.info(f"Initialized S3 object store for bucket {self.bucket}")
            except (BotoCoreError, ClientError) as e:
                logger.error(f"Failed to initialize S3 client: {e}. Uploads will use placeholder URLs.")
                self.client = None

    def object_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return f"https://{self.bucket}.s3.{Config.AWS_REGION}.amazonaws.com/{key}"

    def put(self, path: str, data: bytes, public: bool = True, content_type: Optional[str] = None) -> str:
        if self.client is None or not self.bucket:
            logger.warning(f"Object store not configured, using mock URL for {path}")
            return mock_url(path, self.mock_base_url)

        params = {'Bucket': self.bucket, 'Key': path, 'Body': data}
        if content_type:
            params['ContentType'] = content_type
        if public:
            params['ACL'] = 'public-read'

        try:
            self.client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Upload of {path} failed, using mock URL: {e}")
            return mock_url(path, self.mock_base_url)

        url = self.object_url(path)
        logger.info(f"Stored {path} ({len(data)} bytes)")
        return url

    def get(self, url: str) -> bytes:
        try:
            response = requests.get(url, timeout=30)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ObjectStoreError(f"Download failed for {url}: {e}") from e
        return response.content


class InMemoryObjectStore(ObjectStore):
    """Process-local store for local runs and tests."""

    SCHEME = "memory://"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, Optional[str]] = {}

    def put(self, path: str, data: bytes, public: bool = True, content_type: Optional[str] = None) -> str:
        url = f"{self.SCHEME}{path}"
        self.objects[url] = data
        self.content_types[url] = content_type
        return url

    def get(self, url: str) -> bytes:
        if url not in self.objects:
            raise ObjectStoreError(f"No object stored at {url}")
        return self.objects[url]


_store_instance: Optional[ObjectStore] = None


def get_object_store() -> ObjectStore:
    """Get or create the process-wide object store."""
    global _store_instance

    if _store_instance is None:
        _store_instance = S3ObjectStore()
    return _store_instance
