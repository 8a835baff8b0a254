"""Blob storage access for fetching serialized model artifacts."""

import os
from contextlib import closing
from typing import Optional, Tuple
from urllib.parse import urlparse

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage as gcs_storage

from .errors import LoadError
from .logger import get_logger

logger = get_logger(__name__)


def split_bucket_path(location: str) -> Tuple[str, str]:
    """
    Split ``scheme://bucket/object/path`` into bucket and object name.

    Raises:
        LoadError: If either part is missing
    """
    parsed = urlparse(location)
    bucket = parsed.netloc
    object_name = parsed.path.lstrip('/')
    if not bucket or not object_name:
        raise LoadError(f"Invalid artifact location: {location}")
    return bucket, object_name


class ArtifactSource:
    """Base adapter for reading one artifact into memory."""

    scheme = ''

    def __init__(self, location: str):
        self.location = location

    def fetch(self) -> bytes:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(location='{self.location}')"


class GCSArtifactSource(ArtifactSource):
    """Google Cloud Storage adapter (``gs://bucket/object``)."""

    scheme = 'gs'

    def __init__(self, location: str):
        super().__init__(location)
        self.bucket_name, self.object_name = split_bucket_path(location)

    def fetch(self) -> bytes:
        try:
            client = gcs_storage.Client()
        except (GoogleAPIError, GoogleAuthError) as e:
            raise LoadError(f"Could not create GCS client: {e}") from e

        try:
            blob = client.bucket(self.bucket_name).blob(self.object_name)
            if not blob.exists():
                raise LoadError(
                    f"File {self.object_name} does not exist in bucket {self.bucket_name}",
                    not_found=True,
                )
            data = blob.download_as_bytes()
            logger.info(f"Downloaded {len(data)} bytes from gs://{self.bucket_name}/{self.object_name}")
            return data
        except (GoogleAPIError, GoogleAuthError) as e:
            raise LoadError(f"GCS download failed: {e}") from e
        finally:
            client.close()


class S3ArtifactSource(ArtifactSource):
    """S3/MinIO adapter (``s3://bucket/key``)."""

    scheme = 's3'

    def __init__(self, location: str, endpoint_url: Optional[str] = None):
        super().__init__(location)
        self.bucket_name, self.object_name = split_bucket_path(location)
        self.endpoint_url = endpoint_url

    def _object_exists(self, s3_client) -> bool:
        try:
            s3_client.head_object(Bucket=self.bucket_name, Key=self.object_name)
            return True
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            if code in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise

    def fetch(self) -> bytes:
        try:
            s3_client = boto3.client('s3', endpoint_url=self.endpoint_url)
        except BotoCoreError as e:
            raise LoadError(f"Could not create S3 client: {e}") from e

        try:
            if not self._object_exists(s3_client):
                raise LoadError(
                    f"File {self.object_name} does not exist in bucket {self.bucket_name}",
                    not_found=True,
                )
            response = s3_client.get_object(Bucket=self.bucket_name, Key=self.object_name)
            with closing(response['Body']) as body:
                data = body.read()
            logger.info(f"Downloaded {len(data)} bytes from s3://{self.bucket_name}/{self.object_name}")
            return data
        except (ClientError, BotoCoreError) as e:
            raise LoadError(f"S3 download failed: {e}") from e
        finally:
            s3_client.close()


class HTTPArtifactSource(ArtifactSource):
    """Direct download over HTTP(S)."""

    scheme = 'http'

    def __init__(self, location: str, timeout: int = 30):
        super().__init__(location)
        self.timeout = timeout

    def fetch(self) -> bytes:
        try:
            with requests.get(self.location, timeout=self.timeout, stream=True) as response:
                if response.status_code == 404:
                    raise LoadError(f"Model not found at {self.location}", not_found=True)
                response.raise_for_status()
                data = response.content
        except requests.RequestException as e:
            raise LoadError(f"Download from {self.location} failed: {e}") from e

        logger.info(f"Downloaded {len(data)} bytes from {self.location}")
        return data


class LocalArtifactSource(ArtifactSource):
    """Local filesystem path or ``file://`` URL."""

    scheme = 'file'

    def __init__(self, location: str):
        super().__init__(location)
        parsed = urlparse(location)
        self.path = parsed.path if parsed.scheme == 'file' else location

    def fetch(self) -> bytes:
        if not os.path.isfile(self.path):
            raise LoadError(f"Model file not found: {self.path}", not_found=True)
        try:
            with open(self.path, 'rb') as f:
                data = f.read()
        except OSError as e:
            raise LoadError(f"Could not read {self.path}: {e}") from e

        logger.info(f"Read {len(data)} bytes from {self.path}")
        return data


def get_artifact_source(location: str,
                        timeout: int = 30,
                        endpoint_url: Optional[str] = None) -> ArtifactSource:
    """
    Pick the adapter for an artifact location.

    Args:
        location: gs://, s3://, http(s)://, file:// URL or a plain path
        timeout: HTTP download timeout in seconds
        endpoint_url: Custom S3 endpoint (MinIO)

    Returns:
        ArtifactSource for the location

    Raises:
        LoadError: If the scheme is not supported
    """
    scheme = urlparse(location).scheme.lower()
    if scheme == 'gs':
        return GCSArtifactSource(location)
    if scheme == 's3':
        return S3ArtifactSource(location, endpoint_url=endpoint_url)
    if scheme in ('http', 'https'):
        return HTTPArtifactSource(location, timeout=timeout)
    # Single letters are Windows drive letters, not schemes
    if scheme in ('', 'file') or len(scheme) == 1:
        return LocalArtifactSource(location)
    raise LoadError(f"Unsupported artifact location scheme: {scheme}")


def fetch_artifact(location: str,
                   timeout: int = 30,
                   endpoint_url: Optional[str] = None) -> bytes:
    """Fetch an artifact into memory. Raises LoadError on any failure."""
    source = get_artifact_source(location, timeout=timeout, endpoint_url=endpoint_url)
    logger.info(f"Fetching model artifact via {source}")
    return source.fetch()
