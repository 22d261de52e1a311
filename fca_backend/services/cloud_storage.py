"""Blob ingestion for synced photos, backed by Apache Libcloud."""

import logging
from pathlib import Path
from threading import Lock
from appdirs import user_data_dir
from libcloud.common.types import LibcloudError
from libcloud.storage.types import Provider, ContainerDoesNotExistError, ObjectDoesNotExistError
from libcloud.storage.providers import get_driver
from tenacity import (
    Retrying,
    RetryError,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
from .errors import StorageError


logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 8192  # 8KB chunks

PROVIDER_MAP = {
    'local': Provider.LOCAL,
    's3': Provider.S3,
    'gcs': Provider.GOOGLE_STORAGE,
    'azure': Provider.AZURE_BLOBS,
    'minio': Provider.MINIO,
}

# Errors worth retrying: provider-side failures and dropped connections
TRANSIENT_ERRORS = (LibcloudError, OSError)


def default_local_path():
    return Path(user_data_dir('fca_sync', 'fca')) / 'blobs'


class CloudStorageService:
    """Stores photo blobs in a libcloud container and returns retrieval URLs."""

    def __init__(self, settings):
        self.provider_name = settings.storage_provider
        self.access_key = settings.storage_access_key
        self.secret_key = settings.storage_secret_key
        self.bucket_name = settings.storage_bucket
        self.region = settings.storage_region
        self.host = settings.storage_host
        self.public_base_url = settings.storage_public_base_url
        self.upload_attempts = max(1, settings.storage_upload_attempts)
        self.retry_wait = settings.storage_retry_wait_seconds
        self.local_path = Path(settings.storage_local_path) if settings.storage_local_path else default_local_path()

        if self.provider_name not in PROVIDER_MAP:
            raise ValueError(f"Unsupported provider: {self.provider_name}")

        if self.provider_name != 'local' and not all([self.access_key, self.secret_key, self.bucket_name]):
            raise ValueError("Cloud storage configuration incomplete. Check FCA_STORAGE_* settings.")

        self.driver = self._get_driver()
        self.container = self._get_container()

        logger.info(f"Cloud storage initialized with provider: {self.provider_name}")

    def _get_driver(self):
        """Get the appropriate libcloud driver based on provider."""
        provider = PROVIDER_MAP[self.provider_name]

        if self.provider_name == 'local':
            self.local_path.mkdir(parents=True, exist_ok=True)
            return get_driver(provider)(key=str(self.local_path))

        kwargs = {
            'key': self.access_key,
            'secret': self.secret_key,
        }

        if self.provider_name == 's3':
            kwargs['region'] = self.region
        elif self.provider_name == 'minio' and self.host:
            kwargs['host'] = self.host

        return get_driver(provider)(**kwargs)

    def _get_container(self):
        """Get or create the storage container/bucket."""
        try:
            return self.driver.get_container(container_name=self.bucket_name)
        except ContainerDoesNotExistError:
            logger.info(f"Creating container: {self.bucket_name}")
            return self.driver.create_container(container_name=self.bucket_name)

    def _retrying(self):
        return Retrying(
            stop=stop_after_attempt(self.upload_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=30),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

    def put_object(self, key, data, mime_type=None):
        """Upload a blob with automatic retries.

        Args:
            key: Object name, e.g. ``project/7/photos/1704067200000-roof.jpg``
            data (bytes): Blob content
            mime_type (str, optional): Stored as the object's content type

        Returns:
            str: Retrieval URL of the uploaded object

        Raises:
            StorageError: If the upload still fails after the last attempt
        """
        extra = {'content_type': mime_type} if mime_type else None
        try:
            for attempt in self._retrying():
                with attempt:
                    obj = self._upload_object(key, data, extra)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(f"Upload of {key} failed after {self.upload_attempts} attempts: {cause}")
            raise StorageError(f"Failed to store {key}: {cause}") from cause

        return self._object_url(obj, key)

    def _upload_object(self, key, data, extra):
        def chunk_iterator():
            view = memoryview(data)
            for start in range(0, len(view), UPLOAD_CHUNK_SIZE):
                yield bytes(view[start:start + UPLOAD_CHUNK_SIZE])

        logger.info(f"Uploading {len(data)} bytes to {key} (streaming)")
        return self.driver.upload_object_via_stream(
            iterator=chunk_iterator(),
            container=self.container,
            object_name=key,
            extra=extra
        )

    def _object_url(self, obj, key):
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        try:
            return obj.get_cdn_url()
        except NotImplementedError:
            return f"{self.bucket_name}/{key}"

    def delete_object(self, key):
        """Delete a blob; a missing object is not an error.

        Raises:
            StorageError: If the provider refuses the delete
        """
        try:
            obj = self.driver.get_object(self.container.name, key)
            self.driver.delete_object(obj)
            logger.info(f"Deleted object: {key}")
        except ObjectDoesNotExistError:
            logger.debug(f"Object already absent: {key}")
        except TRANSIENT_ERRORS as e:
            logger.error(f"Failed to delete object {key}: {e}")
            raise StorageError(f"Failed to delete {key}: {e}") from e


_cloud_storage_lock = Lock()


def get_cloud_storage(app):
    """Get or create the app's blob store (thread-safe).

    A store passed to create_app(blob_store=...) is returned as-is.
    """
    store = app.extensions.get('fca_blob_store')
    if store is None:
        with _cloud_storage_lock:
            # Double-check pattern for thread safety
            store = app.extensions.get('fca_blob_store')
            if store is None:
                try:
                    store = CloudStorageService(app.extensions['fca_settings'])
                except TRANSIENT_ERRORS as e:
                    logger.error(f"Failed to initialize cloud storage: {e}")
                    raise StorageError(f"Blob storage unavailable: {e}") from e
                app.extensions['fca_blob_store'] = store
    return store
