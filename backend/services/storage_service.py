"""
Storage Adapter - DigitalOcean Spaces (S3 compatible) object storage.

Objects live under `uploads/{folder}/{file_name}`. Profile images use the
user id as folder, contract documents use `contracts` and invoices `invoices`.
"""
import logging
from abc import abstractmethod
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

import settings
from services.service_status import ConfigurableService, ServiceConfigStatus, missing_settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageNotConfiguredError(StorageError):
    """Raised when the storage client could not be created."""
    pass


class StorageService(ConfigurableService):
    """Abstract base class for storage implementations."""

    @abstractmethod
    async def upload_file(
        self,
        folder: str,
        file_name: str,
        body: bytes,
        content_type: Optional[str] = None,
        acl: str = "private",
    ) -> str:
        """Upload bytes and return the file name."""
        pass

    @abstractmethod
    async def get_file_url(self, folder: str, file_name: str, expires_in: int = 3600) -> str:
        """Presigned download URL."""
        pass

    @abstractmethod
    async def delete_file(self, folder: str, file_name: str) -> None:
        pass


class SpacesStorageService(StorageService):
    SERVICE_NAME = "Storage (DigitalOcean Spaces)"
    DESCRIPTION = (
        "The following features are impacted: profile picture upload, "
        "contract documents, invoice archive"
    )

    def __init__(self):
        self._client = None
        self._client_error: Optional[str] = None
        self._last_connection_error: Optional[str] = None

    def _required_config(self):
        return {
            "SPACES_KEY_ID": settings.SPACES_KEY_ID,
            "SPACES_SECRET_KEY": settings.SPACES_SECRET_KEY,
            "SPACES_BUCKET_NAME": settings.SPACES_BUCKET_NAME,
            "SPACES_REGION": settings.SPACES_REGION,
        }

    @property
    def client(self):
        """Lazily create the S3 client; None while configuration is incomplete."""
        if self._client is None and not missing_settings(self._required_config()):
            try:
                self._client = boto3.client(
                    "s3",
                    region_name=settings.SPACES_REGION,
                    endpoint_url=f"https://{settings.SPACES_REGION}.digitaloceanspaces.com",
                    aws_access_key_id=settings.SPACES_KEY_ID,
                    aws_secret_access_key=settings.SPACES_SECRET_KEY,
                )
            except (BotoCoreError, ValueError) as e:
                self._client_error = str(e)
                logger.error(f"Failed to initialize Spaces client: {e}")
        return self._client

    def is_configured(self) -> bool:
        return self.client is not None

    def _require_client(self):
        client = self.client
        if client is None:
            raise StorageNotConfiguredError("Storage client not initialized. Check configuration.")
        return client

    @staticmethod
    def _key(folder: str, file_name: str) -> str:
        return f"uploads/{folder}/{file_name}"

    async def upload_file(self, folder, file_name, body, content_type=None, acl="private") -> str:
        client = self._require_client()
        params = {
            "Bucket": settings.SPACES_BUCKET_NAME,
            "Key": self._key(folder, file_name),
            "Body": body,
            "ACL": acl,
        }
        if content_type:
            params["ContentType"] = content_type
        try:
            client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Upload failed for {file_name}: {e}")
        logger.info(f"File uploaded to Spaces: {self._key(folder, file_name)}")
        return file_name

    async def get_file_url(self, folder, file_name, expires_in=3600) -> str:
        client = self._require_client()
        try:
            return client.generate_presigned_url(
                "get_object",
                Params={"Bucket": settings.SPACES_BUCKET_NAME, "Key": self._key(folder, file_name)},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Could not sign URL for {file_name}: {e}")

    async def delete_file(self, folder, file_name) -> None:
        client = self._require_client()
        try:
            client.delete_object(Bucket=settings.SPACES_BUCKET_NAME, Key=self._key(folder, file_name))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Delete failed for {file_name}: {e}")
        logger.info(f"File deleted from Spaces: {self._key(folder, file_name)}")

    async def check_connection(self) -> bool:
        client = self.client
        if client is None:
            self._last_connection_error = self._client_error or "Storage client not initialized"
            return False
        try:
            client.list_objects_v2(Bucket=settings.SPACES_BUCKET_NAME, MaxKeys=1)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Storage connection test failed: {e}")
            self._last_connection_error = f"Connection error: {e}"
            return False

    async def check_configuration(self) -> ServiceConfigStatus:
        missing = missing_settings(self._required_config())
        if missing:
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=False,
                config_to_review=missing,
                error="Configuration missing",
                description=self.DESCRIPTION,
            )

        if not await self.check_connection():
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=True,
                connected=False,
                config_to_review=list(self._required_config().keys()),
                error=self._last_connection_error or "Connection failed",
                description=self.DESCRIPTION,
            )

        return ServiceConfigStatus(name=self.SERVICE_NAME, configured=True, connected=True)


storage_service = SpacesStorageService()
