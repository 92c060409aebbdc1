"""Spaces storage adapter with a mocked boto3 client."""
import pytest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from services.storage_service import SpacesStorageService, StorageError, StorageNotConfiguredError


@pytest.fixture
def spaces(monkeypatch):
    import settings

    monkeypatch.setattr(settings, "SPACES_KEY_ID", "key")
    monkeypatch.setattr(settings, "SPACES_SECRET_KEY", "secret")
    monkeypatch.setattr(settings, "SPACES_BUCKET_NAME", "bucket")
    monkeypatch.setattr(settings, "SPACES_REGION", "nyc3")
    service = SpacesStorageService()
    service._client = MagicMock()
    return service


@pytest.mark.asyncio
async def test_upload_puts_object_under_uploads_prefix(spaces):
    name = await spaces.upload_file("contracts", "k1/a.pdf", b"%PDF", "application/pdf")

    assert name == "k1/a.pdf"
    spaces._client.put_object.assert_called_once_with(
        Bucket="bucket", Key="uploads/contracts/k1/a.pdf", Body=b"%PDF", ACL="private", ContentType="application/pdf"
    )


@pytest.mark.asyncio
async def test_presigned_url_uses_expiry(spaces):
    spaces._client.generate_presigned_url.return_value = "https://signed"
    assert await spaces.get_file_url("invoices", "u/INV.pdf", expires_in=60) == "https://signed"
    spaces._client.generate_presigned_url.assert_called_once_with(
        "get_object", Params={"Bucket": "bucket", "Key": "uploads/invoices/u/INV.pdf"}, ExpiresIn=60
    )


@pytest.mark.asyncio
async def test_client_errors_become_storage_errors(spaces):
    spaces._client.delete_object.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "DeleteObject")
    with pytest.raises(StorageError):
        await spaces.delete_file("user-1", "old.png")


@pytest.mark.asyncio
async def test_unconfigured_storage(monkeypatch):
    import settings

    monkeypatch.setattr(settings, "SPACES_KEY_ID", None)
    monkeypatch.setattr(settings, "SPACES_SECRET_KEY", None)
    service = SpacesStorageService()

    with pytest.raises(StorageNotConfiguredError):
        await service.upload_file("x", "y", b"")

    status = await service.check_configuration()
    assert status.configured is False
    assert status.config_to_review[:2] == ["SPACES_KEY_ID", "SPACES_SECRET_KEY"]


@pytest.mark.asyncio
async def test_connection_failure_is_reported(spaces):
    spaces._client.list_objects_v2.side_effect = ClientError({"Error": {"Code": "NoSuchBucket"}}, "ListObjectsV2")
    status = await spaces.check_configuration()
    assert status.configured is True
    assert status.connected is False
    assert status.error.startswith("Connection error")
