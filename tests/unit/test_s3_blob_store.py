"""
Unit tests for the S3 blob store with a mocked boto3 client.
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from caltrack.services.storage import S3BlobStore
from caltrack.utils.errors import StorageWriteError, ValidationError


def client_error(code, operation="PutObject"):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


@pytest.fixture
def mock_s3_client():
    with patch('boto3.client') as mock_client:
        client = MagicMock()
        mock_client.return_value = client
        yield mock_client, client


class TestS3BlobStore:

    def test_initialization(self, mock_s3_client):
        mock_client, _ = mock_s3_client

        store = S3BlobStore(bucket_name='cal-photos', region='eu-west-1')

        assert store.bucket_name == 'cal-photos'
        assert store.access == 'public'
        mock_client.assert_called_once_with('s3', region_name='eu-west-1', endpoint_url=None)

    def test_rejects_unknown_access_mode(self, mock_s3_client):
        with pytest.raises(ValueError):
            S3BlobStore(bucket_name='cal-photos', access='private')

    @pytest.mark.asyncio
    async def test_put_uploads_object(self, mock_s3_client, png_bytes):
        _, client = mock_s3_client
        store = S3BlobStore(bucket_name='cal-photos', prefix='/plant-a/')

        key = await store.put(png_bytes, 'image/png', 'scan.png')

        assert key.startswith('records/')
        assert key.endswith('.png')
        client.put_object.assert_called_once()
        params = client.put_object.call_args[1]
        assert params['Bucket'] == 'cal-photos'
        assert params['Key'] == f'plant-a/{key}'
        assert params['Body'] == png_bytes
        assert params['ContentType'] == 'image/png'

    @pytest.mark.asyncio
    async def test_put_client_error(self, mock_s3_client, png_bytes):
        _, client = mock_s3_client
        client.put_object.side_effect = client_error('AccessDenied')
        store = S3BlobStore(bucket_name='cal-photos')

        with pytest.raises(StorageWriteError) as exc_info:
            await store.put(png_bytes, 'image/png')
        assert 'AccessDenied' in exc_info.value.message

    @pytest.mark.asyncio
    async def test_remove_missing_key_is_success(self, mock_s3_client):
        _, client = mock_s3_client
        client.delete_object.side_effect = client_error('NoSuchKey', 'DeleteObject')
        store = S3BlobStore(bucket_name='cal-photos')

        await store.remove('records/1_ab.png')

        client.delete_object.assert_called_once_with(Bucket='cal-photos', Key='records/1_ab.png')

    @pytest.mark.asyncio
    async def test_remove_other_error_propagates(self, mock_s3_client):
        _, client = mock_s3_client
        client.delete_object.side_effect = client_error('AccessDenied', 'DeleteObject')
        store = S3BlobStore(bucket_name='cal-photos')

        with pytest.raises(ClientError):
            await store.remove('records/1_ab.png')

    @pytest.mark.asyncio
    async def test_exists(self, mock_s3_client):
        _, client = mock_s3_client
        store = S3BlobStore(bucket_name='cal-photos')

        assert await store.exists('records/1_ab.png') is True

        client.head_object.side_effect = client_error('404', 'HeadObject')
        assert await store.exists('records/1_ab.png') is False

    @pytest.mark.asyncio
    async def test_put_rejects_non_image(self, mock_s3_client):
        _, client = mock_s3_client
        store = S3BlobStore(bucket_name='cal-photos', allowed_types=['image/png'])

        with pytest.raises(ValidationError):
            await store.put(b'GIF89a', 'image/gif', 'anim.gif')

        client.put_object.assert_not_called()

    def test_public_address(self, mock_s3_client):
        store = S3BlobStore(bucket_name='cal-photos', region='eu-west-1')

        assert store.to_address('records/1_ab.png') == \
            'https://cal-photos.s3.eu-west-1.amazonaws.com/records/1_ab.png'

    def test_public_address_custom_endpoint(self, mock_s3_client):
        store = S3BlobStore(bucket_name='cal-photos', endpoint_url='http://minio:9000/')

        assert store.to_address('records/1_ab.png') == 'http://minio:9000/cal-photos/records/1_ab.png'

    def test_signed_address(self, mock_s3_client):
        _, client = mock_s3_client
        client.generate_presigned_url.return_value = 'https://signed.example/records/1_ab.png?sig=x'
        store = S3BlobStore(bucket_name='cal-photos', access='signed', url_expiry=600)

        url = store.to_address('records/1_ab.png')

        assert url == 'https://signed.example/records/1_ab.png?sig=x'
        client.generate_presigned_url.assert_called_once_with(
            'get_object',
            Params={'Bucket': 'cal-photos', 'Key': 'records/1_ab.png'},
            ExpiresIn=600
        )
