# klamai/services/object_storage.py

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from typing import Iterator, Optional

from klamai.core.config import settings
from klamai.core.logger import logger

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ObjectStorage:
    """
    Bucket-scoped wrapper around an S3-compatible object store.
    Used both for the MinIO intake bucket and the case documents bucket.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: Optional[str] = None,
        path_style: bool = False,
        client=None,
    ):
        self.bucket = bucket
        self.s3_client = client or boto3.client(
            's3',
            endpoint_url=endpoint_url or None,
            region_name=region or settings.AWS_REGION,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            config=Config(s3={'addressing_style': 'path' if path_style else 'auto'}),
        )

    def stat(self, key: str) -> dict:
        """
        Existence probe. Raises ClientError (404) when the object is missing.
        """
        try:
            response = self.s3_client.head_object(Bucket=self.bucket, Key=key)
            return {
                "content_length": response.get('ContentLength'),
                "content_type": response.get('ContentType') or DEFAULT_CONTENT_TYPE,
                "last_modified": response.get('LastModified'),
            }
        except ClientError as e:
            logger.error(f"Failed to stat object {self.bucket}/{key}: {str(e)}")
            raise

    def iter_chunks(self, key: str, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
        """
        Stream an object in chunks.
        """
        response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
        body = response['Body']
        try:
            for chunk in body.iter_chunks(chunk_size=chunk_size):
                yield chunk
        finally:
            body.close()

    def read(self, key: str) -> bytes:
        """
        Read the full object into memory.
        """
        try:
            return b"".join(self.iter_chunks(key))
        except ClientError as e:
            logger.error(f"Failed to read object {self.bucket}/{key}: {str(e)}")
            raise

    def upload(self, path: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        """
        Upload *data* at *path*. An existing object at the same path is overwritten.
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
            logger.info(f"Uploaded object: {self.bucket}/{path} ({len(data)} bytes)")
            return path
        except ClientError as e:
            logger.error(f"Failed to upload object {self.bucket}/{path}: {str(e)}")
            raise

    def put_text(self, path: str, text: str) -> str:
        return self.upload(path, text.encode("utf-8"), content_type="text/plain;charset=utf-8")


def source_storage() -> ObjectStorage:
    """MinIO bucket where the chat widget stores client uploads."""
    return ObjectStorage(
        bucket=settings.MINIO_BUCKET_NAME,
        endpoint_url=settings.minio_endpoint_url,
        access_key=settings.MINIO_ACCESS_KEY_ID,
        secret_key=settings.MINIO_SECRET_ACCESS_KEY,
        path_style=True,
    )


def destination_storage() -> ObjectStorage:
    """Bucket holding case documents and generated guides."""
    return ObjectStorage(
        bucket=settings.STORAGE_BUCKET_NAME,
        endpoint_url=settings.STORAGE_ENDPOINT_URL,
        access_key=settings.AWS_ACCESS_KEY_ID,
        secret_key=settings.AWS_SECRET_ACCESS_KEY,
    )
