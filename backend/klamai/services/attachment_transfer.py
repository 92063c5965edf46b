"""
Attachment transfer: copies client uploads from the MinIO intake bucket into
the case documents bucket.

Every file is transferred independently. A failed transfer is reported back
with its source key and never affects its siblings.
"""

from __future__ import annotations

import asyncio
import json
import logging
import posixpath
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import unquote, urlparse

from klamai.services.object_storage import ObjectStorage
from klamai.utils.exceptions import AttachmentTransferError

logger = logging.getLogger(__name__)

CLIENT_DOCUMENTS_DIR = "documentos_cliente"


@dataclass(frozen=True)
class AttachmentTransfer:
    source_key: str
    destination_path: str
    content_type: str
    size: int


def parse_file_references(value: Any) -> list[str]:
    """
    Normalise the ``files`` payload field into a list of non-empty strings.

    Accepts a list or a JSON-encoded list; anything else yields no files.
    """
    source: Any = []
    if isinstance(value, list):
        source = value
    elif isinstance(value, str) and value.strip().startswith("["):
        try:
            source = json.loads(value)
        except json.JSONDecodeError as exc:
            logger.error("Could not parse files string %r: %s", value[:200], exc)
            return []

    if not isinstance(source, list):
        return []
    return [item.strip() for item in source if isinstance(item, str) and item.strip()]


def url_to_storage_key(url: str, bucket: str) -> str:
    """
    Convert an object URL into its key inside *bucket*.

    ``https://minio.example.com/uploads/chat/a%20b.pdf`` with bucket
    ``uploads`` becomes ``chat/a b.pdf``. When the bucket does not appear in
    the path, the whole path (minus the leading slash) is the key. Returns
    "" for anything that is not an absolute URL.
    """
    if not url or not bucket:
        return ""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        logger.warning("Invalid attachment URL %r", url)
        return ""
    if not parsed.scheme or not parsed.netloc:
        logger.warning("Invalid attachment URL %r", url)
        return ""

    path = parsed.path
    prefix = f"/{bucket}/"
    idx = path.find(prefix)
    key = path[1:] if idx == -1 else path[idx + len(prefix):]
    return unquote(key)


def destination_path(caso_id: str, source_key: str) -> str:
    return f"casos/{caso_id}/{CLIENT_DOCUMENTS_DIR}/{posixpath.basename(source_key)}"


class AttachmentTransferService:
    """Moves attachments from *source* to *destination*."""

    def __init__(self, source: ObjectStorage, destination: ObjectStorage) -> None:
        self.source = source
        self.destination = destination

    def keys_from_urls(self, urls: list[str]) -> list[str]:
        keys = [url_to_storage_key(url, self.source.bucket) for url in urls]
        return [key for key in keys if key]

    def _transfer_sync(self, source_key: str, caso_id: str) -> AttachmentTransfer:
        stat = self.source.stat(source_key)
        data = self.source.read(source_key)
        target = destination_path(caso_id, source_key)
        self.destination.upload(target, data, content_type=stat["content_type"])
        return AttachmentTransfer(
            source_key=source_key,
            destination_path=target,
            content_type=stat["content_type"],
            size=len(data),
        )

    async def transfer(self, source_key: str, caso_id: str) -> AttachmentTransfer:
        logger.info("Starting attachment transfer case=%s key=%s", caso_id, source_key)
        try:
            result = await asyncio.to_thread(self._transfer_sync, source_key, caso_id)
        except Exception as exc:
            logger.error(
                "Attachment transfer failed case=%s key=%s: %s", caso_id, source_key, exc
            )
            raise AttachmentTransferError(source_key, str(exc)) from exc
        logger.info(
            "Attachment transferred case=%s path=%s", caso_id, result.destination_path
        )
        return result

    async def transfer_all(
        self, source_keys: list[str], caso_id: str
    ) -> tuple[list[AttachmentTransfer], list[AttachmentTransferError]]:
        """Transfer every key concurrently; returns (succeeded, failed)."""
        outcomes = await asyncio.gather(
            *(self.transfer(key, caso_id) for key in source_keys),
            return_exceptions=True,
        )
        return partition_transfers(source_keys, outcomes)


def partition_transfers(
    source_keys: list[str], outcomes: list[Any]
) -> tuple[list[AttachmentTransfer], list[AttachmentTransferError]]:
    succeeded: list[AttachmentTransfer] = []
    failed: list[AttachmentTransferError] = []
    for key, outcome in zip(source_keys, outcomes):
        if isinstance(outcome, AttachmentTransfer):
            succeeded.append(outcome)
        elif isinstance(outcome, AttachmentTransferError):
            failed.append(outcome)
        elif isinstance(outcome, BaseException):
            failed.append(AttachmentTransferError(key, str(outcome)))
    return succeeded, failed


_default_service: Optional[AttachmentTransferService] = None


def get_attachment_transfer_service() -> AttachmentTransferService:
    global _default_service
    if _default_service is None:
        from klamai.services.object_storage import destination_storage, source_storage

        _default_service = AttachmentTransferService(source_storage(), destination_storage())
    return _default_service
