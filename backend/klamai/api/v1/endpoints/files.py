"""
Client upload download (MinIO intake bucket)
"""
import posixpath
from typing import Optional

from botocore.exceptions import ClientError
from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from klamai.core.logger import logger
from klamai.services.object_storage import ObjectStorage, source_storage

router = APIRouter()

_storage: Optional[ObjectStorage] = None


def get_source_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        _storage = source_storage()
    return _storage


@router.get("/download")
def download_file(fileName: str = Query(..., min_length=1)):
    """Stream an object from the intake bucket as an attachment."""
    storage = get_source_storage()
    key = fileName.lstrip("/")
    try:
        stat = storage.stat(key)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        if code in ("404", "NoSuchKey", "NotFound"):
            raise HTTPException(status_code=404, detail=f"File '{fileName}' not found")
        logger.error("Download of %s failed: %s", key, e)
        raise HTTPException(status_code=502, detail="Storage error")

    headers = {
        "Content-Disposition": f'attachment; filename="{posixpath.basename(key)}"',
    }
    if stat.get("content_length") is not None:
        headers["Content-Length"] = str(stat["content_length"])
    return StreamingResponse(
        storage.iter_chunks(key),
        media_type=stat["content_type"],
        headers=headers,
    )
