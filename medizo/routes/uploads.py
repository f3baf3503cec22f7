"""Serves uploaded files (profile pictures) from storage."""

from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Depends, HTTPException, Response

from medizo.dependencies import get_storage_client
from medizo.storage import StorageClient, StorageError

router = APIRouter()


@router.get("/uploads/{path:path}")
def get_upload(path: str, storage: StorageClient = Depends(get_storage_client)):
    try:
        data = storage.get_bytes(path)
    except (FileNotFoundError, StorageError):
        raise HTTPException(status_code=404, detail="File not found")
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)
