from __future__ import annotations

import io

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse

from ...config import load_settings
from ...domain.chat_models import DownloadRequest
from ...domain.errors import EmptyInput, OversizedContent
from ...services.archive_builder import build_archive


router = APIRouter(prefix="/download", tags=["download"])

ARCHIVE_FILENAME = "project.zip"


@router.post("")
def download_project(req: DownloadRequest) -> StreamingResponse:
    if not req.ai_text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing AI output")
    try:
        blob = build_archive(req.ai_text, max_bytes=load_settings().archive_max_bytes)
    except EmptyInput as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except OversizedContent as exc:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(exc)) from exc

    headers = {"Content-Disposition": f'attachment; filename="{ARCHIVE_FILENAME}"'}
    return StreamingResponse(io.BytesIO(blob), media_type="application/zip", headers=headers)
