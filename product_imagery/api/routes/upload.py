"""
Upload Endpoint

POST /api/upload - Store an original image as-is under /uploads
"""

import re
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile

from product_imagery.api.dependencies import ImageReader, get_image_reader
from product_imagery.api.schemas import UploadResponse
from product_imagery.core.config import settings
from product_imagery.core.logging import new_request_id
from product_imagery.core.storage import IStorage, get_storage
from product_imagery.pipeline.orchestration import operation_scope

router = APIRouter()

_SAFE_EXTENSION = re.compile(r"^\.[a-z0-9]{1,5}$")


def _upload_extension(filename: str) -> str:
    suffix = Path(filename).suffix.lower()
    return suffix if _SAFE_EXTENSION.match(suffix) else ""


@router.post("/upload", response_model=UploadResponse)
async def upload_image(
    image: Optional[UploadFile] = File(None),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    """Persist the uploaded file without decoding it."""
    request_id = new_request_id()

    with operation_scope("upload", request_id):
        upload = await read_image(image)
        filename = f"{request_id}{_upload_extension(upload.filename)}"
        artifact = await storage.save_artifact(
            upload.content,
            filename,
            operation="upload",
            folder=settings.UPLOADS_FOLDER
        )

    return UploadResponse(
        filename=artifact.filename,
        path=artifact.path,
        message="File uploaded successfully"
    )
