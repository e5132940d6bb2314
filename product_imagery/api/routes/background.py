"""
Background Removal Endpoints

POST /api/remove-background           - local rembg CLI
POST /api/remove-background-azure     - Azure Computer Vision
POST /api/remove-background-photoroom - PhotoRoom edit API

All three persist a PNG named after the provider and the request id.
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from product_imagery.api.dependencies import ImageReader, get_image_reader, get_providers
from product_imagery.api.schemas import (
    AzureRemovalResponse,
    AzureRemovalStats,
    LocalRemovalMetrics,
    PhotoRoomRemovalResponse,
    RemoveBackgroundResponse,
)
from product_imagery.core.logging import new_request_id
from product_imagery.core.storage import IStorage, get_storage
from product_imagery.engines.background.providers import ProviderRegistry
from product_imagery.pipeline.orchestration import elapsed_ms, operation_scope

router = APIRouter()


@router.post("/remove-background", response_model=RemoveBackgroundResponse)
async def remove_background(
    image: Optional[UploadFile] = File(None),
    providers: ProviderRegistry = Depends(get_providers),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    request_id = new_request_id()
    start = time.monotonic()

    with operation_scope("remove_background", request_id):
        upload = await read_image(image)
        result = await providers.get("local").remove_background(upload, request_id)
        artifact = await storage.save_artifact(
            result.content,
            f"nobg-{request_id}.png",
            operation="remove-background",
            format="png"
        )

    timings = result.metadata
    return RemoveBackgroundResponse(
        path=artifact.path,
        message="Background removed successfully",
        request_id=request_id,
        metrics=LocalRemovalMetrics(
            total_time=f"{elapsed_ms(start)}ms",
            preprocessing=f"{timings.get('preprocessing', 0)}ms",
            background_removal=f"{timings.get('backgroundRemoval', 0)}ms",
            cleanup=f"{timings.get('cleanup', 0)}ms"
        )
    )


@router.post("/remove-background-azure", response_model=AzureRemovalResponse)
async def remove_background_azure(
    image: Optional[UploadFile] = File(None),
    providers: ProviderRegistry = Depends(get_providers),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    request_id = new_request_id()
    start = time.monotonic()

    with operation_scope("remove_background_azure", request_id):
        upload = await read_image(image)
        result = await providers.get("azure").remove_background(upload, request_id)
        artifact = await storage.save_artifact(
            result.content,
            f"azure-{request_id}.png",
            operation="remove-background",
            format="png"
        )

    reduction = (upload.size - artifact.size) / upload.size * 100
    return AzureRemovalResponse(
        path=artifact.path,
        message="Background removed successfully using Azure Vision",
        request_id=request_id,
        stats=AzureRemovalStats(
            process_time=f"{elapsed_ms(start)}ms",
            original_size=upload.size,
            processed_size=artifact.size,
            reduction=f"{reduction:.0f}%"
        )
    )


@router.post("/remove-background-photoroom", response_model=PhotoRoomRemovalResponse)
async def remove_background_photoroom(
    image: Optional[UploadFile] = File(None),
    mode: Optional[str] = Form(None),
    providers: ProviderRegistry = Depends(get_providers),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    """``mode`` selects the sandbox or production API key (default sandbox)."""
    request_id = new_request_id()
    start = time.monotonic()

    with operation_scope("remove_background_photoroom", request_id):
        upload = await read_image(image)
        result = await providers.get("photoroom").remove_background(upload, request_id, mode=mode)
        artifact = await storage.save_artifact(
            result.content,
            f"photoroom-{request_id}.png",
            operation="remove-background",
            format="png"
        )

    remaining = result.metadata.get("remainingCredits")
    return PhotoRoomRemovalResponse(
        path=artifact.path,
        message="Background removed successfully using PhotoRoom",
        request_id=request_id,
        process_time=f"{elapsed_ms(start)}ms",
        remaining_credits=str(remaining) if remaining is not None else None,
        model_version=str(result.metadata.get("modelVersion", ""))
    )
