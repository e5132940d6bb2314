"""
Transform Endpoints

POST /api/resize           - Resize with contain/cover/fill
POST /api/optimize         - Re-encode as jpeg/png/webp/avif at a quality
POST /api/adjust           - Brightness, saturation, hue, sharpness, gamma
POST /api/create-hero      - 1200x628 marketing banner
POST /api/create-lifestyle - Product composited over a scene
POST /api/create-isometric - 800x600 product frame

Form values arrive as strings and are validated by the transform
parameter models, so malformed input is a 400 with field-level details.
"""

import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from product_imagery.api.dependencies import ImageReader, get_gateway, get_image_reader
from product_imagery.api.schemas import (
    HeroResponse,
    HeroTemplate,
    IsometricDimensions,
    IsometricResponse,
    OptimizeResponse,
    ProcessedResponse,
)
from product_imagery.core.logging import new_request_id
from product_imagery.core.storage import IStorage, get_storage
from product_imagery.engines.transform.gateway import ImageTransformGateway
from product_imagery.engines.transform.schemas import TransformRequest
from product_imagery.modules.imagery.models import (
    ProcessedArtifact,
    TransformKind,
    UploadedImage,
)
from product_imagery.pipeline.orchestration import operation_scope

router = APIRouter()


async def _transform_and_store(
    gateway: ImageTransformGateway,
    storage: IStorage,
    upload: UploadedImage,
    request: TransformRequest,
    prefix: str,
    request_id: str
) -> ProcessedArtifact:
    result = await asyncio.to_thread(gateway.transform, upload.content, request)
    return await storage.save_artifact(
        result.content,
        f"{prefix}-{request_id}.{result.extension}",
        operation=request.kind.value,
        format=result.format
    )


@router.post("/resize", response_model=ProcessedResponse)
async def resize_image(
    image: Optional[UploadFile] = File(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    fit: Optional[str] = Form(None),
    gateway: ImageTransformGateway = Depends(get_gateway),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    request_id = new_request_id()

    with operation_scope("resize", request_id):
        upload = await read_image(image)
        request = TransformRequest.build(
            TransformKind.RESIZE,
            {"width": width, "height": height, "fit": fit}
        )
        artifact = await _transform_and_store(
            gateway, storage, upload, request, "resized", request_id
        )

    return ProcessedResponse(
        path=artifact.path,
        message="Image resized successfully",
        request_id=request_id
    )


@router.post("/optimize", response_model=OptimizeResponse)
async def optimize_image(
    image: Optional[UploadFile] = File(None),
    quality: Optional[str] = Form(None),
    format: Optional[str] = Form(None),
    gateway: ImageTransformGateway = Depends(get_gateway),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    """Unrecognized formats fall back to webp; savings can be negative."""
    request_id = new_request_id()

    with operation_scope("optimize", request_id):
        upload = await read_image(image)
        request = TransformRequest.build(
            TransformKind.OPTIMIZE,
            {"quality": quality, "format": format}
        )
        artifact = await _transform_and_store(
            gateway, storage, upload, request, "optimized", request_id
        )

    savings = (upload.size - artifact.size) / upload.size * 100
    return OptimizeResponse(
        path=artifact.path,
        message="Image optimized successfully",
        request_id=request_id,
        format=artifact.format,
        original_size=upload.size,
        optimized_size=artifact.size,
        savings=f"{savings:.2f}%"
    )


@router.post("/adjust", response_model=ProcessedResponse)
async def adjust_image(
    image: Optional[UploadFile] = File(None),
    brightness: Optional[str] = Form(None),
    saturation: Optional[str] = Form(None),
    hue: Optional[str] = Form(None),
    sharpness: Optional[str] = Form(None),
    contrast: Optional[str] = Form(None),
    gateway: ImageTransformGateway = Depends(get_gateway),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    request_id = new_request_id()

    with operation_scope("adjust", request_id):
        upload = await read_image(image)
        raw: Dict[str, Any] = {
            "brightness": brightness,
            "saturation": saturation,
            "hue": hue,
            "sharpness": sharpness,
            "contrast": contrast,
        }
        request = TransformRequest.build(TransformKind.ADJUST, raw)
        artifact = await _transform_and_store(
            gateway, storage, upload, request, "adjusted", request_id
        )

    return ProcessedResponse(
        path=artifact.path,
        message="Image adjusted successfully",
        request_id=request_id
    )


@router.post("/create-hero", response_model=HeroResponse)
async def create_hero(
    image: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    brand_color: Optional[str] = Form(None, alias="brandColor"),
    template_id: Optional[str] = Form(None, alias="templateId"),
    gateway: ImageTransformGateway = Depends(get_gateway),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    request_id = new_request_id()

    with operation_scope("create_hero", request_id):
        upload = await read_image(image)
        request = TransformRequest.build(
            TransformKind.COMPOSITE_HERO,
            {
                "title": title,
                "description": description,
                "price": price,
                "brandColor": brand_color,
                "templateId": template_id,
            }
        )
        artifact = await _transform_and_store(
            gateway, storage, upload, request, "hero", request_id
        )

    params = request.params
    return HeroResponse(
        path=artifact.path,
        message="Hero image created successfully",
        request_id=request_id,
        template=HeroTemplate(
            title=params.title,
            description=params.description,
            price=params.price,
            brand_color=params.brand_color,
            template_id=params.template_id
        )
    )


@router.post("/create-lifestyle", response_model=ProcessedResponse)
async def create_lifestyle(
    product: Optional[UploadFile] = File(None),
    background: Optional[UploadFile] = File(None),
    gateway: ImageTransformGateway = Depends(get_gateway),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    """Both ``product`` and ``background`` are required."""
    request_id = new_request_id()

    with operation_scope("create_lifestyle", request_id):
        product_image = await read_image(product, field="product")
        background_image = await read_image(background, field="background")

        result = await asyncio.to_thread(
            gateway.compose_lifestyle,
            product_image.content,
            background_image.content
        )
        artifact = await storage.save_artifact(
            result.content,
            f"lifestyle-{request_id}.{result.extension}",
            operation=TransformKind.COMPOSITE_LIFESTYLE.value,
            format=result.format
        )

    return ProcessedResponse(
        path=artifact.path,
        message="Lifestyle image created successfully",
        request_id=request_id
    )


@router.post("/create-isometric", response_model=IsometricResponse)
async def create_isometric(
    image: Optional[UploadFile] = File(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    depth: Optional[str] = Form(None),
    unit: Optional[str] = Form(None),
    gateway: ImageTransformGateway = Depends(get_gateway),
    storage: IStorage = Depends(get_storage),
    read_image: ImageReader = Depends(get_image_reader)
):
    request_id = new_request_id()

    with operation_scope("create_isometric", request_id):
        upload = await read_image(image)
        request = TransformRequest.build(
            TransformKind.ISOMETRIC,
            {"width": width, "height": height, "depth": depth, "unit": unit}
        )
        artifact = await _transform_and_store(
            gateway, storage, upload, request, "isometric", request_id
        )

    params = request.params
    return IsometricResponse(
        path=artifact.path,
        message="Isometric view created successfully",
        request_id=request_id,
        dimensions=IsometricDimensions(
            width=params.width,
            height=params.height,
            depth=params.depth,
            unit=params.unit
        )
    )
