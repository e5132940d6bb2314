"""
FastAPI Dependencies

Provides dependency injection for:
- Image transform gateway (stateless singleton)
- Background removal providers (built once per application lifespan)
- Usage tracker (per application lifespan)
- Batch pipeline (per request)
- Upload reading, validation and per-client upload accounting
"""

from typing import Optional

from fastapi import Depends, Request, UploadFile

from product_imagery.core.config import settings
from product_imagery.core.exceptions import InvalidParametersError, MissingInputError
from product_imagery.core.storage import IStorage, get_storage
from product_imagery.core.telemetry import UsageTracker
from product_imagery.engines.background.providers import ProviderRegistry
from product_imagery.engines.transform.gateway import ImageTransformGateway
from product_imagery.modules.imagery.models import UploadedImage
from product_imagery.pipeline.batch import BatchPipeline

MAX_IMAGE_SIZE_MB = settings.MAX_IMAGE_SIZE_BYTES / (1024 * 1024)

_gateway = ImageTransformGateway()


def get_gateway() -> ImageTransformGateway:
    """Returns the singleton transform gateway."""
    return _gateway


def get_providers(request: Request) -> ProviderRegistry:
    """Returns the provider registry created at startup."""
    return request.app.state.providers


def get_usage_tracker(request: Request) -> UsageTracker:
    return request.app.state.usage


def get_batch_pipeline(
    gateway: ImageTransformGateway = Depends(get_gateway),
    providers: ProviderRegistry = Depends(get_providers),
    storage: IStorage = Depends(get_storage),
) -> BatchPipeline:
    return BatchPipeline(
        gateway=gateway,
        providers=providers,
        storage=storage,
        max_images=settings.MAX_BATCH_IMAGES
    )


class ImageReader:
    """Turns multipart files into UploadedImages for one request.

    Each accepted image is counted against the calling client in the
    usage tracker, using the size of the bytes actually read.
    """

    def __init__(self, usage: Optional[UsageTracker] = None, client: str = "unknown"):
        self.usage = usage
        self.client = client

    async def __call__(self, file: Optional[UploadFile], field: str = "image") -> UploadedImage:
        """
        Raises:
            MissingInputError: no file, or an empty one, was sent in ``field``
            InvalidParametersError: the file exceeds MAX_IMAGE_SIZE_BYTES
        """
        if file is None:
            raise MissingInputError(f"No image was uploaded in '{field}'", field=field)

        content = await file.read()
        if not content:
            raise MissingInputError(f"The image uploaded in '{field}' is empty", field=field)

        if len(content) > settings.MAX_IMAGE_SIZE_BYTES:
            raise InvalidParametersError(
                f"Image size ({len(content) / (1024 * 1024):.2f}MB) exceeds maximum "
                f"allowed size ({MAX_IMAGE_SIZE_MB:.0f}MB)",
                details={"field": field, "size": len(content)}
            )

        upload = UploadedImage(
            content=content,
            filename=file.filename or field,
            content_type=file.content_type or "application/octet-stream"
        )
        if self.usage is not None:
            self.usage.record_upload(self.client, upload.size)
        return upload


def get_image_reader(request: Request) -> ImageReader:
    return ImageReader(
        usage=getattr(request.app.state, "usage", None),
        client=request.client.host if request.client else "unknown"
    )
