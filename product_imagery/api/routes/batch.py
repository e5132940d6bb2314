"""
Batch Endpoint

POST /api/batch-process - Apply an ordered list of operations to up to
MAX_BATCH_IMAGES images.

Multipart fields:
- images (or images[]): repeated file field
- operations: JSON array, e.g. [{"type": "resize", "width": 800}, {"type": "optimize"}]
"""

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile

from product_imagery.api.dependencies import ImageReader, get_batch_pipeline, get_image_reader
from product_imagery.api.schemas import BatchItem, BatchResponse
from product_imagery.core.exceptions import InvalidBatchRequestError
from product_imagery.core.logging import new_request_id
from product_imagery.pipeline.batch import BatchPipeline
from product_imagery.pipeline.orchestration import operation_scope

router = APIRouter()

IMAGE_FIELDS = ("images", "images[]")


@router.post("/batch-process", response_model=BatchResponse)
async def batch_process(
    request: Request,
    pipeline: BatchPipeline = Depends(get_batch_pipeline),
    read_image: ImageReader = Depends(get_image_reader)
):
    """
    All-or-nothing: if any image fails, artifacts already written for this
    request are deleted and the error is returned.
    """
    request_id = new_request_id()

    with operation_scope("batch_process", request_id):
        form = await request.form()
        files = [
            item
            for name in IMAGE_FIELDS
            for item in form.getlist(name)
            if isinstance(item, UploadFile)
        ]
        if not files:
            raise InvalidBatchRequestError("No images were uploaded")
        if len(files) > pipeline.max_images:
            raise InvalidBatchRequestError(
                f"At most {pipeline.max_images} images can be processed per batch",
                details={"received": len(files)}
            )

        operations = form.get("operations")
        plan = pipeline.plan(operations if isinstance(operations, str) else None)
        images = [await read_image(f, field="images") for f in files]
        result = await pipeline.run(images, plan, request_id)

    return BatchResponse(
        message=f"{len(result.items)} images processed successfully",
        request_id=request_id,
        results=[
            BatchItem(original_name=item.original_name, processed_path=item.artifact.path)
            for item in result.items
        ],
        skipped_operations=result.skipped
    )
