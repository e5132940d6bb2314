"""
Batch Pipeline

Folds every uploaded image through an ordered list of operations: the
output of operation i is the input of operation i+1. Images are processed
sequentially and in input order; each final buffer is persisted once.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from product_imagery.core.exceptions import (
    InvalidBatchRequestError,
    InvalidParametersError,
)
from product_imagery.core.logging import get_logger
from product_imagery.core.storage import IStorage
from product_imagery.engines.background.providers import ProviderRegistry
from product_imagery.engines.transform.gateway import ImageTransformGateway
from product_imagery.engines.transform.schemas import RemoveBackgroundParams, TransformRequest
from product_imagery.modules.imagery.models import (
    ProcessedArtifact,
    ProcessedImage,
    TransformKind,
    UploadedImage,
)

logger = get_logger(__name__)

BATCH_OPERATIONS = {
    "resize": TransformKind.RESIZE,
    "remove-background": TransformKind.REMOVE_BACKGROUND,
    "optimize": TransformKind.OPTIMIZE,
    "adjust": TransformKind.ADJUST,
}


@dataclass
class BatchPlan:
    """Validated operations, plus the entries that will be passed over."""
    steps: List[TransformRequest] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class BatchItemResult:
    original_name: str
    artifact: ProcessedArtifact


@dataclass
class BatchResult:
    items: List[BatchItemResult]
    skipped: List[Dict[str, Any]]


class BatchPipeline:
    """Sequential multi-image, multi-operation processing."""

    def __init__(
        self,
        gateway: ImageTransformGateway,
        providers: ProviderRegistry,
        storage: IStorage,
        max_images: int = 10
    ):
        self.gateway = gateway
        self.providers = providers
        self.storage = storage
        self.max_images = max_images

    def plan(self, operations: Union[str, List[Any], None]) -> BatchPlan:
        """
        Parse and validate the operations list before touching any image.

        Unknown operation types are kept out of the plan and reported as
        skipped; known ones must carry valid parameters.
        """
        if operations is None or (isinstance(operations, str) and not operations.strip()):
            raise InvalidBatchRequestError("The operations to perform are required")

        if isinstance(operations, str):
            try:
                operations = json.loads(operations)
            except json.JSONDecodeError as e:
                raise InvalidBatchRequestError(
                    f"operations is not valid JSON: {e.msg}",
                    details={"position": e.pos}
                ) from e

        if not isinstance(operations, list):
            raise InvalidBatchRequestError("operations must be a JSON array")

        plan = BatchPlan()
        for index, entry in enumerate(operations):
            if not isinstance(entry, dict) or not isinstance(entry.get("type"), str):
                raise InvalidBatchRequestError(
                    f"Operation {index} must be an object with a 'type'",
                    details={"index": index}
                )

            op_type = entry["type"]
            kind = BATCH_OPERATIONS.get(op_type)
            if kind is None:
                logger.warning("batch_operation_skipped", index=index, type=op_type)
                plan.skipped.append({"index": index, "type": op_type})
                continue

            raw = {key: value for key, value in entry.items() if key != "type"}
            try:
                step = TransformRequest.build(kind, raw)
            except InvalidParametersError as e:
                e.details["index"] = index
                raise

            if kind == TransformKind.REMOVE_BACKGROUND:
                self.providers.get(step.params.provider)
            plan.steps.append(step)

        return plan

    async def run(
        self,
        images: List[UploadedImage],
        plan: BatchPlan,
        request_id: str
    ) -> BatchResult:
        if not images:
            raise InvalidBatchRequestError("No images were uploaded")
        if len(images) > self.max_images:
            raise InvalidBatchRequestError(
                f"At most {self.max_images} images can be processed per batch",
                details={"received": len(images)}
            )

        items: List[BatchItemResult] = []
        try:
            for index, image in enumerate(images):
                buffer = image.content
                for step in plan.steps:
                    buffer = await self._apply(step, buffer, image, f"{request_id}-{index}")

                fmt = await asyncio.to_thread(self.gateway.detect_format, buffer)
                output = ProcessedImage(buffer, fmt)
                artifact = await self.storage.save_artifact(
                    output.content,
                    f"batch-{request_id}-{index}.{output.extension}",
                    operation="batch",
                    format=fmt
                )
                items.append(BatchItemResult(original_name=image.filename, artifact=artifact))
                logger.info(
                    "batch_item_completed",
                    index=index,
                    original_name=image.filename,
                    steps=len(plan.steps),
                    output_size=output.size
                )
        except Exception as e:
            # All-or-nothing: drop what this batch already wrote
            for item in items:
                await self.storage.delete(item.artifact.storage_key)
            logger.error(
                "batch_aborted",
                completed=len(items),
                total=len(images),
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        return BatchResult(items=items, skipped=plan.skipped)

    async def _apply(
        self,
        step: TransformRequest,
        buffer: bytes,
        image: UploadedImage,
        job_id: str
    ) -> bytes:
        if step.kind == TransformKind.REMOVE_BACKGROUND:
            params: RemoveBackgroundParams = step.params
            provider = self.providers.get(params.provider)
            fmt = await asyncio.to_thread(self.gateway.detect_format, buffer)
            current = UploadedImage(
                content=buffer,
                filename=image.filename,
                content_type=ProcessedImage(buffer, fmt).media_type
            )
            options: Dict[str, Optional[str]] = {}
            if params.mode:
                options["mode"] = params.mode
            result = await provider.remove_background(current, job_id, **options)
            return result.content

        result = await asyncio.to_thread(self.gateway.transform, buffer, step)
        return result.content
