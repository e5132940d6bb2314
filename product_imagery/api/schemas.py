"""
Response Schemas

Field names are snake_case in Python and serialized as camelCase, which is
the wire format the storefront client expects.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


class UploadResponse(ApiModel):
    success: bool = True
    filename: str
    path: str
    message: str


class ProcessedResponse(ApiModel):
    """Common envelope for every single-artifact operation."""
    success: bool = True
    path: str
    message: str
    request_id: str


class LocalRemovalMetrics(ApiModel):
    total_time: str
    preprocessing: str
    background_removal: str
    cleanup: str


class RemoveBackgroundResponse(ProcessedResponse):
    metrics: LocalRemovalMetrics


class AzureRemovalStats(ApiModel):
    process_time: str
    original_size: int
    processed_size: int
    reduction: str


class AzureRemovalResponse(ProcessedResponse):
    stats: AzureRemovalStats


class PhotoRoomRemovalResponse(ProcessedResponse):
    process_time: str
    remaining_credits: Optional[str] = None
    model_version: str


class HeroTemplate(ApiModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    brand_color: str
    template_id: str


class HeroResponse(ProcessedResponse):
    template: HeroTemplate


class IsometricDimensions(ApiModel):
    width: float
    height: float
    depth: float
    unit: str


class IsometricResponse(ProcessedResponse):
    dimensions: IsometricDimensions


class OptimizeResponse(ProcessedResponse):
    format: str
    original_size: int
    optimized_size: int
    savings: str


class BatchItem(ApiModel):
    original_name: str
    processed_path: str


class BatchResponse(ApiModel):
    success: bool = True
    message: str
    request_id: str
    results: List[BatchItem]
    skipped_operations: List[Dict[str, Any]] = []
