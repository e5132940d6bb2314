import json

import pytest

from product_imagery.core.exceptions import (
    InvalidBatchRequestError,
    InvalidParametersError,
    ProviderExecutionError,
)
from product_imagery.engines.transform.schemas import AdjustParams
from product_imagery.modules.imagery.models import TransformKind, UploadedImage
from product_imagery.pipeline.batch import BatchPipeline
from tests.helpers import make_image, open_image


@pytest.fixture
def pipeline(gateway, providers, storage):
    return BatchPipeline(gateway=gateway, providers=providers, storage=storage, max_images=3)


def uploads(*sizes):
    return [
        UploadedImage(make_image(size=size), f"image-{i}.png", "image/png")
        for i, size in enumerate(sizes)
    ]


# =============================================================================
# Planning
# =============================================================================

def test_plan_parses_json_string(pipeline):
    plan = pipeline.plan(json.dumps([{"type": "resize", "width": 10}, {"type": "optimize"}]))
    assert [step.kind for step in plan.steps] == [TransformKind.RESIZE, TransformKind.OPTIMIZE]
    assert plan.skipped == []


def test_plan_skips_unknown_types(pipeline):
    plan = pipeline.plan([{"type": "watermark"}, {"type": "adjust"}])
    assert [step.kind for step in plan.steps] == [TransformKind.ADJUST]
    assert plan.skipped == [{"index": 0, "type": "watermark"}]


@pytest.mark.parametrize("operations", [None, "", "   ", "{not json", '{"type": "resize"}', "[1]", '[{"width": 10}]'])
def test_plan_rejects_malformed_operations(pipeline, operations):
    with pytest.raises(InvalidBatchRequestError):
        pipeline.plan(operations)


def test_plan_reports_index_of_invalid_parameters(pipeline):
    with pytest.raises(InvalidParametersError) as exc_info:
        pipeline.plan([{"type": "optimize"}, {"type": "resize", "width": -4}])
    assert exc_info.value.details["index"] == 1


def test_plan_adjust_uses_single_endpoint_defaults(pipeline):
    plan = pipeline.plan([{"type": "adjust", "brightness": 1.2}])
    params = plan.steps[0].params
    assert params == AdjustParams(brightness=1.2)
    assert params.sharpness == 1.0
    assert params.contrast == 1.0


def test_plan_rejects_unknown_provider(pipeline):
    with pytest.raises(InvalidParametersError):
        pipeline.plan([{"type": "remove-background", "provider": "removebg"}])


# =============================================================================
# Execution
# =============================================================================

@pytest.mark.asyncio
async def test_run_folds_operations_in_order(pipeline, storage):
    plan = pipeline.plan([{"type": "resize", "width": 10, "height": 10, "fit": "fill"}, {"type": "optimize", "format": "jpeg"}])
    result = await pipeline.run(uploads((40, 20), (20, 40)), plan, "batch-req")

    assert [item.original_name for item in result.items] == ["image-0.png", "image-1.png"]
    assert len({item.artifact.path for item in result.items}) == 2
    for index, item in enumerate(result.items):
        assert item.artifact.filename == f"batch-batch-req-{index}.jpg"
        assert await storage.exists(item.artifact.storage_key)
        assert open_image((storage.base_path / item.artifact.storage_key).read_bytes()).size == (10, 10)


@pytest.mark.asyncio
async def test_run_with_empty_plan_stores_originals(pipeline, storage):
    images = uploads((12, 12))
    result = await pipeline.run(images, pipeline.plan("[]"), "noop-req")
    stored = (storage.base_path / result.items[0].artifact.storage_key).read_bytes()
    assert stored == images[0].content


@pytest.mark.asyncio
async def test_run_passes_job_ids_to_provider(pipeline, providers):
    plan = pipeline.plan([{"type": "remove-background"}])
    await pipeline.run(uploads((8, 8), (8, 8)), plan, "rb-req")
    assert [call["request_id"] for call in providers.get("local").calls] == ["rb-req-0", "rb-req-1"]


@pytest.mark.asyncio
async def test_run_rejects_image_count(pipeline):
    plan = pipeline.plan([{"type": "optimize"}])
    with pytest.raises(InvalidBatchRequestError):
        await pipeline.run([], plan, "empty")
    with pytest.raises(InvalidBatchRequestError):
        await pipeline.run(uploads(*[(4, 4)] * 4), plan, "too-many")


@pytest.mark.asyncio
async def test_run_failure_rolls_back_written_artifacts(pipeline, providers, storage):
    local = providers.get("local")
    local.fail_with = ProviderExecutionError("rembg exited with code 1", provider="local", exit_code=1)
    local.fail_on_call = 2

    plan = pipeline.plan([{"type": "remove-background"}])
    with pytest.raises(ProviderExecutionError):
        await pipeline.run(uploads((8, 8), (8, 8)), plan, "rollback-req")

    assert not await storage.exists("processed/batch-rollback-req-0.png")
    assert list((storage.base_path / "processed").glob("batch-rollback-req-*")) == []
