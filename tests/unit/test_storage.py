import re

import pytest

from product_imagery.core.exceptions import StorageError
from product_imagery.core.logging import new_request_id


def test_request_ids_are_unique():
    ids = {new_request_id() for _ in range(200)}
    assert len(ids) == 200
    assert all(re.match(r"^\d{13}-[0-9a-f]{8}$", i) for i in ids)


@pytest.mark.asyncio
async def test_save_and_url(storage):
    key = await storage.save(b"abc", "resized-1.png", "processed")
    assert key == "processed/resized-1.png"
    assert storage.get_url(key) == "/processed/resized-1.png"
    assert (storage.base_path / key).read_bytes() == b"abc"


@pytest.mark.asyncio
async def test_artifacts_are_write_once(storage):
    await storage.save(b"first", "hero-1.png", "processed")
    with pytest.raises(StorageError):
        await storage.save(b"second", "hero-1.png", "processed")
    assert (storage.base_path / "processed/hero-1.png").read_bytes() == b"first"


@pytest.mark.asyncio
async def test_path_like_names_are_rejected(storage):
    with pytest.raises(StorageError):
        await storage.save(b"x", "../escape.png", "processed")


@pytest.mark.asyncio
async def test_save_artifact_describes_output(storage):
    artifact = await storage.save_artifact(b"12345", "optimized-1.webp", operation="optimize", format="webp")
    assert artifact.path == "/processed/optimized-1.webp"
    assert artifact.size == 5
    assert artifact.format == "webp"
    assert await storage.exists(artifact.storage_key)


@pytest.mark.asyncio
async def test_delete(storage):
    key = await storage.save(b"x", "batch-1-0.png", "processed")
    assert await storage.delete(key) is True
    assert await storage.delete(key) is False
    assert not await storage.exists(key)
