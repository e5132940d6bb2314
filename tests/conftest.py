import os
import tempfile

# Settings are read at import time, so point storage somewhere disposable first
_DATA_DIR = tempfile.mkdtemp(prefix="product-imagery-tests-")
os.environ.setdefault("LOCAL_STORAGE_PATH", _DATA_DIR)
os.environ.setdefault("TEMP_DIR", os.path.join(_DATA_DIR, "tmp"))
os.environ.setdefault("LOG_FORMAT_JSON", "false")

import pytest
from httpx import AsyncClient, ASGITransport
from typing import AsyncGenerator

from product_imagery.api.dependencies import get_providers
from product_imagery.core.storage import LocalStorage
from product_imagery.engines.background.providers import ProviderRegistry
from product_imagery.engines.transform.gateway import ImageTransformGateway
from product_imagery.main import app
from tests.helpers import FakeRemover, make_image


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def png_bytes() -> bytes:
    return make_image()


@pytest.fixture
def gateway() -> ImageTransformGateway:
    return ImageTransformGateway()


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(base_path=str(tmp_path / "store"))


@pytest.fixture
def providers() -> ProviderRegistry:
    return ProviderRegistry([
        FakeRemover(
            "local",
            metadata={"preprocessing": 3, "backgroundRemoval": 40, "cleanup": 1, "totalTime": 44}
        ),
        FakeRemover("azure", metadata={"apiVersion": "2023-02-01-preview"}),
        FakeRemover(
            "photoroom",
            metadata={"mode": "sandbox", "remainingCredits": "97", "modelVersion": "2024-09-26"}
        ),
    ])


@pytest.fixture
async def client(providers) -> AsyncGenerator[AsyncClient, None]:
    # Trigger lifespan events (startup/shutdown)
    # app.router.lifespan_context(app) returns an async context manager
    app.dependency_overrides[get_providers] = lambda: providers
    try:
        async with app.router.lifespan_context(app):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
                yield ac
    finally:
        app.dependency_overrides.clear()
