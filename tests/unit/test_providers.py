import sys

import httpx
import pytest

from product_imagery.core.exceptions import (
    InvalidParametersError,
    OutputMissingError,
    ProviderExecutionError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from product_imagery.engines.background.providers import (
    AzureVisionProvider,
    LocalRembgProvider,
    PhotoRoomProvider,
    ProviderRegistry,
)
from product_imagery.modules.imagery.models import UploadedImage
from tests.helpers import make_image, open_image

# Invoked as: python -c <script> i <input> <output>
COPY_SCRIPT = "import shutil, sys; shutil.copyfile(sys.argv[2], sys.argv[3])"
SLEEP_SCRIPT = "import time; time.sleep(10)"
FAIL_SCRIPT = "import sys; sys.stderr.write('model not found'); sys.exit(3)"
NOOP_SCRIPT = "pass"


def local_provider(gateway, tmp_path, script, timeout=10.0):
    return LocalRembgProvider(
        gateway,
        work_dir=tmp_path / "work",
        command=[sys.executable, "-c", script],
        timeout_seconds=timeout
    )


@pytest.fixture
def upload():
    return UploadedImage(make_image(size=(32, 16)), "shoe.png", "image/png")


# =============================================================================
# Local CLI
# =============================================================================

@pytest.mark.asyncio
async def test_local_success_returns_output_and_cleans_up(gateway, tmp_path, upload):
    provider = local_provider(gateway, tmp_path, COPY_SCRIPT)
    result = await provider.remove_background(upload, "req-1")

    assert result.provider == "local"
    assert open_image(result.content).size == (32, 16)
    assert set(result.metadata) >= {"preprocessing", "backgroundRemoval", "cleanup", "totalTime"}
    assert list((tmp_path / "work").iterdir()) == []


@pytest.mark.asyncio
async def test_local_timeout_kills_and_cleans_up(gateway, tmp_path, upload):
    provider = local_provider(gateway, tmp_path, SLEEP_SCRIPT, timeout=0.5)
    with pytest.raises(ProviderTimeoutError) as exc_info:
        await provider.remove_background(upload, "req-2")

    assert exc_info.value.details["provider"] == "local"
    assert exc_info.value.details["timeout_seconds"] == 0.5
    assert list((tmp_path / "work").iterdir()) == []


@pytest.mark.asyncio
async def test_local_nonzero_exit(gateway, tmp_path, upload):
    provider = local_provider(gateway, tmp_path, FAIL_SCRIPT)
    with pytest.raises(ProviderExecutionError) as exc_info:
        await provider.remove_background(upload, "req-3")

    assert exc_info.value.details["exit_code"] == 3
    assert "model not found" in exc_info.value.message
    assert list((tmp_path / "work").iterdir()) == []


@pytest.mark.asyncio
async def test_local_missing_output(gateway, tmp_path, upload):
    provider = local_provider(gateway, tmp_path, NOOP_SCRIPT)
    with pytest.raises(OutputMissingError):
        await provider.remove_background(upload, "req-4")
    assert list((tmp_path / "work").iterdir()) == []


@pytest.mark.asyncio
async def test_local_command_not_found(gateway, tmp_path, upload):
    provider = LocalRembgProvider(
        gateway,
        work_dir=tmp_path / "work",
        command=str(tmp_path / "no-such-rembg")
    )
    with pytest.raises(ProviderExecutionError):
        await provider.remove_background(upload, "req-5")
    assert list((tmp_path / "work").iterdir()) == []


@pytest.mark.asyncio
async def test_local_detect_version_reports_version(gateway, tmp_path):
    provider = local_provider(gateway, tmp_path, "print('rembg 2.0.50')")
    assert await provider.detect_version() == "rembg 2.0.50"


@pytest.mark.asyncio
async def test_local_detect_version_missing_tool(gateway, tmp_path):
    provider = LocalRembgProvider(gateway, work_dir=tmp_path, command=str(tmp_path / "missing"))
    assert await provider.detect_version() is None


# =============================================================================
# Azure
# =============================================================================

def azure_provider(gateway, handler, api_key="azure-key"):
    return AzureVisionProvider(
        gateway,
        endpoint="https://vision.example.com/",
        api_key=api_key,
        transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_azure_success(gateway, upload):
    seen = {}
    png = make_image(size=(32, 16), color=(0, 0, 0, 0))

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["Ocp-Apim-Subscription-Key"]
        seen["content_type"] = request.headers["Content-Type"]
        return httpx.Response(200, content=png, headers={"content-type": "image/png"})

    result = await azure_provider(gateway, handler).remove_background(upload, "req-6")

    assert result.content == png
    assert seen["url"] == (
        "https://vision.example.com/computervision/imageanalysis:segment"
        "?api-version=2023-02-01-preview&mode=backgroundRemoval"
    )
    assert seen["key"] == "azure-key"
    assert seen["content_type"] == "application/octet-stream"


@pytest.mark.asyncio
async def test_azure_error_status(gateway, upload):
    def handler(request):
        return httpx.Response(401, text='{"error": "invalid key"}')

    with pytest.raises(ProviderResponseError) as exc_info:
        await azure_provider(gateway, handler).remove_background(upload, "req-7")
    assert exc_info.value.upstream_status == 401
    assert "invalid key" in exc_info.value.upstream_body


@pytest.mark.asyncio
async def test_azure_unexpected_content_type(gateway, upload):
    def handler(request):
        return httpx.Response(200, json={"error": "quota exceeded"})

    with pytest.raises(ProviderResponseError) as exc_info:
        await azure_provider(gateway, handler).remove_background(upload, "req-8")
    assert exc_info.value.upstream_status == 200
    assert "quota exceeded" in exc_info.value.upstream_body
    assert "quota exceeded" in exc_info.value.details["upstream_body"]


@pytest.mark.asyncio
async def test_azure_timeout(gateway, upload):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderTimeoutError):
        await azure_provider(gateway, handler).remove_background(upload, "req-9")


@pytest.mark.asyncio
async def test_azure_without_key_makes_no_call(gateway, upload):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    with pytest.raises(ProviderExecutionError):
        await azure_provider(gateway, handler, api_key=None).remove_background(upload, "req-10")
    assert calls == []


# =============================================================================
# PhotoRoom
# =============================================================================

def photoroom_provider(handler):
    return PhotoRoomProvider(
        endpoint="https://image-api.example.com/v2/edit",
        api_keys={"sandbox": "sandbox-key", "production": "live-key"},
        transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_photoroom_production_mode(upload):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.headers["x-api-key"]
        seen["model"] = request.headers["pr-background-removal-model-version"]
        seen["body"] = request.read()
        return httpx.Response(200, content=b"png-bytes", headers={"x-credits-remaining": "41"})

    result = await photoroom_provider(handler).remove_background(upload, "req-11", mode="Production")

    assert result.content == b"png-bytes"
    assert seen["key"] == "live-key"
    assert seen["model"] == "2024-09-26"
    assert b'name="imageFile"' in seen["body"]
    assert result.metadata["remainingCredits"] == "41"
    assert result.metadata["mode"] == "production"


@pytest.mark.asyncio
async def test_photoroom_defaults_to_sandbox(upload):
    seen = {}

    def handler(request):
        seen["key"] = request.headers["x-api-key"]
        return httpx.Response(200, content=b"png-bytes")

    result = await photoroom_provider(handler).remove_background(upload, "req-12")
    assert seen["key"] == "sandbox-key"
    assert result.metadata["remainingCredits"] is None


@pytest.mark.asyncio
async def test_photoroom_unknown_mode(upload):
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(InvalidParametersError):
        await photoroom_provider(handler).remove_background(upload, "req-13", mode="staging")


@pytest.mark.asyncio
async def test_photoroom_error_status(upload):
    def handler(request):
        return httpx.Response(402, text="payment required")

    with pytest.raises(ProviderResponseError) as exc_info:
        await photoroom_provider(handler).remove_background(upload, "req-14")
    assert exc_info.value.details["upstream_status"] == 402


# =============================================================================
# Registry
# =============================================================================

def test_registry_lookup(gateway, tmp_path):
    local = LocalRembgProvider(gateway, work_dir=tmp_path)
    registry = ProviderRegistry([local])
    assert registry.get("local") is local
    assert "local" in registry
    assert registry.names() == ["local"]


def test_registry_unknown_provider(gateway, tmp_path):
    registry = ProviderRegistry([LocalRembgProvider(gateway, work_dir=tmp_path)])
    with pytest.raises(InvalidParametersError) as exc_info:
        registry.get("removebg")
    assert exc_info.value.details["allowed"] == ["local"]
