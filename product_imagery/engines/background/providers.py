"""
Background Removal Providers

Three interchangeable implementations behind one interface:
- LocalRembgProvider: runs the rembg CLI against a temp file with a hard timeout
- AzureVisionProvider: Azure Computer Vision segmentation (raw PNG body)
- PhotoRoomProvider: PhotoRoom edit API (multipart upload)

There is no failover between providers and no retries; each failure is
raised once to the caller.
"""

import asyncio
import shlex
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import httpx

from product_imagery.core.config import Settings
from product_imagery.core.exceptions import (
    InvalidParametersError,
    OutputMissingError,
    ProviderExecutionError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from product_imagery.core.logging import get_logger
from product_imagery.core.metrics import record_provider_call, track_stage_latency
from product_imagery.engines.transform.gateway import ImageTransformGateway
from product_imagery.modules.imagery.models import (
    BackgroundRemovalJob,
    RemovalResult,
    UploadedImage,
)

logger = get_logger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class BackgroundRemover(ABC):
    """Capability interface: image bytes in, background-free image bytes out."""

    name: str = "base"

    async def remove_background(
        self,
        image: UploadedImage,
        request_id: str,
        **options
    ) -> RemovalResult:
        start = time.monotonic()
        logger.info(
            "remove_background_started",
            provider=self.name,
            file_name=image.filename,
            file_size=image.size,
            mime_type=image.content_type
        )

        try:
            with track_stage_latency(f"remove-background:{self.name}"):
                result = await self._remove(image, request_id, **options)
        except Exception as e:
            record_provider_call(self.name, "error")
            logger.error(
                "remove_background_failed",
                provider=self.name,
                duration_ms=_elapsed_ms(start),
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        record_provider_call(self.name, "success")
        result.metadata.setdefault("processTime", _elapsed_ms(start))
        logger.info(
            "remove_background_completed",
            provider=self.name,
            duration_ms=_elapsed_ms(start),
            input_size=image.size,
            output_size=len(result.content)
        )
        return result

    @abstractmethod
    async def _remove(self, image: UploadedImage, request_id: str, **options) -> RemovalResult:
        pass


# =============================================================================
# Local CLI (rembg)
# =============================================================================

class LocalRembgProvider(BackgroundRemover):
    """Runs ``<command> i <input> <output>`` on a per-request temp file."""

    name = "local"

    def __init__(
        self,
        gateway: ImageTransformGateway,
        work_dir: Union[str, Path],
        command: Union[str, Sequence[str]] = "rembg",
        timeout_seconds: float = 30.0
    ):
        self.gateway = gateway
        self.work_dir = Path(work_dir)
        self.command: List[str] = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout_seconds = timeout_seconds

    async def _remove(self, image: UploadedImage, request_id: str, **options) -> RemovalResult:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        job = BackgroundRemovalJob(
            request_id=request_id,
            provider=self.name,
            input_path=self.work_dir / f"temp-{request_id}.png",
            output_path=self.work_dir / f"nobg-{request_id}.png",
        )

        try:
            stage_start = time.monotonic()
            png = await asyncio.to_thread(self.gateway.normalize_png, image.content)
            try:
                job.input_path.write_bytes(png)
            except OSError as e:
                raise ProviderExecutionError(
                    f"Could not stage input for rembg: {e}",
                    provider=self.name
                ) from e
            job.timings["preprocessing"] = _elapsed_ms(stage_start)
            logger.info(
                "rembg_preprocess_completed",
                path=str(job.input_path),
                preprocess_ms=job.timings["preprocessing"]
            )

            stage_start = time.monotonic()
            await self._run(job)
            job.timings["backgroundRemoval"] = _elapsed_ms(stage_start)

            if not job.output_path.exists():
                raise OutputMissingError(
                    "rembg reported success but produced no output file",
                    provider=self.name
                )
            content = job.output_path.read_bytes()
            job.mark_succeeded()
        except Exception:
            job.mark_failed()
            raise
        finally:
            stage_start = time.monotonic()
            self._cleanup(job)
            job.timings["cleanup"] = _elapsed_ms(stage_start)

        return RemovalResult(
            content=content,
            provider=self.name,
            metadata={
                "preprocessing": job.timings.get("preprocessing", 0),
                "backgroundRemoval": job.timings.get("backgroundRemoval", 0),
                "cleanup": job.timings.get("cleanup", 0),
                "totalTime": job.elapsed_ms,
            }
        )

    async def _run(self, job: BackgroundRemovalJob):
        argv = [*self.command, "i", str(job.input_path), str(job.output_path)]
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ProviderExecutionError(
                f"Could not start {self.command[0]}: {e}",
                provider=self.name
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass  # exited between the timeout and the kill
            await process.wait()
            logger.error("rembg_timeout", timeout_seconds=self.timeout_seconds)
            raise ProviderTimeoutError(
                f"rembg did not finish within {self.timeout_seconds:g}s",
                provider=self.name,
                timeout_seconds=self.timeout_seconds
            )

        if process.returncode != 0:
            error_text = stderr.decode("utf-8", errors="replace").strip()
            logger.error("rembg_failed", exit_code=process.returncode, stderr=error_text[:2000])
            raise ProviderExecutionError(
                f"rembg exited with code {process.returncode}: {error_text[:500]}",
                provider=self.name,
                exit_code=process.returncode
            )

        logger.info(
            "rembg_completed",
            stdout=stdout.decode("utf-8", errors="replace").strip() or "No output"
        )

    def _cleanup(self, job: BackgroundRemovalJob):
        """Delete both intermediate files; failures are only logged."""
        for path in (job.input_path, job.output_path):
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("temp_cleanup_failed", path=str(path), error=str(e))

    async def detect_version(self) -> Optional[str]:
        """Return the tool version, or None if it cannot be run. Used at startup."""
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command, "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=10.0)
        except (OSError, asyncio.TimeoutError) as e:
            logger.error("rembg_unavailable", command=self.command, error=str(e))
            return None

        if process.returncode != 0:
            logger.error(
                "rembg_unavailable",
                command=self.command,
                stderr=stderr.decode("utf-8", errors="replace").strip()
            )
            return None

        version = stdout.decode("utf-8", errors="replace").strip()
        logger.info("rembg_verified", version=version)
        return version


# =============================================================================
# Cloud Providers
# =============================================================================

class HttpRemovalProvider(BackgroundRemover):
    """Shared HTTP plumbing for the cloud providers."""

    def __init__(
        self,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self.transport
            ) as client:
                response = await client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"{self.name} API timeout",
                provider=self.name,
                timeout_seconds=self.timeout_seconds
            ) from e
        except httpx.HTTPError as e:
            raise ProviderResponseError(
                f"{self.name} API request failed: {e}",
                provider=self.name
            ) from e

        if not response.is_success:
            logger.error(
                "provider_error_response",
                provider=self.name,
                status=response.status_code,
                reason=response.reason_phrase,
                error_body=response.text[:2000]
            )
            raise ProviderResponseError(
                f"{self.name} API error: {response.status_code} {response.reason_phrase} - {response.text[:500]}",
                provider=self.name,
                upstream_status=response.status_code,
                upstream_body=response.text
            )

        return response


class AzureVisionProvider(HttpRemovalProvider):
    """Azure Computer Vision ``imageanalysis:segment`` in backgroundRemoval mode."""

    name = "azure"

    def __init__(
        self,
        gateway: ImageTransformGateway,
        endpoint: str,
        api_key: Optional[str],
        api_version: str = "2023-02-01-preview",
        **kwargs
    ):
        super().__init__(**kwargs)
        self.gateway = gateway
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.api_version = api_version

    @property
    def url(self) -> str:
        return (
            f"{self.endpoint}/computervision/imageanalysis:segment"
            f"?api-version={self.api_version}&mode=backgroundRemoval"
        )

    async def _remove(self, image: UploadedImage, request_id: str, **options) -> RemovalResult:
        if not self.api_key:
            raise ProviderExecutionError(
                "Azure Vision API key is not configured",
                provider=self.name
            )

        png = await asyncio.to_thread(self.gateway.normalize_png, image.content)
        logger.info("azure_image_normalized", original_size=image.size, normalized_size=len(png))

        response = await self._post(
            self.url,
            content=png,
            headers={
                "Content-Type": "application/octet-stream",
                "Ocp-Apim-Subscription-Key": self.api_key,
            }
        )

        content_type = response.headers.get("content-type")
        if content_type != "image/png":
            raise ProviderResponseError(
                f"Unexpected response from azure: {content_type}",
                provider=self.name,
                upstream_status=response.status_code,
                upstream_body=response.text
            )

        return RemovalResult(
            content=response.content,
            provider=self.name,
            metadata={"apiVersion": self.api_version, "normalizedSize": len(png)}
        )


class PhotoRoomProvider(HttpRemovalProvider):
    """PhotoRoom image edit API; the API key is chosen per request by mode."""

    name = "photoroom"
    MODES = ("sandbox", "production")

    def __init__(
        self,
        endpoint: str,
        api_keys: Dict[str, Optional[str]],
        model_version: str = "2024-09-26",
        **kwargs
    ):
        super().__init__(**kwargs)
        self.endpoint = endpoint
        self.api_keys = api_keys
        self.model_version = model_version

    def resolve_mode(self, mode: Optional[str]) -> str:
        mode = (mode or "sandbox").strip().lower()
        if mode not in self.MODES:
            raise InvalidParametersError(
                f"Unknown PhotoRoom mode '{mode}'",
                details={"allowed": list(self.MODES)}
            )
        return mode

    async def _remove(
        self,
        image: UploadedImage,
        request_id: str,
        mode: Optional[str] = None,
        **options
    ) -> RemovalResult:
        mode = self.resolve_mode(mode)
        api_key = self.api_keys.get(mode)
        if not api_key:
            raise ProviderExecutionError(
                f"PhotoRoom {mode} API key is not configured",
                provider=self.name
            )

        response = await self._post(
            self.endpoint,
            headers={
                "x-api-key": api_key,
                "pr-background-removal-model-version": self.model_version,
            },
            files={"imageFile": (image.filename, image.content, image.content_type)}
        )

        remaining_credits = response.headers.get("x-credits-remaining")
        logger.info("photoroom_credits", mode=mode, remaining_credits=remaining_credits)

        return RemovalResult(
            content=response.content,
            provider=self.name,
            metadata={
                "mode": mode,
                "remainingCredits": remaining_credits,
                "modelVersion": self.model_version,
            }
        )


# =============================================================================
# Registry
# =============================================================================

class ProviderRegistry:
    """Closed set of providers, selected by name. No automatic failover."""

    def __init__(self, providers: Iterable[BackgroundRemover]):
        self._providers: Dict[str, BackgroundRemover] = {p.name: p for p in providers}

    def get(self, name: str) -> BackgroundRemover:
        try:
            return self._providers[name]
        except KeyError:
            raise InvalidParametersError(
                f"Unknown background removal provider '{name}'",
                details={"allowed": self.names()}
            ) from None

    def names(self) -> List[str]:
        return sorted(self._providers)

    def __contains__(self, name: str) -> bool:
        return name in self._providers


def build_registry(settings: Settings, gateway: ImageTransformGateway) -> ProviderRegistry:
    """Wire the three providers from configuration."""
    return ProviderRegistry([
        LocalRembgProvider(
            gateway,
            work_dir=settings.TEMP_DIR,
            command=settings.REMBG_COMMAND,
            timeout_seconds=settings.REMBG_TIMEOUT_SECONDS
        ),
        AzureVisionProvider(
            gateway,
            endpoint=settings.AZURE_VISION_ENDPOINT,
            api_key=settings.AZURE_VISION_API_KEY,
            api_version=settings.AZURE_VISION_API_VERSION,
            timeout_seconds=settings.PROVIDER_HTTP_TIMEOUT_SECONDS
        ),
        PhotoRoomProvider(
            endpoint=settings.PHOTOROOM_API_URL,
            api_keys={
                "sandbox": settings.PHOTOROOM_SANDBOX_API_KEY,
                "production": settings.PHOTOROOM_PRODUCTION_API_KEY,
            },
            model_version=settings.PHOTOROOM_MODEL_VERSION,
            timeout_seconds=settings.PROVIDER_HTTP_TIMEOUT_SECONDS
        ),
    ])
