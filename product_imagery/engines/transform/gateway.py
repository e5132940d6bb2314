"""
Image Transform Gateway

Thin layer over Pillow. Every operation takes encoded image bytes plus
validated parameters and returns encoded bytes; nothing is kept between
calls. Library failures surface as TransformFailureError.
"""

import io
import time
from contextlib import contextmanager
from typing import Optional, Tuple

from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from product_imagery.core.exceptions import (
    ImageryError,
    InvalidParametersError,
    TransformFailureError,
)
from product_imagery.core.logging import get_logger
from product_imagery.core.metrics import track_stage_latency
from product_imagery.engines.transform.schemas import (
    AdjustParams,
    FitMode,
    HeroParams,
    IsometricParams,
    OptimizeParams,
    OutputFormat,
    ResizeParams,
    TransformRequest,
)
from product_imagery.modules.imagery.models import ProcessedImage, TransformKind

logger = get_logger(__name__)

RESAMPLE = Image.Resampling.LANCZOS
TRANSPARENT = (0, 0, 0, 0)
WHITE = (255, 255, 255, 255)

HERO_SIZE = (1200, 628)
LIFESTYLE_CANVAS_SIZE = (1920, 1080)
LIFESTYLE_PRODUCT_SIZE = (800, 800)
ISOMETRIC_SIZE = (800, 600)


@contextmanager
def library_call(operation: str):
    """Map any Pillow failure inside the block to TransformFailureError."""
    with track_stage_latency(operation):
        try:
            yield
        except ImageryError:
            raise
        except Exception as e:
            logger.error(
                "transform_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__
            )
            raise TransformFailureError(
                f"Image {operation} failed: {e}",
                operation=operation
            ) from e


class ImageTransformGateway:
    """Stateless wrapper around the image library."""

    def transform(self, data: bytes, request: TransformRequest) -> ProcessedImage:
        """Apply a single-input operation to encoded image bytes."""
        handlers = {
            TransformKind.RESIZE: self.resize,
            TransformKind.OPTIMIZE: self.optimize,
            TransformKind.ADJUST: self.adjust,
            TransformKind.COMPOSITE_HERO: self.compose_hero,
            TransformKind.ISOMETRIC: self.isometric,
        }
        handler = handlers.get(request.kind)
        if handler is None:
            raise InvalidParametersError(
                f"'{request.kind.value}' is not a single-image transform",
                details={"operation": request.kind.value}
            )

        start = time.time()
        result = handler(data, request.params)
        logger.info(
            "transform_completed",
            operation=request.kind.value,
            input_size=len(data),
            output_size=result.size,
            output_format=result.format,
            duration_ms=int((time.time() - start) * 1000)
        )
        return result

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def resize(self, data: bytes, params: ResizeParams) -> ProcessedImage:
        with library_call("resize"):
            image = self._open(data)
            size = self._target_size(image.size, params.width, params.height)

            if params.width is None or params.height is None or params.fit == FitMode.FILL:
                # Single dimension keeps the aspect ratio, so every fit mode agrees
                output = image.resize(size, RESAMPLE)
            elif params.fit == FitMode.COVER:
                output = ImageOps.fit(image, size, method=RESAMPLE)
            else:
                output = self._letterbox(image, size)

            return ProcessedImage(self._encode(output, "png"), "png")

    def optimize(self, data: bytes, params: OptimizeParams) -> ProcessedImage:
        with library_call("optimize"):
            image = self._open(data)
            fmt = params.format

            if fmt == OutputFormat.JPEG:
                content = self._encode(
                    self._flatten(image), "jpeg", quality=params.quality, optimize=True
                )
            elif fmt == OutputFormat.PNG:
                if params.quality < 100:
                    colors = max(2, min(256, round(256 * params.quality / 100)))
                    image = image.convert("RGBA").quantize(
                        colors=colors, method=Image.Quantize.FASTOCTREE
                    )
                content = self._encode(image, "png", optimize=True, compress_level=9)
            elif fmt == OutputFormat.AVIF:
                Image.init()
                if "AVIF" not in Image.SAVE:
                    raise TransformFailureError(
                        "AVIF encoding is not available in this Pillow build",
                        operation="optimize"
                    )
                content = self._encode(image, "avif", quality=params.quality)
            else:
                content = self._encode(image, "webp", quality=params.quality, method=4)

            return ProcessedImage(content, fmt.value)

    def adjust(self, data: bytes, params: AdjustParams) -> ProcessedImage:
        """Color modulation, then sharpen, then gamma. Alpha is left untouched."""
        with library_call("adjust"):
            base = self._open(data).convert("RGBA")
            alpha = base.getchannel("A")
            rgb = base.convert("RGB")

            if params.brightness != 1.0:
                rgb = ImageEnhance.Brightness(rgb).enhance(params.brightness)
            if params.saturation != 1.0:
                rgb = ImageEnhance.Color(rgb).enhance(params.saturation)
            if int(round(params.hue)) % 360:
                rgb = self._rotate_hue(rgb, params.hue)

            if params.sharpness > 0:
                rgb = rgb.filter(
                    ImageFilter.UnsharpMask(radius=params.sharpness, percent=100, threshold=0)
                )

            if params.contrast != 1.0:
                exponent = 1.0 / params.contrast
                lut = [round(255 * ((i / 255.0) ** exponent)) for i in range(256)]
                rgb = rgb.point(lut * 3)

            rgb.putalpha(alpha)
            return ProcessedImage(self._encode(rgb, "png"), "png")

    def compose_hero(self, data: bytes, params: Optional[HeroParams] = None) -> ProcessedImage:
        """
        Marketing hero banner: product on the left half, blank panel on the right.

        Title, price and brand color are not rendered yet; the right half stays
        an empty white panel.
        """
        with library_call("composite-hero"):
            width, height = HERO_SIZE
            half = (width // 2, height)

            product = self._letterbox(self._open(data), half)
            panel = Image.new("RGBA", half, WHITE)

            canvas = Image.new("RGBA", HERO_SIZE, WHITE)
            canvas.alpha_composite(product, (0, 0))
            canvas.alpha_composite(panel, (width // 2, 0))

            return ProcessedImage(self._encode(canvas, "png"), "png")

    def compose_lifestyle(self, product: bytes, background: bytes) -> ProcessedImage:
        """Centre the product over a 1920x1080 scene, respecting its alpha."""
        with library_call("composite-lifestyle"):
            item = self._letterbox(self._open(product), LIFESTYLE_PRODUCT_SIZE)
            scene = ImageOps.fit(
                self._open(background).convert("RGBA"),
                LIFESTYLE_CANVAS_SIZE,
                method=RESAMPLE
            )

            offset = (
                (LIFESTYLE_CANVAS_SIZE[0] - LIFESTYLE_PRODUCT_SIZE[0]) // 2,
                (LIFESTYLE_CANVAS_SIZE[1] - LIFESTYLE_PRODUCT_SIZE[1]) // 2,
            )
            scene.alpha_composite(item, offset)

            return ProcessedImage(self._encode(scene, "png"), "png")

    def isometric(self, data: bytes, params: Optional[IsometricParams] = None) -> ProcessedImage:
        # Placeholder: no projection or dimension lines, just the 800x600 frame.
        with library_call("isometric"):
            output = self._letterbox(self._open(data), ISOMETRIC_SIZE)
            return ProcessedImage(self._encode(output, "png"), "png")

    def normalize_png(self, data: bytes) -> bytes:
        """Re-encode any supported input as PNG."""
        with library_call("normalize"):
            return self._encode(self._open(data), "png")

    def detect_format(self, data: bytes) -> str:
        with library_call("identify"):
            with Image.open(io.BytesIO(data)) as image:
                return (image.format or "png").lower()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _open(data: bytes) -> Image.Image:
        image = Image.open(io.BytesIO(data))
        image.load()
        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA")
        return image

    @staticmethod
    def _encode(image: Image.Image, fmt: str, **options) -> bytes:
        buffer = io.BytesIO()
        image.save(buffer, format=fmt.upper(), **options)
        return buffer.getvalue()

    @staticmethod
    def _target_size(
        original: Tuple[int, int],
        width: Optional[int],
        height: Optional[int]
    ) -> Tuple[int, int]:
        src_w, src_h = original
        if width and height:
            return width, height
        if width:
            return width, max(1, round(src_h * width / src_w))
        return max(1, round(src_w * height / src_h)), height

    @staticmethod
    def _letterbox(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
        """Fit inside size and pad the remainder with transparency."""
        return ImageOps.pad(
            image.convert("RGBA"),
            size,
            method=RESAMPLE,
            color=TRANSPARENT
        )

    @staticmethod
    def _flatten(image: Image.Image) -> Image.Image:
        """Drop alpha by compositing onto white (JPEG has no transparency)."""
        if image.mode != "RGBA":
            return image.convert("RGB")
        background = Image.new("RGBA", image.size, WHITE)
        background.alpha_composite(image)
        return background.convert("RGB")

    @staticmethod
    def _rotate_hue(image: Image.Image, degrees: float) -> Image.Image:
        shift = int(round(degrees / 360.0 * 256)) % 256
        h, s, v = image.convert("HSV").split()
        h = h.point(lambda x: (x + shift) % 256)
        return Image.merge("HSV", (h, s, v)).convert("RGB")
