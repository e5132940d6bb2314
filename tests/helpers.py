import io
from typing import Optional

from PIL import Image

from product_imagery.engines.background.providers import BackgroundRemover
from product_imagery.modules.imagery.models import RemovalResult, UploadedImage


def make_image(
    size=(64, 48),
    color=(200, 30, 30, 255),
    fmt: str = "PNG",
    mode: str = "RGBA"
) -> bytes:
    if mode == "RGB":
        color = color[:3]
    image = Image.new(mode, size, color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def open_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


class FakeRemover(BackgroundRemover):
    """Stands in for a real provider: returns a transparent PNG or raises."""

    def __init__(
        self,
        name: str,
        fail_with: Optional[Exception] = None,
        fail_on_call: Optional[int] = None,
        metadata: Optional[dict] = None
    ):
        self.name = name
        self.fail_with = fail_with
        self.fail_on_call = fail_on_call
        self.metadata = metadata or {}
        self.calls = []

    async def _remove(self, image: UploadedImage, request_id: str, **options) -> RemovalResult:
        self.calls.append({"request_id": request_id, "size": image.size, **options})
        if self.fail_with is not None and self.fail_on_call in (None, len(self.calls)):
            raise self.fail_with

        source = open_image(image.content)
        output = make_image(size=source.size, color=(10, 200, 10, 0))
        return RemovalResult(content=output, provider=self.name, metadata=dict(self.metadata))
