from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from product_imagery.core.exceptions import InvalidParametersError
from product_imagery.modules.imagery.models import TransformKind


class FitMode(str, Enum):
    CONTAIN = "contain"
    COVER = "cover"
    FILL = "fill"


class OutputFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"


FORMAT_ALIASES = {"jpg": OutputFormat.JPEG}


class TransformParams(BaseModel):
    """Base for per-operation parameters; accepts snake_case or camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ResizeParams(TransformParams):
    width: Optional[int] = Field(None, gt=0, le=10000)
    height: Optional[int] = Field(None, gt=0, le=10000)
    fit: FitMode = FitMode.CONTAIN

    @field_validator("fit", mode="before")
    @classmethod
    def normalize_fit(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def require_dimension(self) -> "ResizeParams":
        if self.width is None and self.height is None:
            raise ValueError("width or height is required")
        return self


class OptimizeParams(TransformParams):
    quality: int = Field(80, ge=0, le=100)
    format: OutputFormat = OutputFormat.WEBP

    @field_validator("format", mode="before")
    @classmethod
    def fallback_format(cls, v: Any) -> OutputFormat:
        """Unknown formats fall back to WebP instead of failing."""
        if isinstance(v, OutputFormat):
            return v
        name = str(v).strip().lower()
        if name in FORMAT_ALIASES:
            return FORMAT_ALIASES[name]
        try:
            return OutputFormat(name)
        except ValueError:
            return OutputFormat.WEBP


class AdjustParams(TransformParams):
    brightness: float = Field(1.0, ge=0, allow_inf_nan=False)
    saturation: float = Field(1.0, ge=0, allow_inf_nan=False)
    hue: float = Field(0.0, allow_inf_nan=False)
    sharpness: float = Field(1.0, ge=0, le=100, allow_inf_nan=False)
    contrast: float = Field(1.0, gt=0, le=10, allow_inf_nan=False)


class HeroParams(TransformParams):
    # Accepted and echoed back; text is not rendered onto the canvas yet.
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    brand_color: str = "#000000"
    template_id: str = "default"


class IsometricParams(TransformParams):
    width: float = Field(..., gt=0, allow_inf_nan=False)
    height: float = Field(..., gt=0, allow_inf_nan=False)
    depth: float = Field(..., gt=0, allow_inf_nan=False)
    unit: str = "cm"


class LifestyleParams(TransformParams):
    pass


class RemoveBackgroundParams(TransformParams):
    provider: str = "local"
    mode: Optional[str] = None

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


PARAMS_BY_KIND: Dict[TransformKind, Type[TransformParams]] = {
    TransformKind.RESIZE: ResizeParams,
    TransformKind.OPTIMIZE: OptimizeParams,
    TransformKind.ADJUST: AdjustParams,
    TransformKind.COMPOSITE_HERO: HeroParams,
    TransformKind.COMPOSITE_LIFESTYLE: LifestyleParams,
    TransformKind.ISOMETRIC: IsometricParams,
    TransformKind.REMOVE_BACKGROUND: RemoveBackgroundParams,
}


def _drop_blank(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Form fields arrive as strings; an empty field means "use the default"."""
    return {
        key: value
        for key, value in raw.items()
        if value is not None and not (isinstance(value, str) and not value.strip())
    }


def parse_params(kind: TransformKind, raw: Optional[Mapping[str, Any]] = None) -> TransformParams:
    """Validate raw parameters for an operation kind.

    Raises:
        InvalidParametersError: if a required field is absent or a value is malformed
    """
    model = PARAMS_BY_KIND[kind]
    try:
        return model.model_validate(_drop_blank(raw or {}))
    except ValidationError as e:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or kind.value,
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        summary = "; ".join(
            f"{err['field']}: {err['message']}" if err["field"] != kind.value else err["message"]
            for err in errors
        )
        raise InvalidParametersError(
            f"Invalid parameters for {kind.value}: {summary}",
            details={"operation": kind.value, "errors": errors},
        ) from e


class TransformRequest(BaseModel):
    """An operation kind plus its validated parameters."""
    kind: TransformKind
    params: TransformParams

    @classmethod
    def build(cls, kind: TransformKind, raw: Optional[Mapping[str, Any]] = None) -> "TransformRequest":
        return cls(kind=kind, params=parse_params(kind, raw))
