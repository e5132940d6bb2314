"""
Global Exception Handling

Defines the error taxonomy of the service and turns it into structured
JSON error responses.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.params import File
from fastapi.responses import JSONResponse

from product_imagery.core.logging import get_logger, new_request_id, request_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class ImageryError(Exception):
    """Base exception for the imagery service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class MissingInputError(ImageryError):
    """Raised when a required image upload is absent."""

    def __init__(self, message: str = "No image was uploaded", field: Optional[str] = None, **kwargs):
        super().__init__(message, code=400, **kwargs)
        if field:
            self.details["field"] = field


class InvalidParametersError(ImageryError):
    """Raised when operation parameters are missing or malformed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class InvalidBatchRequestError(ImageryError):
    """Raised when a batch request cannot be processed at all."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class TransformFailureError(ImageryError):
    """Raised when the image library fails during a transform."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        super().__init__(message, code=500, **kwargs)
        if operation:
            self.details["operation"] = operation


class ProviderTimeoutError(ImageryError):
    """Raised when a background-removal provider does not finish in time."""

    def __init__(self, message: str, provider: str, timeout_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, code=500, **kwargs)
        self.details["provider"] = provider
        if timeout_seconds is not None:
            self.details["timeout_seconds"] = timeout_seconds


class ProviderExecutionError(ImageryError):
    """Raised when a provider cannot be executed or exits unsuccessfully."""

    def __init__(self, message: str, provider: str, exit_code: Optional[int] = None, **kwargs):
        super().__init__(message, code=500, **kwargs)
        self.details["provider"] = provider
        if exit_code is not None:
            self.details["exit_code"] = exit_code


class ProviderResponseError(ImageryError):
    """Raised when a cloud provider answers with an unusable response."""

    def __init__(
        self,
        message: str,
        provider: str,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code=500, **kwargs)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body
        self.details["provider"] = provider
        self.details["upstream_status"] = upstream_status
        if upstream_body:
            self.details["upstream_body"] = upstream_body[:1000]


class OutputMissingError(ImageryError):
    """Raised when a provider reports success but produced no output file."""

    def __init__(self, message: str, provider: str, **kwargs):
        super().__init__(message, code=500, **kwargs)
        self.details["provider"] = provider


class StorageError(ImageryError):
    """Raised when the result store cannot persist an artifact."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


# =============================================================================
# Response Helpers
# =============================================================================

def error_payload(exc: ImageryError) -> Dict[str, Any]:
    """Build the JSON body returned for an ImageryError."""
    return {
        "success": False,
        "error": exc.message,
        "details": exc.details or None,
        "requestId": exc.request_id or request_id_var.get(),
        "code": exc.code,
        "stage": exc.stage,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }


def _file_field_names(request: Request) -> set:
    """Multipart names the matched route declares as file uploads."""
    route = request.scope.get("route")
    dependant = getattr(route, "dependant", None)
    if dependant is None:
        return set()
    return {
        param.alias
        for param in dependant.body_params
        if isinstance(param.field_info, File)
    }


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ImageryError)
    async def imagery_exception_handler(request: Request, exc: ImageryError):
        log = logger.warning if exc.code < 500 else logger.error
        log(
            "imagery_exception",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            stage=exc.stage,
            request_id=exc.request_id,
            path=str(request.url.path),
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.code,
            content=error_payload(exc)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Raised before the route body runs, e.g. a text value sent in a
        # multipart field declared as a file upload.
        file_fields = _file_field_names(request)
        errors = exc.errors()
        # A lone, non-embedded body field reports its location as ("body",)
        lone_field = next(iter(file_fields)) if len(file_fields) == 1 else "body"
        failed = []
        file_failures = []
        for err in errors:
            loc = err.get("loc") or ()
            if not loc or loc[0] != "body":
                continue
            name = str(loc[-1]) if len(loc) > 1 else lone_field
            failed.append(name)
            if name in file_fields or "UploadFile" in str(err.get("msg", "")):
                file_failures.append(name)

        if file_failures:
            error: ImageryError = MissingInputError(
                f"No image was uploaded in '{file_failures[0]}'",
                field=file_failures[0],
                request_id=new_request_id()
            )
        else:
            error = InvalidParametersError(
                "Request parameters are invalid",
                request_id=new_request_id(),
                details={
                    "errors": [
                        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg")}
                        for err in errors
                    ]
                }
            )

        logger.warning(
            "request_validation_failed",
            error=error.message,
            request_id=error.request_id,
            path=str(request.url.path),
            fields=failed
        )

        return JSONResponse(
            status_code=error.code,
            content=error_payload(error)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "details": None,
                "requestId": request_id_var.get(),
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )
