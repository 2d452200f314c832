"""
Global Exception Handling

Closed error taxonomy for the ingestion pipeline. Every stage raises a
subclass of MediaPipelineError tagged with an ErrorKind at the point of
failure; the API layer turns it into a structured response without ever
inspecting the message text.
"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront_media.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


# =============================================================================
# Error Taxonomy
# =============================================================================

class ErrorKind(str, Enum):
    INVALID_ARGUMENT = "invalid_argument"
    UNREACHABLE = "unreachable"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    TIMEOUT = "timeout"
    UNSUPPORTED_FORMAT = "unsupported_format"
    UPSTREAM_FAILURE = "upstream_failure"
    INTERNAL = "internal"


# kind -> (caller status, HTTP status)
KIND_STATUS: Dict[ErrorKind, tuple] = {
    ErrorKind.INVALID_ARGUMENT: ("invalid-argument", 400),
    ErrorKind.UNREACHABLE: ("invalid-argument", 400),
    ErrorKind.NOT_FOUND: ("invalid-argument", 400),
    ErrorKind.ACCESS_DENIED: ("invalid-argument", 400),
    ErrorKind.TIMEOUT: ("deadline-exceeded", 408),
    ErrorKind.UNSUPPORTED_FORMAT: ("invalid-argument", 400),
    ErrorKind.UPSTREAM_FAILURE: ("internal", 502),
    ErrorKind.INTERNAL: ("internal", 500),
}

DEFAULT_USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.INVALID_ARGUMENT: "Please provide a valid image URL.",
    ErrorKind.UNREACHABLE: "Unable to reach the image URL. Please check the URL and try again.",
    ErrorKind.NOT_FOUND: (
        "Image not found at the provided URL (404 error). "
        "Please check the URL and try again."
    ),
    ErrorKind.ACCESS_DENIED: (
        "Access denied to the image URL (403 error). "
        "The image may be protected or require authentication."
    ),
    ErrorKind.TIMEOUT: (
        "Request timeout. The image took too long to download. "
        "Please try with a smaller image or different URL."
    ),
    ErrorKind.UNSUPPORTED_FORMAT: (
        "The URL does not point to a valid image file. "
        "Please ensure the URL points to a JPG, PNG, WebP, or GIF image."
    ),
    ErrorKind.UPSTREAM_FAILURE: "Failed to upload image to storage. Please try again.",
    ErrorKind.INTERNAL: (
        "An unexpected error occurred while processing the image. Please try again."
    ),
}


class UrlRejection(str, Enum):
    EMPTY = "empty"
    MALFORMED_URL = "malformed_url"
    NOT_IMAGE_LIKE = "not_image_like"


class FetchFailure(str, Enum):
    UNREACHABLE = "unreachable"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    TIMEOUT = "timeout"
    TOO_LARGE = "too_large"
    OTHER_HTTP_STATUS = "other_http_status"
    TRANSPORT_ERROR = "transport_error"


class VerificationFailure(str, Enum):
    UNSUPPORTED_CONTENT_TYPE = "unsupported_content_type"
    NOT_DECODABLE = "not_decodable"
    MISSING_DIMENSIONS = "missing_dimensions"
    TOO_LARGE = "too_large"


class TranscodeFailure(str, Enum):
    ENCODE_FAILURE = "encode_failure"


class UploadFailure(str, Enum):
    INVALID_BACKEND_RESPONSE = "invalid_backend_response"
    BACKEND_REJECTED = "backend_rejected"
    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"


# =============================================================================
# Custom Exceptions
# =============================================================================

class MediaPipelineError(Exception):
    """Base exception for the media pipeline."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.INTERNAL,
        reason: Optional[Enum] = None,
        stage: Optional[str] = None,
        user_message: Optional[str] = None,
        status: Optional[str] = None,
        code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.kind = kind
        self.reason = reason
        self.stage = stage
        self.user_message = user_message or DEFAULT_USER_MESSAGES[kind]
        default_status, default_code = KIND_STATUS[kind]
        self.status = status or default_status
        self.code = code or default_code
        self.request_id = request_id_var.get()
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.user_message,
            "code": self.status,
            "kind": self.kind.value,
            "reason": self.reason.value if self.reason else None,
            "stage": self.stage,
            "request_id": self.request_id,
        }


class InvalidRequestError(MediaPipelineError):
    """Raised when the request payload has the wrong shape."""

    def __init__(self, message: str, user_message: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            kind=ErrorKind.INVALID_ARGUMENT,
            stage="request",
            user_message=user_message or message,
            **kwargs
        )


class UrlValidationError(MediaPipelineError):
    """Raised when a URL is rejected before any network I/O."""

    USER_MESSAGES = {
        UrlRejection.EMPTY: "Please provide a valid image URL.",
        UrlRejection.MALFORMED_URL: (
            "Invalid URL format. Please provide a complete URL "
            "starting with http:// or https://"
        ),
        UrlRejection.NOT_IMAGE_LIKE: (
            "URL does not appear to be an image. Please ensure the URL points "
            "to a JPG, PNG, WebP, GIF, or other image file."
        ),
    }

    def __init__(self, message: str, reason: UrlRejection, **kwargs):
        super().__init__(
            message,
            kind=ErrorKind.INVALID_ARGUMENT,
            reason=reason,
            stage="validate",
            user_message=self.USER_MESSAGES[reason],
            **kwargs
        )


class FetchError(MediaPipelineError):
    """Raised when the source image cannot be downloaded."""

    KINDS = {
        FetchFailure.UNREACHABLE: ErrorKind.UNREACHABLE,
        FetchFailure.NOT_FOUND: ErrorKind.NOT_FOUND,
        FetchFailure.FORBIDDEN: ErrorKind.ACCESS_DENIED,
        FetchFailure.TIMEOUT: ErrorKind.TIMEOUT,
        FetchFailure.TOO_LARGE: ErrorKind.TIMEOUT,
        FetchFailure.OTHER_HTTP_STATUS: ErrorKind.UNREACHABLE,
        FetchFailure.TRANSPORT_ERROR: ErrorKind.INTERNAL,
    }

    def __init__(
        self,
        message: str,
        reason: FetchFailure,
        http_status: Optional[int] = None,
        **kwargs
    ):
        overrides: Dict[str, Any] = {}
        if reason == FetchFailure.TOO_LARGE:
            overrides = {
                "status": "invalid-argument",
                "code": 413,
                "user_message": "Image is too large. Please use an image smaller than 10MB.",
            }
        elif reason == FetchFailure.OTHER_HTTP_STATUS:
            overrides = {
                "user_message": (
                    f"The image URL returned an unexpected response (HTTP {http_status}). "
                    "Please check the URL and try again."
                ),
            }
        super().__init__(
            message,
            kind=self.KINDS[reason],
            reason=reason,
            stage="fetch",
            **overrides,
            **kwargs
        )
        self.http_status = http_status
        self.details["http_status"] = http_status


class VerificationError(MediaPipelineError):
    """Raised when fetched bytes are not an acceptable image."""

    def __init__(self, message: str, reason: VerificationFailure, **kwargs):
        if reason == VerificationFailure.TOO_LARGE:
            kwargs.setdefault(
                "user_message",
                "Image is too large. Maximum dimensions are 5000x5000 pixels."
            )
        super().__init__(
            message,
            kind=ErrorKind.UNSUPPORTED_FORMAT,
            reason=reason,
            stage="verify",
            **kwargs
        )


class TranscodeError(MediaPipelineError):
    """Raised when the encoder cannot produce output."""

    def __init__(self, message: str, reason: TranscodeFailure = TranscodeFailure.ENCODE_FAILURE, **kwargs):
        super().__init__(
            message,
            kind=ErrorKind.INTERNAL,
            reason=reason,
            stage="transcode",
            **kwargs
        )


class UploadError(MediaPipelineError):
    """Raised when the storage backend refuses or fails an upload."""

    def __init__(self, message: str, reason: UploadFailure, **kwargs):
        if reason == UploadFailure.TIMEOUT:
            kind = ErrorKind.TIMEOUT
            kwargs.setdefault(
                "user_message",
                "Request timeout. Uploading the image to storage took too long. Please try again."
            )
        else:
            kind = ErrorKind.UPSTREAM_FAILURE
        super().__init__(
            message,
            kind=kind,
            reason=reason,
            stage="upload",
            **kwargs
        )


class AdminAccessError(MediaPipelineError):
    """Raised when a caller is not the authenticated admin."""

    def __init__(self, message: str, authenticated: bool):
        if authenticated:
            status, code, user_message = (
                "permission-denied", 403, "Only admins can manage product images."
            )
        else:
            status, code, user_message = (
                "unauthenticated", 401, "Authentication is required to manage product images."
            )
        super().__init__(
            message,
            kind=ErrorKind.ACCESS_DENIED,
            stage="auth",
            user_message=user_message,
            status=status,
            code=code
        )


class StorageError(Exception):
    """Raised by storage backends for failed delete calls."""


# =============================================================================
# Exception Handlers
# =============================================================================

def _timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(MediaPipelineError)
    async def media_pipeline_exception_handler(request: Request, exc: MediaPipelineError):
        logger.warning(
            "media_pipeline_error",
            error=exc.message,
            kind=exc.kind.value,
            reason=exc.reason.value if exc.reason else None,
            stage=exc.stage,
            details=exc.details
        )

        content = exc.to_dict()
        content["timestamp"] = _timestamp()
        return JSONResponse(status_code=exc.code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning("request_validation_failed", path=str(request.url.path), errors=str(exc.errors()))

        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid request payload.",
                "code": "invalid-argument",
                "kind": ErrorKind.INVALID_ARGUMENT.value,
                "request_id": request_id_var.get(),
                "timestamp": _timestamp()
            }
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
                "error": DEFAULT_USER_MESSAGES[ErrorKind.INTERNAL],
                "code": "internal",
                "kind": ErrorKind.INTERNAL.value,
                "request_id": request_id_var.get(),
                "timestamp": _timestamp()
            }
        )
