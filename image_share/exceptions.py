"""
    Exception hierarchy shared by the services, the worker and the FastAPI host.
"""
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
import logging

log = logging.getLogger(__name__)

class APIException(Exception):
    """Base class for API exceptions."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)

class ImageNotFoundException(APIException):
    """Exception for when an image is not found."""
    def __init__(self, image_id: str):
        super().__init__(status_code=404, detail=f"Image with ID '{image_id}' not found.")

class InvalidImageException(APIException):
    """Exception for invalid image files."""
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class DynamoDBException(APIException):
    """Exception for DynamoDB failures."""
    def __init__(self, detail: str):
        super().__init__(status_code=500, detail=detail)

class FileStorageException(APIException):
    """Exception for failures reading or writing files under the media root."""
    def __init__(self, detail: str):
        super().__init__(status_code=500, detail=detail)

class MessageBusException(APIException):
    """Raised when the message bus is used before it is connected."""
    def __init__(self, detail: str):
        super().__init__(status_code=503, detail=detail)

class ShareRequestNotFoundException(APIException):
    def __init__(self, share_request_id: str):
        super().__init__(status_code=404, detail=f"Share request with ID '{share_request_id}' not found.")

class InvalidShareRequestException(APIException):
    """A share request that can never be valid, e.g. sharing with yourself."""
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class InvalidShareStateException(APIException):
    """Transition attempted on a share request that is no longer pending."""
    def __init__(self, share_request_id: str, status: str):
        super().__init__(
            status_code=409,
            detail=f"Share request '{share_request_id}' is {status}; only pending requests can be processed.",
        )

class ShareRequestExpiredException(APIException):
    def __init__(self, share_request_id: str):
        super().__init__(status_code=410, detail=f"Share request '{share_request_id}' has expired.")

class DuplicateShareRequestException(APIException):
    def __init__(self, image_id: str):
        super().__init__(status_code=409, detail=f"A share request for image '{image_id}' already exists.")

class ShareForbiddenException(APIException):
    def __init__(self, detail: str):
        super().__init__(status_code=403, detail=detail)

async def api_exception_handler(request: Request, exc: APIException):
    """Handles API exceptions."""
    log.error("API Exception: %s", exc.detail, exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def http_exception_handler(request: Request, exc: HTTPException):
    """Handles FastAPI HTTP exceptions."""
    log.error("HTTP Exception: %s", exc.detail, exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def generic_exception_handler(request: Request, exc: Exception):
    """Handles all other exceptions."""
    log.error("Unhandled Exception: %s", exc, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred."},
    )

def add_exception_handlers(app):
    """Adds exception handlers to the FastAPI app."""
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
