"""Retailer error taxonomy."""

from enum import Enum
from typing import Optional

import httpx


class ErrorType(str, Enum):
    """Kinds of retailer failures."""
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    AUTH = "AUTH"
    NETWORK = "NETWORK"
    SERVER_ERROR = "SERVER_ERROR"
    PARSING = "PARSING"


_RETRYABLE = {
    ErrorType.NOT_FOUND: False,
    ErrorType.RATE_LIMIT: True,
    ErrorType.AUTH: False,
    ErrorType.NETWORK: True,
    ErrorType.SERVER_ERROR: True,
    ErrorType.PARSING: False,
}


class RetailerError(Exception):
    """Failure talking to a retailer."""

    def __init__(
        self,
        message: str,
        retailer_id: str,
        error_type: ErrorType,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.retailer_id = retailer_id
        self.error_type = error_type
        self.status_code = status_code
        self.retryable = _RETRYABLE[error_type] if retryable is None else retryable

    def __str__(self) -> str:
        return f"[{self.retailer_id}] {self.error_type.value}: {self.message}"


class AcquisitionError(RetailerError):
    """Raised when every acquisition step for a URL has failed."""

    def __init__(self, message: str, retailer_id: str, error_type: ErrorType,
                 status_code: Optional[int] = None, step: str = "direct"):
        super().__init__(message, retailer_id, error_type, status_code)
        self.step = step


def classify_status(status_code: int, retailer_id: str, scraping: bool = False) -> RetailerError:
    """Map an HTTP error status to a RetailerError."""
    if status_code == 404:
        return RetailerError("Product not found", retailer_id, ErrorType.NOT_FOUND, 404)
    if status_code == 429:
        return RetailerError("Rate limit exceeded", retailer_id, ErrorType.RATE_LIMIT, 429)
    if status_code in (401, 403):
        message = "Access forbidden - possible bot detection" if scraping else "Authentication failed"
        return RetailerError(message, retailer_id, ErrorType.AUTH, status_code)
    return RetailerError(f"HTTP {status_code}", retailer_id, ErrorType.SERVER_ERROR, status_code)


def from_exception(exc: Exception, retailer_id: str, scraping: bool = False) -> RetailerError:
    """Map an arbitrary exception from a fetch to a RetailerError."""
    if isinstance(exc, RetailerError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code, retailer_id, scraping)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, TimeoutError)):
        return RetailerError(
            f"Network error: {exc.__class__.__name__}", retailer_id, ErrorType.NETWORK
        )
    return RetailerError(str(exc) or exc.__class__.__name__, retailer_id, ErrorType.SERVER_ERROR, 500)
