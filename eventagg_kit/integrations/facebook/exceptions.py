from __future__ import annotations
import logging
from typing import Optional
import httpx
logger = logging.getLogger("facebook.exceptions")
class FacebookError(Exception):
    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(message)
    def __str__(self) -> str:
        if self.details and self.details != self.message:
            return f"{self.message}\n{self.details}"
        return self.message
class FacebookAPIError(FacebookError):
    CODE_INVALID_PARAMS = 100
    CODE_PERMISSION_DENIED = 10
    CODE_AUTH_EXPIRED = 190
    CODE_RATE_LIMIT_1 = 4
    CODE_RATE_LIMIT_2 = 17
    CODE_RATE_LIMIT_3 = 32
    CODE_RATE_LIMIT_HTTP = 429
    RATE_LIMIT_CODES = {CODE_RATE_LIMIT_1, CODE_RATE_LIMIT_2, CODE_RATE_LIMIT_3, CODE_RATE_LIMIT_HTTP}
    def __init__(
        self,
        code: int,
        message: str,
        status: int = 0,
        error_type: str = "",
        error_subcode: Optional[int] = None,
        fbtrace_id: Optional[str] = None,
    ):
        self.code = code
        self.status = status
        self.error_type = error_type
        self.error_subcode = error_subcode
        self.fbtrace_id = fbtrace_id
        super().__init__(f"Facebook API error ({code}): {message}")
    @property
    def is_rate_limit(self) -> bool:
        return self.code in self.RATE_LIMIT_CODES
    @property
    def is_auth_error(self) -> bool:
        return self.code == self.CODE_AUTH_EXPIRED
    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status <= 599
    @property
    def is_retryable(self) -> bool:
        return self.is_rate_limit or self.is_server_error
class FacebookAuthError(FacebookError):
    def __init__(self, message: str = "Facebook token invalid or missing"):
        super().__init__(message)
class FacebookValidationError(FacebookError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error for '{field}': {message}")
class FacebookTimeoutError(FacebookError):
    def __init__(self, timeout: float):
        super().__init__(f"Request timed out after {timeout} seconds")
async def parse_api_error(response: httpx.Response) -> FacebookAPIError:
    try:
        error_data = response.json()
        if isinstance(error_data, dict) and "error" in error_data:
            err = error_data["error"]
            return FacebookAPIError(
                code=err.get("code", response.status_code),
                message=err.get("message", "Unknown error"),
                status=response.status_code,
                error_type=err.get("type", ""),
                error_subcode=err.get("error_subcode"),
                fbtrace_id=err.get("fbtrace_id"),
            )
        return FacebookAPIError(
            code=response.status_code,
            message=f"HTTP {response.status_code}: {response.text[:500]}",
            status=response.status_code,
        )
    except ValueError as e:
        logger.warning("Error parsing FB API error response: %s", e)
        return FacebookAPIError(
            code=response.status_code,
            message=f"HTTP {response.status_code}: {response.text[:500]}",
            status=response.status_code,
        )
