"""
llmbridge - Error Definitions

Error taxonomy with infra vs semantic classification.

- Infra errors: transport failures and vendor HTTP errors. Retryable
  depending on status code.
- Semantic errors: invalid calls, protocol violations in vendor streams,
  parse/validation failures. Never retried.

Unsupported settings are not errors; adapters report them as warnings.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    SEMANTIC = "semantic_error"


RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})


def is_retryable_status(status_code: int) -> bool:
    """408, 409, 429 and every 5xx are worth retrying."""
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


@dataclass
class ErrorDetails:
    """Full error information."""
    # Core fields (always present)
    code: str
    message: str
    type: ErrorType

    # Context fields
    provider: Optional[str] = None
    param: Optional[str] = None

    # Transport fields
    status_code: Optional[int] = None
    url: Optional[str] = None
    request_body: Any = None
    response_headers: Dict[str, str] = field(default_factory=dict)
    response_body: Optional[str] = None

    # Recovery fields
    retryable: bool = False
    retry_after: Optional[float] = None

    # Debug fields
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.param:
            result["param"] = self.param
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.url:
            result["url"] = self.url
        if self.response_body:
            result["response_body"] = self.response_body
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.details:
            result["details"] = self.details

        return {"error": result}


class LLMBridgeError(Exception):
    """Base exception for all llmbridge errors."""

    def __init__(self, error: ErrorDetails, cause: Optional[BaseException] = None):
        self.error = error
        self.cause = cause
        super().__init__(error.message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def retryable(self) -> bool:
        return self.error.retryable


# ============================================================
# Infra Errors
# ============================================================

class InfraError(LLMBridgeError):
    """Base class for transport-level errors."""
    pass


class ProviderError(InfraError):
    """Vendor API returned an error status."""

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str = "",
        url: str = "",
        request_body: Any = None,
        response_headers: Optional[Dict[str, str]] = None,
        response_body: Optional[str] = None,
        retryable: Optional[bool] = None,
        retry_after: Optional[float] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            ErrorDetails(
                code=f"provider_{status_code}",
                message=message or f"{provider} returned error {status_code}",
                type=ErrorType.INFRA,
                provider=provider,
                status_code=status_code,
                url=url or None,
                request_body=request_body,
                response_headers=dict(response_headers or {}),
                response_body=response_body,
                retryable=is_retryable_status(status_code) if retryable is None else retryable,
                retry_after=retry_after,
            ),
            cause=cause,
        )

    @property
    def status_code(self) -> int:
        return self.error.status_code or 0


class ConnectionFailedError(InfraError):
    """Could not reach the vendor, or the connection dropped."""

    def __init__(self, provider: str, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(
            ErrorDetails(
                code="connection_failed",
                message=message or f"failed to connect to {provider} API",
                type=ErrorType.INFRA,
                provider=provider,
                retryable=True,
            ),
            cause=cause,
        )


class RetryReason(str, Enum):
    MAX_RETRIES_EXCEEDED = "maxRetriesExceeded"
    ERROR_NOT_RETRYABLE = "errorNotRetryable"


class RetryError(InfraError):
    """Retries exhausted or stopped; carries every attempt's error."""

    def __init__(self, message: str, reason: RetryReason, errors: List[BaseException]):
        self.reason = reason
        self.errors = list(errors)
        super().__init__(
            ErrorDetails(
                code="retry_failed",
                message=message,
                type=ErrorType.INFRA,
                retryable=False,
                details={"reason": reason.value, "attempts": len(self.errors)},
            ),
            cause=self.errors[-1] if self.errors else None,
        )

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.errors[-1] if self.errors else None


# ============================================================
# Semantic Errors (Not Retryable)
# ============================================================

class SemanticError(LLMBridgeError):
    """Base class for errors the caller (or the vendor stream) must fix."""
    pass


class InvalidArgumentError(SemanticError):
    """A call argument is invalid."""

    def __init__(self, argument: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(
            ErrorDetails(
                code="invalid_argument",
                message=f"invalid argument for {argument}: {message}",
                type=ErrorType.SEMANTIC,
                param=argument,
            ),
            cause=cause,
        )


class InvalidPromptError(SemanticError):
    """The prompt cannot be expressed for this vendor."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(
            ErrorDetails(
                code="invalid_prompt",
                message=f"invalid prompt: {message}",
                type=ErrorType.SEMANTIC,
            ),
            cause=cause,
        )


class InvalidResponseDataError(SemanticError):
    """The vendor response body could not be interpreted."""

    def __init__(self, provider: str, message: str, data: Any = None,
                 cause: Optional[BaseException] = None):
        super().__init__(
            ErrorDetails(
                code="invalid_response_data",
                message=f"invalid response data from {provider}: {message}",
                type=ErrorType.SEMANTIC,
                provider=provider,
                details={"data": data} if data is not None else {},
            ),
            cause=cause,
        )


class StreamProtocolError(SemanticError):
    """Vendor stream violated the expected chunk shape. Fatal, never retried."""

    def __init__(self, provider: str, message: str, chunk: Any = None,
                 cause: Optional[BaseException] = None):
        super().__init__(
            ErrorDetails(
                code="stream_protocol_violation",
                message=f"{provider} stream protocol violation: {message}",
                type=ErrorType.SEMANTIC,
                provider=provider,
                details={"chunk": chunk} if chunk is not None else {},
            ),
            cause=cause,
        )


class UnsupportedFunctionalityError(SemanticError):
    """The requested functionality is not available for this vendor or model."""

    def __init__(self, functionality: str, message: str = ""):
        super().__init__(
            ErrorDetails(
                code="unsupported_functionality",
                message=message or f"{functionality} functionality not supported",
                type=ErrorType.SEMANTIC,
                details={"functionality": functionality},
            )
        )


class RegistryError(SemanticError):
    """Provider type registry misuse or unknown wire type."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(
            ErrorDetails(code="registry_error", message=message, type=ErrorType.SEMANTIC),
            cause=cause,
        )


class NoObjectGeneratedError(SemanticError):
    """
    Object generation produced nothing that parses and validates.

    Carries the raw text, the failure cause, usage so far and the finish
    reason for caller diagnostics.
    """

    def __init__(
        self,
        message: str = "no object generated",
        raw_text: str = "",
        cause: Optional[BaseException] = None,
        usage: Any = None,
        finish_reason: Any = None,
    ):
        self.raw_text = raw_text
        self.usage = usage
        self.finish_reason = finish_reason
        full = f"{message}: {cause}" if cause is not None else message
        super().__init__(
            ErrorDetails(
                code="no_object_generated",
                message=full,
                type=ErrorType.SEMANTIC,
                details={"raw_text": raw_text},
            ),
            cause=cause,
        )


# ============================================================
# Error Factory
# ============================================================

def _retry_after_seconds(headers: httpx.Headers) -> Optional[float]:
    """Parse retry-after-ms / retry-after headers (seconds or HTTP date ignored)."""
    ms = headers.get("retry-after-ms")
    if ms:
        try:
            return float(ms) / 1000.0
        except ValueError:
            pass
    value = headers.get("retry-after")
    if value:
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _extract_message(body: str) -> str:
    """Pull a human readable message out of common vendor error envelopes."""
    try:
        data = json.loads(body)
    except ValueError:
        return body[:500]
    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        return body[:500]
    error = data.get("error", data)
    if isinstance(error, dict):
        return str(error.get("message") or error.get("type") or body[:500])
    return str(error)


def create_error_from_response(
    provider: str,
    response: httpx.Response,
    request_body: Any = None,
) -> ProviderError:
    """Create a ProviderError from a vendor error response (body already read)."""
    body = response.text
    return ProviderError(
        provider=provider,
        status_code=response.status_code,
        message=f"{provider} API error ({response.status_code}): {_extract_message(body)}",
        url=str(response.request.url) if response.request is not None else "",
        request_body=request_body,
        response_headers=dict(response.headers),
        response_body=body,
        retry_after=_retry_after_seconds(response.headers),
    )


def handle_transport_error(provider: str, error: Exception) -> LLMBridgeError:
    """Convert httpx exceptions to canonical llmbridge errors."""
    if isinstance(error, LLMBridgeError):
        return error

    if isinstance(error, httpx.HTTPStatusError):
        return create_error_from_response(provider, error.response)

    if isinstance(error, httpx.TimeoutException):
        return ConnectionFailedError(provider, f"{provider} request timed out", cause=error)

    if isinstance(error, httpx.TransportError):
        return ConnectionFailedError(provider, f"{provider} connection error: {error}", cause=error)

    return LLMBridgeError(
        ErrorDetails(
            code="unknown_error",
            message=f"{provider} call failed: {error}",
            type=ErrorType.INFRA,
            provider=provider,
        ),
        cause=error,
    )
