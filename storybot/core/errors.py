"""Error taxonomy for the clustering pipeline.

- RateLimitedError: upstream quota exhausted; aborts the current stage and is
  caught once by the orchestrator.
- UpstreamError: any other failure of an external call; handled per item.
- MalformedResponseError: the upstream answered but not with usable JSON.
"""

from typing import Any, Optional


RATE_LIMIT_MESSAGES = (
    "rate_limit_exceeded",
    "429",
    "rate limit reached",
    "spend_limit_reached",
    "spend limit",
)

RATE_LIMIT_CODES = ("rate_limit_exceeded", "spend_limit_reached")


class ClusterError(Exception):
    """Base class for clustering pipeline errors."""
    pass


class RateLimitedError(ClusterError):
    """Upstream rate or spend limit reached."""

    def __init__(self, message: str = "RATE_LIMIT_EXCEEDED", op_name: Optional[str] = None):
        super().__init__(message)
        self.op_name = op_name


class UpstreamError(ClusterError):
    """Non rate-limit failure of an external call."""

    def __init__(self, message: str, op_name: Optional[str] = None,
                 status: Any = None, code: Any = None):
        super().__init__(message)
        self.op_name = op_name
        self.status = status
        self.code = code


class MalformedResponseError(ClusterError):
    """External call returned non-JSON or schema-invalid output."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


def _error_code(error: BaseException) -> Any:
    code = getattr(error, "code", None)
    if code:
        return code
    # openai-style errors carry the vendor payload in .body / .error
    for attr in ("body", "error"):
        payload = getattr(error, attr, None)
        if isinstance(payload, dict):
            inner = payload.get("error", payload)
            if isinstance(inner, dict) and inner.get("code"):
                return inner["code"]
    return None


def is_rate_limit_error(error: Optional[BaseException]) -> bool:
    """
    Classify an exception as a rate/spend limit failure.

    Inspects the message, HTTP status and vendor error code.
    """
    if error is None:
        return False
    if isinstance(error, RateLimitedError):
        return True
    if isinstance(error, UpstreamError):
        # Already classified as non rate-limit by the client
        return False

    message = str(error).lower()
    if any(pattern in message for pattern in RATE_LIMIT_MESSAGES):
        return True

    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    if status == 429 or status == "429":
        return True

    code = _error_code(error)
    return code in RATE_LIMIT_CODES or code == 429


def error_code(error: BaseException) -> Any:
    """Vendor error code carried by an exception, if any."""
    if isinstance(error, UpstreamError) and error.code:
        return error.code
    return _error_code(error)
