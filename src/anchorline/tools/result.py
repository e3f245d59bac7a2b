"""Shared shaping of tool results."""

from anchorline.errors import AnchorlineError


def error_result(error: AnchorlineError) -> dict:
    """What a caller sees when an operation is refused."""
    result = {
        "status": "error",
        "error": type(error).__name__,
        "reason": str(error),
        "retryable": error.retryable,
    }
    if error.precondition:
        result["precondition"] = error.precondition
    return result
