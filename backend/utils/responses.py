"""
JSON envelope shared by every /api endpoint: {"ok", "data", "error", "message"}
"""
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse


def success_response(data=None, message="OK", status=200):
    return JSONResponse(
        status_code=status,
        content={
            "ok": True,
            # Empty lists stay lists; only a missing payload becomes {}
            "data": {} if data is None else data,
            "error": None,
            "message": message,
        }
    )


def error_response(error_code, status=400, message="An error occurred", data=None):
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "data": {} if data is None else data,
            "error": error_code,
            "message": message,
        }
    )


def result_response(
    result: Dict[str, Any],
    key: Optional[str] = None,
    error_status: int = 400,
    status_for: Optional[Dict[str, int]] = None,
    message: str = "OK",
):
    """
    Turn a service result ({"data", "is_error": False} or {"error", "is_error": True})
    into the envelope.

    Args:
        result: Service result dict
        key: Wrap the success data as {key: data}
        error_status: Status for failures not listed in status_for
        status_for: Per-error-message status overrides
        message: Success message
    """
    if result.get("is_error"):
        error = result.get("error") or "Unknown error"
        status = (status_for or {}).get(error, error_status)
        return error_response(error, status=status, message=error)

    data = result.get("data")
    return success_response({key: data} if key else data, message=message)
