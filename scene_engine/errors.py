"""
Error taxonomy for the generation engine.

Every error carries an HTTP-like status code, a machine code and enough
context (provider, operation, original backend message/status) for the
logging layer to diagnose a failure without re-raising the original.
"""

import json
from typing import Any, Optional

import httpx


class AppError(Exception):
    def __init__(self, status_code: int, code: str, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


class ValidationError(AppError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(400, "VALIDATION_ERROR", message, details)


class NotFoundError(AppError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            404,
            f"{entity.upper()}_NOT_FOUND",
            f"{entity} with id '{entity_id}' not found",
        )


class FileError(AppError):
    def __init__(self, operation: str, path: str, original: Any):
        super().__init__(
            500,
            "FILE_ERROR",
            f"File {operation} failed for {path}: {error_message(original)}",
            {"operation": operation, "path": path},
        )


# ── Message / status extraction ──────────────────────────────────────────────

def _parse_json_error(text: str) -> Optional[dict]:
    text = text.strip()
    if not (text.startswith("{") and '"error"' in text):
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    err = parsed.get("error") if isinstance(parsed, dict) else None
    return err if isinstance(err, dict) else None


def error_message(err: Any) -> str:
    """Best-effort readable message from whatever a backend raised."""
    if err is None:
        return "Unknown error"
    if isinstance(err, str):
        return err or "Unknown error"
    if isinstance(err, dict):
        msg = err.get("message") or err.get("detail")
        return str(msg) if msg else "Unknown error"
    if isinstance(err, AppError):
        return err.message
    if isinstance(err, httpx.HTTPStatusError):
        body = err.response.text[:500]
        parsed = _parse_json_error(body)
        if parsed and parsed.get("message"):
            return str(parsed["message"])
        return f"HTTP {err.response.status_code}: {body}" if body else str(err)

    msg = str(err).strip()
    parsed = _parse_json_error(msg)
    if parsed and parsed.get("message"):
        return str(parsed["message"])
    return msg or type(err).__name__


def error_status(err: Any) -> Optional[int]:
    """HTTP-like status of a backend error, if one can be found."""
    if err is None:
        return None
    if isinstance(err, ProviderError):
        return err.details.get("original_status")
    if isinstance(err, httpx.HTTPStatusError):
        return err.response.status_code
    if isinstance(err, httpx.TimeoutException):
        return 408

    if isinstance(err, dict):
        candidates = [err.get("status"), err.get("code")]
    else:
        candidates = [
            getattr(err, "status", None),
            getattr(err, "status_code", None),
            getattr(err, "code", None),
        ]
    for n in candidates:
        if isinstance(n, bool):
            continue
        if isinstance(n, int):
            return n
        if isinstance(n, str) and n.isdigit():
            return int(n)

    parsed = None if isinstance(err, dict) else _parse_json_error(str(err))
    if parsed:
        code = parsed.get("code") or parsed.get("status")
        if isinstance(code, int):
            return code
        if code in ("UNAVAILABLE", "RESOURCE_EXHAUSTED"):
            return 503
    return None


# ── Provider errors ──────────────────────────────────────────────────────────

class ProviderError(AppError):
    """A backend call failed. Status is classified for the caller."""

    def __init__(self, provider: str, operation: str, original: Any):
        original_msg = error_message(original)
        status = error_status(original)
        lowered = original_msg.lower()

        if status == 429:
            status_code, code = 429, "AI_RATE_LIMIT"
        elif status == 451 or "safety" in lowered:
            status_code, code = 451, "AI_SAFETY_BLOCK"
        elif status == 408 or "timeout" in lowered or "timed out" in lowered:
            status_code, code = 408, "AI_TIMEOUT"
        elif status == 503:
            status_code, code = 503, "AI_SERVICE_UNAVAILABLE"
        elif status == 422:
            status_code, code = 422, "AI_EXTRACTION_ERROR"
        else:
            status_code, code = 502, "AI_PROVIDER_ERROR"

        super().__init__(
            status_code,
            code,
            f"{provider} {operation} failed: {original_msg}",
            {
                "provider": provider,
                "operation": operation,
                "original_message": original_msg,
                "original_status": status,
            },
        )
        self.provider = provider
        self.operation = operation


_POLICY_MARKERS = ("RECITATION", "COPYRIGHT", "SAFETY", "OTHER")


def is_policy_block(err: Any) -> bool:
    """True for image-generation refusals caused by safety or copyright policy."""
    if not isinstance(err, ProviderError):
        return False
    if err.operation != "image-generation":
        return False
    if err.details.get("original_status") == 451:
        return True
    text = f"{err.message} {err.details.get('original_message', '')}".upper()
    return any(marker in text for marker in _POLICY_MARKERS)
