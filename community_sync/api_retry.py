from __future__ import annotations

from .errors import RateLimited


def _extract_status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        val = getattr(exc, attr, None)
        if val is None:
            continue
        try:
            return int(val)
        except Exception:
            continue
    return None


def is_retryable_api_exception(exc: BaseException) -> tuple[bool, str | None]:
    """
    Upstream retry policy: only HTTP 429 is retried.

    Every other failure (other statuses, transport errors, application errors)
    is fatal for the current request.
    """
    if isinstance(exc, RateLimited):
        return True, "http_429"

    code = _extract_status_code(exc)
    if code is not None:
        return False, f"http_{code}"

    return False, None
