"""
In-memory fixed-window throttle for payment initiation.
Per process only; a multi-worker deployment needs a shared store.
"""
import time
from typing import Dict, Tuple

import structlog
from fastapi import Request, HTTPException

logger = structlog.get_logger(__name__)

# {(scope, client_ip): (window_start, count)}
_windows: Dict[Tuple[str, str], Tuple[float, int]] = {}


def reset_rate_limits() -> None:
    _windows.clear()


def rate_limit(scope: str, requests: int, window: int = 60):
    """FastAPI dependency limiting each client to ``requests`` per ``window`` seconds.

    Example: Depends(rate_limit("himkosh-initiate", requests=10))
    """
    def limiter(request: Request) -> None:
        ip = request.client.host if request.client else "unknown"
        key = (scope, ip)
        now = time.monotonic()

        expired = [k for k, (began, _) in _windows.items() if k[0] == scope and now - began > window]
        for k in expired:
            del _windows[k]

        start, count = _windows.get(key, (now, 0))
        if now - start > window:
            start, count = now, 0

        if count >= requests:
            retry_after = max(int(window - (now - start)), 1)
            logger.warning("rate_limit_exceeded", scope=scope, client=ip, retry_after=retry_after)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
                headers={"Retry-After": str(retry_after)},
            )

        _windows[key] = (start, count + 1)

    return limiter
