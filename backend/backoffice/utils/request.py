"""Request utility functions."""

from fastapi import Request


def get_client_ip(request: Request) -> str:
    """
    Extract real client IP, respecting proxy headers.

    Checks X-Forwarded-For (first hop), then X-Real-IP, then the direct peer.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def request_metadata(request: Request) -> dict[str, str | None]:
    """Request context recorded with audit events."""
    return {
        "ip_address": get_client_ip(request),
        "user_agent": request.headers.get("User-Agent"),
        "request_id": getattr(request.state, "request_id", None),
    }
