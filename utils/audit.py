import structlog
from flask import has_request_context, request

logger = structlog.get_logger("audit")


def client_ip() -> str:
    # forwarded headers are applied by ProxyFix only when TRUSTED_PROXY_COUNT > 0
    return request.remote_addr or "unknown"


def log_event(action: str, level: str = "info", **fields):
    """Security event line. Callers must never pass raw tokens, secrets or hashes."""
    if has_request_context():
        fields.setdefault("ip", client_ip())
        fields.setdefault("user_agent", (request.headers.get("User-Agent") or "")[:255] or None)
    getattr(logger, level)(action, **fields)
