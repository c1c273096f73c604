"""
Request ID 中间件

生成或透传 X-Request-ID，解析客户端真实IP，并绑定到 structlog 上下文。
转发头 (X-Forwarded-For / X-Real-IP) 只在直连方属于 TRUSTED_PROXIES 时采信，
否则任何人都能伪造来源地址绕过 webhook IP 白名单。
"""
import ipaddress
import uuid
from typing import Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

import structlog

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


def ip_matches(ip: Optional[str], entries: Iterable[str]) -> bool:
    """True if ``ip`` equals one of ``entries`` or falls in one of its CIDR blocks."""
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    for entry in entries:
        try:
            if "/" in entry:
                if addr in ipaddress.ip_network(entry, strict=False):
                    return True
            elif addr == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("ip_list_entry_invalid", entry=entry)
    return False


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    request.state 上放 request_id / client_ip，响应头回写 X-Request-ID。
    """

    HEADER_NAME = "X-Request-ID"

    def __init__(self, app: ASGIApp, trusted_proxies: Optional[list] = None):
        super().__init__(app)
        self.trusted_proxies = settings.TRUSTED_PROXIES if trusted_proxies is None else trusted_proxies

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = self._get_client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response

    def _get_client_ip(self, request: Request) -> str:
        peer = request.client.host if request.client else None
        if not ip_matches(peer, self.trusted_proxies):
            return peer or "unknown"

        # 经过可信代理：取最左侧的原始客户端IP
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.headers.get("X-Real-IP") or peer or "unknown"
