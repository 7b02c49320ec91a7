"""
请求追踪中间件
生成或透传 request_id，解析客户端IP，并为支付安全检查构造 RequestContext
"""
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from application.dtos.payments import RequestContext


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)


def _client_ip(request: Request) -> Optional[str]:
    # 代理链取第一个地址
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    request_id 与 client_ip 写入 request.state 与 structlog 上下文，
    响应头回传 X-Request-ID
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = _client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip
        request_id_var.set(request_id)
        client_ip_var.set(client_ip)

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


def get_request_context(request: Request, user_id: Optional[str] = None) -> RequestContext:
    """从请求构造限流/风控所需的调用方信息"""
    ip = getattr(request.state, "client_ip", None) or _client_ip(request)
    return RequestContext(
        ip=ip,
        user_agent=request.headers.get("User-Agent"),
        user_id=user_id,
    )


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    return client_ip_var.get()
