"""
安全响应头中间件
策略由 SecurityGuard.security_headers() 提供，这里只负责写入响应
"""
from typing import Mapping, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from application.services.security_service import SecurityGuard


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    为每个响应添加安全头

    已由路由自行设置的同名响应头不会被覆盖
    """

    def __init__(self, app: ASGIApp, headers: Optional[Mapping[str, str]] = None):
        super().__init__(app)
        self.headers = dict(headers) if headers is not None else SecurityGuard.security_headers()

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        return response
