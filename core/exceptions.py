"""
异常到 HTTP 的映射与全局异常处理器

网关核心本身不提供路由，这里只负责把异常体系翻译成边界层的 HTTP 响应：
配置错误 500，校验错误 422，网络错误 502，安全错误 401（限流 429）。
"""
import traceback
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status as http_status

from .response import error_response
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    ConfigurationError,
    NetworkError,
    RateLimitExceededError,
    SecurityError,
    ValidationError,
)


logger = get_logger(__name__)


def exception_to_http_status(exc: BusinessException) -> int:
    """根据异常类型映射HTTP状态码（默认400）"""
    if isinstance(exc, ConfigurationError):
        return http_status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, ValidationError):
        return http_status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, NetworkError):
        return http_status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, RateLimitExceededError):
        return http_status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(exc, SecurityError):
        return http_status.HTTP_401_UNAUTHORIZED

    mapping = {
        BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
        BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
        BusinessCode.CONFLICT: http_status.HTTP_409_CONFLICT,
        BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
        BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,
        BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
        BusinessCode.TOO_MANY_REQUESTS: http_status.HTTP_429_TOO_MANY_REQUESTS,
        PaymentCode.PAYMENT_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
        PaymentCode.REFUND_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
        PaymentCode.PAYMENT_ALREADY_EXISTS: http_status.HTTP_409_CONFLICT,
        PaymentCode.INVALID_STATE_TRANSITION: http_status.HTTP_409_CONFLICT,
    }
    return mapping.get(exc.code, http_status.HTTP_400_BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """处理业务异常（含支付网关异常）"""
        request_id = _request_id(request)
        status_code = exception_to_http_status(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "business_exception",
            request_id=request_id,
            error_type=exc.error_type,
            code=int(exc.code),
            message=exc.message,
            details=exc.details,
        )
        response = error_response(
            code=exc.code,
            message=exc.message,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
        )
        headers = None
        if status_code == http_status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Signature"}
        elif status_code == http_status.HTTP_429_TOO_MANY_REQUESTS and exc.details:
            window = exc.details.get("window_minutes")
            if window:
                headers = {"Retry-After": str(int(window) * 60)}
        return JSONResponse(status_code=status_code, content=response.model_dump(mode='json'), headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常"""
        request_id = _request_id(request)

        # 在开发环境可以返回详细错误信息
        details = None
        if app.debug:
            details = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }

        response = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message="Internal server error",
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )

        logger.error(
            "unhandled_exception",
            request_id=request_id,
            error=str(exc),
            exc_info=True,
        )

        return JSONResponse(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode='json')
        )
