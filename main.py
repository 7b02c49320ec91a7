"""
FastAPI应用主入口

网关核心不提供支付路由；这里只装配中间件、异常处理器与共享组件
（KeyValueStore、GatewayRegistry、SecurityGuard、PaymentOrchestrator），
供宿主应用在 app.state 上取用。
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from api.middleware import RequestIDMiddleware, SecurityHeadersMiddleware
from application.ports.cache import KeyValueStore
from application.services.payment_service import PaymentOrchestrator
from application.services.security_service import SecurityGuard
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import get_logger, configure_logging
from core.response import Response
from core.settings import PaymentSettings, payment_settings
from infrastructure.cache import InMemoryCache, init_redis_cache, shutdown_redis_cache
from infrastructure.external.payments import GatewayRegistry


logger = get_logger(__name__)


def create_app(
    *,
    payments: PaymentSettings = payment_settings,
    store: Optional[KeyValueStore] = None,
    registry: Optional[GatewayRegistry] = None,
) -> FastAPI:
    """创建应用实例；测试可注入 store 与 registry"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        kv = store
        if kv is None and settings.redis.url:
            kv = await init_redis_cache()
            logger.info("redis_cache_initialized")
        if kv is None:
            # 单进程开发模式；多 worker 部署时限流计数不共享
            kv = InMemoryCache()
            logger.warning("payment_store_in_memory", message="REDIS__URL not set, using per-process store")

        gateways = registry or GatewayRegistry(payments)
        security = SecurityGuard(kv, payments)
        app.state.payment_registry = gateways
        app.state.security_guard = security
        app.state.payment_orchestrator = PaymentOrchestrator(gateways, security)
        logger.info("payment_gateways_available", providers=gateways.available_gateways())

        yield

        await gateways.aclose()
        if store is None and settings.redis.url:
            await shutdown_redis_cache()
            logger.info("redis_cache_shutdown")
        logger.info("application_shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    # 添加中间件（注意顺序：从下往上执行）
    app.add_middleware(SecurityHeadersMiddleware)
    # Request ID 中间件最先执行，为后续处理提供 request_id 与客户端IP
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """健康检查端点"""
        return Response(code=0, message="OK", data={"status": "healthy"})

    return app


if __name__ == "__main__":
    import uvicorn

    configure_logging()
    uvicorn.run(
        create_app(),
        host="0.0.0.0",
        port=8000,
        log_level="debug" if settings.DEBUG else "info",
    )
