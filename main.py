"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import RequestIDMiddleware, LoggingMiddleware
from api.routes import enrollments as enrollment_routes
from api.routes import payments as payments_routes
from application.ports.email_sender import EmailSender
from application.ports.payment_gateway import PaymentGateway
from application.services.enrollment_service import EnrollmentApplicationService
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.payment_orchestrator import PaymentOrchestrator
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


def create_app(
    *,
    gateway: Optional[PaymentGateway] = None,
    email_sender: Optional[EmailSender] = None,
    uow_factory: Optional[Callable[..., AbstractUnitOfWork]] = None,
) -> FastAPI:
    """
    创建应用

    Args:
        gateway: 支付网关（默认按配置构建 NMI 客户端）
        email_sender: 邮件发送器（默认 SendGrid）
        uow_factory: 工作单元工厂（默认 SQLAlchemy）
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理：构建并持有全部协作对象"""
        nonlocal gateway, email_sender, uow_factory

        if uow_factory is None:
            from infrastructure.database import create_tables
            from infrastructure.unit_of_work import sqlalchemy_uow_factory

            # 开发环境自动建表，生产使用迁移
            if settings.DEBUG:
                await create_tables()
                logger.info("database_initialized", message="Database tables created (development)")
            uow_factory = sqlalchemy_uow_factory()
        if gateway is None:
            from infrastructure.external.payments import get_payment_gateway
            gateway = get_payment_gateway()
        if email_sender is None:
            from infrastructure.external.email import get_email_sender
            email_sender = get_email_sender()

        email_cfg = payment_settings.email
        dispatcher = NotificationDispatcher(
            email_sender,
            support_email=email_cfg.support_email,
            website_url=email_cfg.website_url,
            max_attempts=email_cfg.max_attempts,
            backoff_base=email_cfg.backoff_base,
        )
        orchestrator = PaymentOrchestrator(
            uow_factory=uow_factory,
            gateway=gateway,
            notifier=dispatcher,
            tokenize_cards=payment_settings.gateway.tokenize_cards,
            auto_confirm=settings.enrollment.auto_confirm,
            attempt_lease_seconds=settings.enrollment.attempt_lease_seconds,
        )
        app.state.notification_dispatcher = dispatcher
        app.state.payment_orchestrator = orchestrator
        app.state.enrollment_service = EnrollmentApplicationService(uow_factory=uow_factory, notifier=dispatcher)
        logger.info("application_started", environment=settings.ENVIRONMENT)

        yield

        # 等待未完成的通知，再释放 HTTP 连接
        await dispatcher.drain(timeout=email_cfg.timeout * email_cfg.max_attempts)
        await orchestrator.aclose()
        close_sender = getattr(email_sender, "aclose", None)
        if callable(close_sender):
            await close_sender()
        logger.info("application_shutdown", message="Application shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="赛车学院报名支付服务",
    )

    # 添加中间件（注意顺序：从下往上执行）
    # 1. 日志中间件（依赖request_id）
    app.add_middleware(LoggingMiddleware)
    # 2. Request ID中间件（最先执行）
    app.add_middleware(RequestIDMiddleware)
    # 3. CORS中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(payments_routes.router, prefix="/api/v1")
    app.include_router(enrollment_routes.router, prefix="/api/v1")

    @app.get("/health", tags=["Health"])
    async def health_check():
        """健康检查端点"""
        return success_response(data={"status": "healthy"})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
