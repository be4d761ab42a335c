"""
API依赖项 - 从应用状态中取出由 lifespan 构建的服务实例
"""
from fastapi import Request

from application.services.enrollment_service import EnrollmentApplicationService
from application.services.payment_orchestrator import PaymentOrchestrator


async def get_payment_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.payment_orchestrator


async def get_enrollment_service(request: Request) -> EnrollmentApplicationService:
    return request.app.state.enrollment_service
