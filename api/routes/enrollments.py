"""
报名API路由 - FastAPI表现层
"""
from typing import List

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_enrollment_service
from application.dtos.enrollments import CreateEnrollment, EnrollmentView, ReminderResult
from application.services.enrollment_service import EnrollmentApplicationService
from core.response import DataEnvelope, success_response


router = APIRouter(tags=["Enrollments"])


@router.post(
    "/enrollments",
    summary="创建报名",
    response_model=DataEnvelope[EnrollmentView],
    status_code=status.HTTP_201_CREATED,
)
async def create_enrollment(
    payload: CreateEnrollment,
    service: EnrollmentApplicationService = Depends(get_enrollment_service),
):
    """
    创建待支付报名

    - **courseId**: 课程ID（价格在此刻锁定）
    - **studentId** / **parentId**: 学员与家长
    - **contactEmail**: 通知邮件收件人（可选）
    """
    enrollment = await service.create_enrollment(payload)
    return success_response(data=enrollment)


@router.get(
    "/enrollments/reconciliation",
    summary="待对账报名列表",
    response_model=DataEnvelope[List[EnrollmentView]],
)
async def list_reconciliation(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    service: EnrollmentApplicationService = Depends(get_enrollment_service),
):
    flagged = await service.list_reconciliation(skip=skip, limit=limit)
    return success_response(data=flagged)


@router.get("/enrollments/{enrollment_id}", summary="获取报名详情", response_model=DataEnvelope[EnrollmentView])
async def get_enrollment(
    enrollment_id: str,
    service: EnrollmentApplicationService = Depends(get_enrollment_service),
):
    enrollment = await service.get_enrollment(enrollment_id)
    return success_response(data=enrollment)


@router.post(
    "/enrollments/{enrollment_id}/confirm",
    summary="确认报名",
    response_model=DataEnvelope[EnrollmentView],
)
async def confirm_enrollment(
    enrollment_id: str,
    service: EnrollmentApplicationService = Depends(get_enrollment_service),
):
    enrollment = await service.confirm(enrollment_id)
    return success_response(data=enrollment)


@router.post(
    "/enrollments/{enrollment_id}/cancel",
    summary="取消报名",
    response_model=DataEnvelope[EnrollmentView],
)
async def cancel_enrollment(
    enrollment_id: str,
    service: EnrollmentApplicationService = Depends(get_enrollment_service),
):
    enrollment = await service.cancel(enrollment_id)
    return success_response(data=enrollment)


@router.post(
    "/enrollments/{enrollment_id}/reconcile",
    summary="对账：补扣名额并清除标记",
    response_model=DataEnvelope[EnrollmentView],
)
async def reconcile_enrollment(
    enrollment_id: str,
    service: EnrollmentApplicationService = Depends(get_enrollment_service),
):
    enrollment = await service.reconcile(enrollment_id)
    return success_response(data=enrollment)


@router.post(
    "/courses/{course_id}/reminders",
    summary="发送开课提醒",
    response_model=DataEnvelope[ReminderResult],
    status_code=status.HTTP_202_ACCEPTED,
)
async def send_course_reminders(
    course_id: str,
    service: EnrollmentApplicationService = Depends(get_enrollment_service),
):
    result = await service.send_course_reminders(course_id)
    return success_response(data=result)
