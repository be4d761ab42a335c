"""
自定义异常映射与全局异常处理器
"""
import traceback
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette import status as http_status

from .response import error_response
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException


_STATUS_BY_CODE = {
    BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_MISSING: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_TYPE_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,

    BusinessCode.BUSINESS_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.CONFLICT: http_status.HTTP_409_CONFLICT,
    BusinessCode.ENROLLMENT_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.COURSE_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.SEAT_UNAVAILABLE: http_status.HTTP_409_CONFLICT,
    BusinessCode.INVALID_TRANSITION: http_status.HTTP_409_CONFLICT,
    BusinessCode.PAYMENT_IN_PROGRESS: http_status.HTTP_409_CONFLICT,

    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.NETWORK_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,

    PaymentCode.GATEWAY_DECLINE: http_status.HTTP_402_PAYMENT_REQUIRED,
    PaymentCode.INVALID_CARD_NUMBER: http_status.HTTP_402_PAYMENT_REQUIRED,
    PaymentCode.INVALID_EXPIRY: http_status.HTTP_402_PAYMENT_REQUIRED,
    PaymentCode.GATEWAY_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.PROTOCOL_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.PERSISTENCE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    PaymentCode.RECONCILIATION_REQUIRED: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def business_code_to_http_status(code: int) -> int:
    """根据业务码映射HTTP状态码（未登记的业务码默认400）。"""
    return _STATUS_BY_CODE.get(code, http_status.HTTP_400_BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """处理业务异常"""
        content = error_response(
            message=exc.message,
            code=exc.public_code,
            details=exc.details,
            field=exc.field,
            retryable=exc.retryable,
            request_id=_request_id(request),
        )
        return JSONResponse(status_code=business_code_to_http_status(exc.code), content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理参数验证异常"""
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", [])[1:])
        # ctx 中可能携带异常对象，无法直接 JSON 序列化
        safe_errors = [
            {"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")}
            for e in errors
        ]
        content = error_response(
            message=f"Validation failed: {first_error.get('msg', 'unknown')}",
            code="ValidationError",
            details={"errors": safe_errors},
            field=field or None,
            request_id=_request_id(request),
        )
        return JSONResponse(status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY, content=content)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """处理HTTP异常"""
        content = error_response(
            message=str(exc.detail),
            code="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常"""
        request_id = _request_id(request)

        # 在开发环境可以返回详细错误信息
        details = None
        if app.debug:
            details = {
                "exception": str(exc),
                "traceback": traceback.format_exc(),
            }

        logger.error(
            "unhandled_exception",
            request_id=request_id,
            error=str(exc),
            exc_info=True,
        )

        content = error_response(
            message="Internal server error",
            code="SystemError",
            details=details,
            request_id=request_id,
        )
        return JSONResponse(status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)
