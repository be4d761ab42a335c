"""
统一响应格式定义
"""
from typing import Any, Generic, Optional, TypeVar
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


T = TypeVar("T")


class ErrorEnvelope(BaseModel):
    """错误响应：`{success: false, error, code, details, retryable, requestId}`"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = False
    error: str
    code: str
    details: Optional[dict] = None
    field: Optional[str] = None
    retryable: bool = False
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """序列化时间戳为 UTC ISO8601，统一使用 Z 结尾"""
        ts = timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        else:
            ts = ts.astimezone(timezone.utc)
        return ts.isoformat().replace("+00:00", "Z")


class DataEnvelope(BaseModel, Generic[T]):
    """成功响应（非支付接口）：`{success: true, data}`"""

    success: bool = True
    data: Optional[T] = None


def success_response(data: Any = None) -> DataEnvelope:
    """
    创建成功响应

    Args:
        data: 返回数据

    Returns:
        DataEnvelope: 统一响应对象
    """
    return DataEnvelope(data=data)


def error_response(
    message: str,
    code: str,
    details: Optional[dict] = None,
    field: Optional[str] = None,
    retryable: bool = False,
    request_id: Optional[str] = None,
) -> dict:
    """
    创建错误响应（已序列化为 camelCase JSON 字典）

    Args:
        message: 面向用户的错误消息
        code: 网关响应码或错误类型
        details: 错误详情
        field: 错误字段
        retryable: 客户端是否可以原样重试
        request_id: 请求ID

    Returns:
        dict: 可直接交给 JSONResponse 的内容
    """
    envelope = ErrorEnvelope(
        error=message,
        code=code,
        details=details,
        field=field,
        retryable=retryable,
        request_id=request_id,
    )
    return envelope.model_dump(mode="json", by_alias=True)
