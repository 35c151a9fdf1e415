"""
数据访问层异常与统一错误响应模型

异常层级：
- RepositoryError: 所有数据访问异常的基类（携带错误码）
  - NotFoundError: 记录不存在（"record not found" 哨兵）
  - ConflictError: 唯一性冲突（slug、名称重复等）
  - InvalidOperationError: 不允许的操作（如把分类移动到自己的子树下）
  - DatabaseError: 包装底层 SQLAlchemy 异常，附带上下文信息

上层（服务层 / API 层）通过 format_error_response 把异常转换为统一的响应结构。
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field
import traceback
import structlog

from sitecms.config.settings import settings

logger = structlog.get_logger()


class ErrorCode(str, Enum):
    """
    错误码枚举

    用于标识不同类型的错误，方便调用方根据错误码做差异化处理。
    """
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INVALID_OPERATION = "INVALID_OPERATION"

    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


# ============================================================
# 异常层级
# ============================================================

class RepositoryError(Exception):
    """数据访问异常基类"""

    code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(RepositoryError):
    """记录不存在"""

    code = ErrorCode.NOT_FOUND

    def __init__(
        self,
        model: Optional[str] = None,
        id_value: Any = None,
        message: str = "record not found",
    ):
        details: dict[str, Any] = {}
        if model:
            details["model"] = model
        if id_value is not None:
            details["id"] = str(id_value)
        super().__init__(message, details)
        self.model = model
        self.id_value = id_value


class ConflictError(RepositoryError):
    """唯一性冲突"""

    code = ErrorCode.CONFLICT


class InvalidOperationError(RepositoryError):
    """业务上不允许的数据操作"""

    code = ErrorCode.INVALID_OPERATION


class DatabaseError(RepositoryError):
    """
    数据库异常

    包装 SQLAlchemy 异常，message 描述失败的操作，原始异常通过 __cause__ 保留：

        raise DatabaseError("failed to set current event") from exc
    """

    code = ErrorCode.DATABASE_ERROR

    def __str__(self) -> str:
        if self.__cause__ is not None:
            return f"{self.message}: {self.__cause__}"
        return self.message


# ============================================================
# 统一错误响应
# ============================================================

class DebugInfo(BaseModel):
    """调试信息（仅开发环境）"""
    exception_type: str = Field(..., description="异常类型")
    traceback: str = Field(..., description="完整堆栈跟踪")


class ErrorDetail(BaseModel):
    """错误详情"""
    code: ErrorCode = Field(..., description="错误码")
    message: str = Field(..., description="错误描述")
    details: Optional[dict[str, Any]] = Field(None, description="业务相关详情（可选）")
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="错误发生时间（UTC）",
    )
    debug_info: Optional[DebugInfo] = Field(None, description="调试信息（仅开发环境）")


class ErrorResponse(BaseModel):
    """错误响应包装器"""
    error: ErrorDetail = Field(..., description="错误详情")


def format_error_response(
    exception: Exception,
    include_debug: Optional[bool] = None,
) -> ErrorResponse:
    """
    把异常格式化为统一错误响应

    RepositoryError 使用自身的错误码与详情；其他异常一律视为内部错误，
    消息经过 sanitize_error_message 处理。

    Args:
        exception: 异常对象
        include_debug: 是否包含调试信息（默认根据环境决定）

    Returns:
        ErrorResponse: 格式化的错误响应
    """
    if include_debug is None:
        include_debug = settings.DEBUG or settings.ENVIRONMENT == "development"

    if isinstance(exception, RepositoryError):
        code = exception.code
        message = sanitize_error_message(str(exception), exception)
        details = exception.details or None
    else:
        code = ErrorCode.INTERNAL_SERVER_ERROR
        message = sanitize_error_message(str(exception), exception)
        details = None

    error_detail = ErrorDetail(code=code, message=message, details=details)

    if include_debug:
        error_detail.debug_info = DebugInfo(
            exception_type=type(exception).__name__,
            traceback="".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            ),
        )

    return ErrorResponse(error=error_detail)


def sanitize_error_message(message: str, exception: Optional[Exception] = None) -> str:
    """
    清理错误消息，移除敏感信息

    生产环境下，如果消息中出现连接串、密码等关键字，返回通用消息。

    Args:
        message: 原始错误消息
        exception: 异常对象（可选）

    Returns:
        str: 清理后的错误消息
    """
    sensitive_patterns = [
        "password",
        "secret",
        "token",
        "postgresql://",
        "postgresql+asyncpg://",
        "DATABASE_URL",
    ]

    if settings.ENVIRONMENT == "production":
        lower_message = message.lower()
        for pattern in sensitive_patterns:
            if pattern.lower() in lower_message:
                logger.warning(
                    "sensitive_info_detected_in_error_message",
                    pattern=pattern,
                    exception_type=type(exception).__name__ if exception else None,
                )
                return "An internal error occurred. Please contact support."

    return message
