"""
统一异常处理器。

挂到 DRF 的 EXCEPTION_HANDLER setting 上。
前端用同一套逻辑判断：
  response.type 存在  → 出问题了
  没有 type 字段       → 成功

统一错误响应格式：
{
    "type":    "validation_error" | "not_found" | "block" | "warning" | "auth_error" | "error",
    "code":    "EMPLOYEE_NOT_FOUND",
    "message": "Employee not found",
    "detail":  { ... }  // 可选
}
"""

import logging

from django.http import Http404, JsonResponse
from rest_framework.exceptions import (
    AuthenticationFailed,
    NotAuthenticated,
    PermissionDenied,
    ValidationError as DRFValidationError,
)
from rest_framework.views import exception_handler as drf_default_handler

from .exceptions import BaseAppException

logger = logging.getLogger(__name__)


def _body(type_, code, message, detail=None):
    body = {'type': type_, 'code': code, 'message': message}
    if detail is not None:
        body['detail'] = detail
    return body


def unified_exception_handler(exc, context):
    """
    DRF exception handler entry point.

    优先级：
    1. BaseAppException 及其子类 → 统一格式
    2. DRF 自带的 ValidationError → 转成统一格式
    3. 认证 / 权限失败 → 401 / 403
    4. 其他 DRF APIException → 交给 DRF 默认处理
    5. 未预期的异常 → 记日志，500
    """

    # --- 1. 我们自己的异常体系 ---
    if isinstance(exc, BaseAppException):
        return JsonResponse(exc.to_dict(), status=exc.http_status)

    # --- 2. DRF 自带的 ValidationError ---
    if isinstance(exc, DRFValidationError):
        return JsonResponse(
            _body('validation_error', 'VALIDATION_ERROR', 'Request validation failed', exc.detail),
            status=400,
        )

    # --- 3. 认证 / 权限 ---
    if isinstance(exc, (NotAuthenticated, AuthenticationFailed)):
        return JsonResponse(_body('auth_error', 'UNAUTHENTICATED', str(exc.detail)), status=401)

    if isinstance(exc, PermissionDenied):
        return JsonResponse(_body('auth_error', 'FORBIDDEN', str(exc.detail)), status=403)

    if isinstance(exc, Http404):
        return JsonResponse(_body('not_found', 'NOT_FOUND', str(exc) or 'Not found'), status=404)

    # --- 4. 其他的交给 DRF 默认处理 ---
    response = drf_default_handler(exc, context)
    if response is not None:
        return response

    # --- 5. 兜底 ---
    view = context.get('view') if context else None
    logger.exception("Unhandled error in %s", type(view).__name__ if view else 'unknown view')
    return JsonResponse(_body('error', 'INTERNAL_ERROR', str(exc) or 'Internal server error'), status=500)
