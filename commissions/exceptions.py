"""
佣金系统的业务异常。

每个异常自带响应体需要的四个字段 + HTTP 状态码：

  type         validation_error  请求参数不合法（intake / 查询参数）        400
               not_found         员工、患者、就诊、任务、提名、目标不存在   404
               block             当前状态不允许：随访任务已关闭、
                                 提名状态不能回退、提名已转化             409
               warning           需要管理员确认：删除全部佣金              409
  code         机器可读的错误码，前端按它分支
  message      给人看的描述
  detail       可选，定位问题用的 id / 字段

Service 和 intake 只管 raise；exception_handler 调 ``to_dict()`` 生成响应。
"""


class BaseAppException(Exception):
    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status

    def to_dict(self) -> dict:
        body = {'type': self.type, 'code': self.code, 'message': self.message}
        if self.detail is not None:
            body['detail'] = self.detail
        return body


class ValidationError(BaseAppException):
    """400。字段级错误放在 detail['errors']，每项 {field, message}。"""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class NotFoundError(BaseAppException):
    type = 'not_found'
    code = 'NOT_FOUND'
    http_status = 404

    @classmethod
    def for_entity(cls, label, code, field, pk):
        """NotFoundError.for_entity('Employee', 'EMPLOYEE_NOT_FOUND', 'employee_id', pk)"""
        return cls(message=f'{label} not found', code=code, detail={field: str(pk)})


class BlockError(BaseAppException):
    type = 'block'
    code = 'BUSINESS_BLOCK'
    http_status = 409


class FollowUpTaskClosedError(BlockError):
    """Approved / rejected 的随访任务不能再次完成。"""

    code = 'FOLLOW_UP_TASK_CLOSED'

    def __init__(self, task):
        super().__init__(
            message=f'Follow-up task is already {task.status}',
            detail={'task_id': str(task.id), 'status': task.status},
        )


class InvalidTransitionError(BlockError):
    code = 'INVALID_STATUS_TRANSITION'

    def __init__(self, current, requested):
        super().__init__(
            message=f'Cannot move nomination from {current} to {requested}',
            detail={'from': current, 'to': requested},
        )


class WarningError(BaseAppException):
    """
    不是失败而是“等确认”：客户端展示 message，管理员确认后带
    confirm=true 重发同一个请求。
    """

    type = 'warning'
    code = 'CONFIRMATION_REQUIRED'
    http_status = 409
