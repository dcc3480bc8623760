"""
工厂函数：根据 kind 返回对应 Parser。

新增接口只需：
  1. 在 parsers.py 新建 Parser 类
  2. 在此处 registry 加一行
"""

from ..exceptions import ValidationError
from .base import BaseIntakeParser


def _build_registry() -> dict[str, type[BaseIntakeParser]]:
    # 延迟导入，避免循环依赖
    from .parsers import (
        FollowUpCompletionParser,
        FollowUpTaskParser,
        ManualAdjustmentParser,
        NominationConversionParser,
        NominationParser,
        NominationStatusParser,
        TargetParser,
        TargetUpdateParser,
        VisitParser,
        VisitSpecialityParser,
    )

    return {
        "visit":                 VisitParser,
        "visit_speciality":      VisitSpecialityParser,
        "follow_up_tasks":       FollowUpTaskParser,
        "follow_up_completion":  FollowUpCompletionParser,
        "target":                TargetParser,
        "target_update":         TargetUpdateParser,
        "manual_adjustment":     ManualAdjustmentParser,
        "nomination":            NominationParser,
        "nomination_status":     NominationStatusParser,
        "nomination_conversion": NominationConversionParser,
    }


def get_parser(kind: str, raw_body) -> BaseIntakeParser:
    """
    根据 kind 返回已实例化的 Parser。

    Args:
        kind:     请求类型，例如 "visit"、"target"
        raw_body: request.data（dict）或原始请求体（bytes / str）

    Raises:
        ValidationError: 未知的 kind
    """
    registry = _build_registry()
    parser_cls = registry.get(kind)

    if parser_cls is None:
        raise ValidationError(
            message=f"Unknown request kind: {kind!r}.",
            code="UNKNOWN_INTAKE",
            detail={"known_kinds": list(registry.keys())},
        )

    return parser_cls(raw_body=raw_body)


def parse_request(kind: str, raw_body):
    """get_parser(...).process() 的简写。"""
    return get_parser(kind, raw_body).process()
