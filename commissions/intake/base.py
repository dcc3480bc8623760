"""
BaseIntakeParser — 所有请求体解析器的抽象基类。

每个新接口只需：
1. 继承 BaseIntakeParser
2. 实现 transform()（必要时 override validate()）
3. 在 factory.py 的 registry 注册一行

字段名同时接受 camelCase（前端）和 snake_case（脚本 / 内部调用）。
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from ..dates import business_tz, start_of_day
from ..exceptions import ValidationError


class BaseIntakeParser(ABC):
    """
    三步流水线：parse → transform → validate

    transform() 里的字段转换失败不会立即抛出，而是记到 self._errors，
    validate() 最后一次性返回全部错误。
    """

    # 子类声明自己对应的 kind 标识符（与 factory 注册键一致）
    kind: str = ""

    def __init__(self, raw_body: bytes | str | dict | None):
        self._raw_body = raw_body
        self._parsed: dict = {}
        self._errors: list[dict] = []

    # ── 必须实现 ───────────────────────────────────────────────────────────

    @abstractmethod
    def transform(self) -> Any:
        """将 self._parsed 转换为 intake dataclass。"""

    # ── 提供默认实现，子类可 override ──────────────────────────────────────

    def parse(self) -> dict:
        raw = self._raw_body
        if raw in (None, b"", ""):
            raw = {}
        elif isinstance(raw, (bytes, str)):
            try:
                raw = json.loads(raw)
            except ValueError:
                raise ValidationError(message="Request body is not valid JSON.", code="INVALID_JSON")
        if not isinstance(raw, dict):
            if hasattr(raw, "dict"):
                raw = raw.dict()
            else:
                raise ValidationError(message="Request body must be a JSON object.", code="INVALID_BODY")
        self._parsed = raw
        return raw

    def validate(self, intake) -> None:
        """子类 super() 之前追加自己的检查（self.error(...)）。"""
        if self._errors:
            raise ValidationError(
                message="Request validation failed.",
                code="VALIDATION_ERROR",
                detail={"errors": self._errors},
            )

    # ── 对外统一入口 ───────────────────────────────────────────────────────

    def process(self):
        """parse → transform → validate，返回校验通过的 intake 对象。"""
        self.parse()
        intake = self.transform()
        self.validate(intake)
        return intake

    # ── 字段工具 ───────────────────────────────────────────────────────────

    def error(self, field: str, message: str) -> None:
        self._errors.append({"field": field, "message": message})

    def pick(self, *keys, source: dict | None = None, default=None):
        source = self._parsed if source is None else source
        for key in keys:
            if key in source and source[key] not in (None, ""):
                return source[key]
        return default

    def as_uuid(self, value, field: str, required: bool = False) -> uuid.UUID | None:
        if value in (None, ""):
            if required:
                self.error(field, "This field is required.")
            return None
        try:
            return uuid.UUID(str(value))
        except ValueError:
            self.error(field, f"Invalid id: {value!r}.")
            return None

    def as_date(self, value, field: str, required: bool = False):
        if value in (None, ""):
            if required:
                self.error(field, "This field is required.")
            return None
        try:
            parsed = parse_date(str(value).strip()[:10])
        except ValueError:
            parsed = None
        if parsed is None:
            self.error(field, "Expected a date in YYYY-MM-DD format.")
        return parsed

    def as_datetime(self, value, field: str, required: bool = False) -> datetime | None:
        """ISO datetime; a bare date means the start of that business day."""
        if value in (None, ""):
            if required:
                self.error(field, "This field is required.")
            return None
        text = str(value).strip()
        try:
            parsed = parse_datetime(text)
        except ValueError:
            parsed = None
        if parsed is None:
            try:
                day = parse_date(text)
            except ValueError:
                day = None
            if day is None:
                self.error(field, "Expected an ISO 8601 date or datetime.")
                return None
            return start_of_day(day)
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed, business_tz())
        return parsed

    def as_int(self, value, field: str, required: bool = False, default=None) -> int | None:
        if value in (None, ""):
            if required:
                self.error(field, "This field is required.")
            return default
        if isinstance(value, bool):
            self.error(field, "Expected an integer.")
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            self.error(field, "Expected an integer.")
            return default

    @staticmethod
    def as_bool(value) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes")
        return bool(value)

    def as_choice(self, value, field: str, choices) -> str:
        value = (value or "").strip() if isinstance(value, str) else value
        if value not in choices:
            self.error(field, f"Must be one of: {', '.join(choices)}.")
        return value or ""

    def as_text(self, value) -> str:
        return str(value).strip() if value is not None else ""
