"""Pydantic models for alert rules and the alerts they raise."""

from __future__ import annotations

from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from ..exceptions import ConfigError
from .expression import CheckSet
from .query import parse_function, parse_where
from .window import parse_day_range, parse_time_range


def _as_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        value = [value]
    if isinstance(value, list):
        return [str(v) if isinstance(v, (int, float)) else v for v in value]
    return value


def _clock(value: Any) -> Any:
    # YAML 1.1 loads an unquoted 10:00 as the base-60 integer 600
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value < 24 * 60:
        return f"{value // 60:02d}:{value % 60:02d}"
    return value


class RuleDescriptor(BaseModel):
    """One declarative alert rule, as written under a measurement."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    check: list[str]
    text: str | list[str] = ""
    name: str | None = None
    time: list[str] = Field(default_factory=list)
    day: list[str] = Field(default_factory=list)
    start: str | None = None
    end: str | None = None
    func: list[str] = Field(default_factory=list)
    group: list[str] = Field(default_factory=list)
    where: list[str] = Field(default_factory=list)
    skip: bool = Field(default=False, alias="pass")
    value: str | None = None  # Designated value field for the alert payload

    _checks: CheckSet = PrivateAttr()

    @field_validator("check", "time", "day", "func", "group", "where", mode="before")
    @classmethod
    def _listify(cls, v: Any, info: ValidationInfo) -> Any:
        if info.field_name == "time":
            v = [_clock(item) for item in v] if isinstance(v, list) else _clock(v)
        return _as_list(v)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        return None if v is None else str(v)

    @model_validator(mode="after")
    def _compile(self) -> "RuleDescriptor":
        try:
            self._checks = CheckSet(self.check)
            for item in self.func:
                parse_function(item)
            for item in self.where:
                parse_where(item)
            for item in self.day:
                parse_day_range(item)
            for item in self.time:
                parse_time_range(item)
        except ConfigError as e:
            raise ValueError(str(e)) from e
        if isinstance(self.text, list) and len(self.text) != len(self.check):
            raise ValueError(
                f"text has {len(self.text)} entries but check has {len(self.check)}"
            )
        return self

    @classmethod
    def from_mapping(cls, data: Any, location: str = "") -> "RuleDescriptor":
        """Validate a raw rule mapping, raising ConfigError on any problem."""
        if not isinstance(data, dict):
            raise ConfigError(f"rule must be a mapping, got {type(data).__name__}", location)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'rule'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigError(problems, location) from None

    @property
    def checks(self) -> CheckSet:
        return self._checks

    def text_for(self, index: int) -> str:
        """Alert text for the check branch that matched."""
        if isinstance(self.text, list):
            return self.text[index]
        return self.text

    @property
    def label(self) -> str:
        return self.name or self.text_for(0) or self.check[0]


class AlertEvent(BaseModel):
    database: str
    measurement: str
    ql: str
    text: str
    row: dict[str, Any] | None = None
    value: Any = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "database": self.database,
            "measurement": self.measurement,
            "ql": self.ql,
            "text": self.text,
        }
        if self.row is not None:
            payload["row"] = self.row
        else:
            payload["value"] = self.value
        return payload
