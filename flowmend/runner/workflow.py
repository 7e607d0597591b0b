"""Workflow submission models, validated before anything touches a browser."""

from __future__ import annotations

import math
from enum import Enum
from typing import Annotated, Any, TypeVar
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from flowmend.core.config import Settings
from flowmend.core.errors import WorkflowValidationError

MIN_WAIT_MS = 200
MAX_WAIT_MS = 30_000
DEFAULT_WAIT_MS = 2_000

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class ActionType(str, Enum):
    GOTO = "goto"
    CLICK = "click"
    TYPE = "type"
    EXTRACT = "extract"
    WAIT = "wait"


def is_http_url(text: str) -> bool:
    try:
        parts = urlsplit(text)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def clamp_wait_ms(value: float) -> int:
    return int(min(max(value, MIN_WAIT_MS), MAX_WAIT_MS))


def _validate(model: type[_ModelT], payload: Any) -> _ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}"
            for err in exc.errors()
        )
        raise WorkflowValidationError(f"Invalid {model.__name__}: {messages}") from exc


class WorkflowStep(BaseModel):
    """One atomic browser action."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    action: ActionType
    selector: str | None = Field(default=None, min_length=1, max_length=500)
    value: str | None = Field(default=None, max_length=4000)
    attribute: str | None = Field(default=None, max_length=120)

    @field_validator("action", mode="before")
    @classmethod
    def lowercase_action(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("value", mode="before")
    @classmethod
    def stringify_numbers(cls, value: Any) -> Any:
        # Planners emit wait durations as JSON numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def check_action_fields(self) -> WorkflowStep:
        action = self.action
        if action is ActionType.GOTO:
            if not self.value:
                raise ValueError("goto requires value (URL)")
            if not is_http_url(self.value):
                raise ValueError(f"goto value is not an http(s) URL: {self.value!r}")
        elif action in (ActionType.CLICK, ActionType.TYPE, ActionType.EXTRACT):
            if not self.selector:
                raise ValueError(f"{action.value} requires selector")
            if action is ActionType.TYPE and self.value is None:
                raise ValueError("type requires value")
        elif action is ActionType.WAIT and self.value:
            try:
                delay = float(self.value)
            except ValueError:
                delay = math.nan
            if not math.isfinite(delay):
                raise ValueError(f"wait value must be numeric milliseconds, got {self.value!r}")
        return self

    @property
    def wait_ms(self) -> int:
        """Delay for WAIT steps, clamped to [MIN_WAIT_MS, MAX_WAIT_MS]."""
        if not self.value:
            return DEFAULT_WAIT_MS
        return clamp_wait_ms(float(self.value))


class Workflow(BaseModel):
    """A target URL plus 1..120 ordered steps."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    url: str
    steps: list[WorkflowStep] = Field(min_length=1, max_length=120)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        if not is_http_url(value):
            raise ValueError(f"url is not an http(s) URL: {value!r}")
        return value

    @classmethod
    def parse(cls, payload: Any) -> Workflow:
        """Validate a submission payload, raising WorkflowValidationError on failure."""
        if isinstance(payload, Workflow):
            return payload
        return _validate(cls, payload)


DomainName = Annotated[str, Field(min_length=1, max_length=255)]


class ExecutionParams(BaseModel):
    """Per-run execution limits."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    max_execution_ms: int = Field(default=120_000, ge=5_000, le=300_000)
    step_retries: int = Field(default=1, ge=0, le=3)
    allowed_domains: list[DomainName] = Field(default_factory=list, max_length=25)

    @classmethod
    def parse(cls, payload: Any) -> ExecutionParams:
        if isinstance(payload, ExecutionParams):
            return payload
        return _validate(cls, payload or {})

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> ExecutionParams:
        """
        Settings supply defaults; ``None`` overrides are ignored.

        Overrides may use field names or their camelCase aliases.
        """
        names = {info.alias or name: name for name, info in cls.model_fields.items()}
        values: dict[str, Any] = {
            "max_execution_ms": settings.max_execution_ms,
            "step_retries": settings.step_retries,
        }
        for key, value in overrides.items():
            if value is not None:
                values[names.get(key, key)] = value
        return _validate(cls, values)

    @property
    def timeout_seconds(self) -> float:
        return self.max_execution_ms / 1000
