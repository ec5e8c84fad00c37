"""Change payloads shared by direct edits, pending requests and rejections.

Payloads travel camelCase on the wire and are stored verbatim (after
validation) in the ledgers, so a pending ADD and a pending EDIT/DELETE share
one JSON shape that references activities by value.
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from schedule_editor.errors import ValidationError
from schedule_editor.models import CHANGE_TYPES, DAY_NAMES

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

Period = Literal["MORNING", "AFTERNOON", "EVENING"]
ChangeType = Literal["ADD", "EDIT", "DELETE"]


class _ChangePayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    time: str = Field(pattern=TIME_PATTERN)
    description: str = Field(min_length=1)
    day_name: str | None = None
    apply_to_weeks: list[int] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("description must not be blank")
        return value

    @field_validator("day_name")
    @classmethod
    def known_day_name(cls, value: str | None) -> str | None:
        if value is not None and value not in DAY_NAMES:
            raise ValueError(f"dayName must be one of {', '.join(DAY_NAMES)}")
        return value

    @field_validator("apply_to_weeks")
    @classmethod
    def unique_weeks(cls, value: list[int]) -> list[int]:
        return sorted(set(value))

    @property
    def is_multi_week(self) -> bool:
        return bool(self.apply_to_weeks)

    def summary(self) -> str:
        return f"{self.time} - {self.description}"

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AddPayload(_ChangePayload):
    day_id: int
    period: Period
    label_ids: list[int] | None = None


class EditPayload(_ChangePayload):
    activity_id: int
    old_time: str | None = None
    old_description: str | None = None
    label_ids: list[int] | None = None


class DeletePayload(_ChangePayload):
    activity_id: int
    period: Period | None = None


ChangePayload = Union[AddPayload, EditPayload, DeletePayload]

_PAYLOAD_TYPES: dict[str, type[_ChangePayload]] = {
    "ADD": AddPayload,
    "EDIT": EditPayload,
    "DELETE": DeletePayload,
}


def _format_pydantic_error(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


def parse_change_payload(change_type: str, data: Any) -> ChangePayload:
    if change_type not in CHANGE_TYPES:
        raise ValidationError(f"Invalid changeType: {change_type!r}")
    if not isinstance(data, dict):
        raise ValidationError("changeData must be an object")
    try:
        return _PAYLOAD_TYPES[change_type].model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {change_type} payload: {_format_pydantic_error(exc)}") from exc
