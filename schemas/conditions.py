import re
from datetime import date as date_type, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from models.table_condition import ConditionType


Bound = Union[int, float, str, date_type]


class MinCondition(BaseModel):
    condition_type: Literal["min"] = "min"
    value: Union[int, float, str]


class MaxCondition(BaseModel):
    condition_type: Literal["max"] = "max"
    value: Union[int, float, str]


class RangeCondition(BaseModel):
    condition_type: Literal["range"] = "range"
    min: Bound
    max: Bound


class LengthCondition(BaseModel):
    condition_type: Literal["length"] = "length"
    min: Optional[int] = Field(default=None, ge=0)
    max: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min is None and self.max is None:
            raise ValueError("length needs at least one of min or max")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("length min cannot exceed max")
        return self


class ContainsCondition(BaseModel):
    condition_type: Literal["contains"] = "contains"
    text: str = Field(..., min_length=1)


class StartsWithCondition(BaseModel):
    condition_type: Literal["starts_with"] = "starts_with"
    text: str = Field(..., min_length=1)


class EndsWithCondition(BaseModel):
    condition_type: Literal["ends_with"] = "ends_with"
    text: str = Field(..., min_length=1)


class RegexCondition(BaseModel):
    condition_type: Literal["regex"] = "regex"
    pattern: str = Field(..., min_length=1)

    @field_validator("pattern")
    @classmethod
    def check_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid regular expression: {e}")
        return value


class RequiredCondition(BaseModel):
    condition_type: Literal["required"] = "required"


class ValueCondition(BaseModel):
    condition_type: Literal["value"] = "value"
    expected: bool


class BeforeCondition(BaseModel):
    condition_type: Literal["before"] = "before"
    date: Union[date_type, str]


class AfterCondition(BaseModel):
    condition_type: Literal["after"] = "after"
    date: Union[date_type, str]


ConditionPayload = Annotated[
    Union[
        MinCondition,
        MaxCondition,
        RangeCondition,
        LengthCondition,
        ContainsCondition,
        StartsWithCondition,
        EndsWithCondition,
        RegexCondition,
        RequiredCondition,
        ValueCondition,
        BeforeCondition,
        AfterCondition,
    ],
    Field(discriminator="condition_type"),
]

_payload_adapter = TypeAdapter(ConditionPayload)


def parse_condition(condition_type: Union[ConditionType, str], value: Optional[Dict[str, Any]]):
    """Build the typed payload for a stored (condition_type, condition_value) pair."""
    condition_type = ConditionType(condition_type)
    data = dict(value or {})
    data["condition_type"] = condition_type.value
    return _payload_adapter.validate_python(data)


def payload_to_value(payload) -> Dict[str, Any]:
    """JSON-ready ``condition_value`` (the payload without its tag)."""
    return payload.model_dump(mode="json", exclude={"condition_type"})


class TableConditionCreate(BaseModel):
    column_name: str = Field(..., min_length=1)
    data_type: Optional[str] = None
    condition: ConditionPayload
    is_required: bool = False
    is_active: bool = True


class TableConditionUpdate(BaseModel):
    data_type: Optional[str] = None
    condition: Optional[ConditionPayload] = None
    is_required: Optional[bool] = None
    is_active: Optional[bool] = None


class TableConditionResponse(BaseModel):
    id: int
    activated_table_id: int
    column_name: str
    data_type: Optional[str] = None
    condition_type: ConditionType
    condition_value: Dict[str, Any]
    is_required: bool
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FieldError(BaseModel):
    field: str
    message: str


class ValidationResult(BaseModel):
    valid: bool
    errors: List[FieldError] = []
