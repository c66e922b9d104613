from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


# Tagged condition value: a scalar, a list of scalars, or null
ScalarValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]
ConditionValue = Union[ScalarValue, List[ScalarValue], None]


class AccessModel(BaseModel):
    """Base for registry payloads: accepts camelCase or snake_case keys, immutable once built"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ConditionOperator(str, Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_THAN_OR_EQUAL = ">="
    LESS_THAN_OR_EQUAL = "<="
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    STARTS_WITH = "startswith"
    ENDS_WITH = "endswith"
    REGEX = "regex"


class LogicOperator(str, Enum):
    AND = "and"
    OR = "or"


class FieldAccessLevel(str, Enum):
    READ = "read"
    WRITE = "write"
    NONE = "none"


class AccessMode(str, Enum):
    READ = "read"
    WRITE = "write"


class ABACCondition(AccessModel):
    """Attribute comparison, optionally combined with nested conditions"""

    id: Optional[str] = None
    attribute: str = ""
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: ConditionValue = None
    logic: LogicOperator = LogicOperator.AND
    conditions: Optional[List["ABACCondition"]] = None

    @model_validator(mode="after")
    def _require_target(self):
        if not self.attribute and not self.conditions:
            raise ValueError("condition needs an attribute or nested conditions")
        return self


class EffectiveWindow(AccessModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def contains(self, moment: datetime) -> bool:
        moment = _as_utc(moment)
        if self.start is not None and moment < _as_utc(self.start):
            return False
        if self.end is not None and moment > _as_utc(self.end):
            return False
        return True


class ABACPolicy(AccessModel):
    """Field-level policy keyed by (doc_type, field)"""

    id: str = Field(..., min_length=1)
    name: str
    description: Optional[str] = None
    doc_type: str = Field(..., min_length=1)
    field: str = Field(..., min_length=1)
    conditions: List[ABACCondition] = Field(default_factory=list)
    access: FieldAccessLevel
    priority: int = Field(default=0, description="Higher priority policies are evaluated first")
    active: bool = True
    effective_date: Optional[EffectiveWindow] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value):
        return 0 if value is None else value

    @field_validator("active", mode="before")
    @classmethod
    def _default_active(cls, value):
        return True if value is None else value

    @property
    def key(self):
        return self.doc_type, self.field

    def is_effective(self, moment: datetime) -> bool:
        return self.effective_date is None or self.effective_date.contains(moment)


class FieldAccess(AccessModel):
    """Derived field-level access decision"""

    readable: bool = False
    writable: bool = False
    required: bool = False
    source: Optional[str] = None
    conditions: Optional[List[ABACCondition]] = None

    @classmethod
    def denied(cls) -> "FieldAccess":
        return cls()

    def allows(self, mode: AccessMode) -> bool:
        return self.writable if mode is AccessMode.WRITE else self.readable


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


ABACCondition.model_rebuild()
