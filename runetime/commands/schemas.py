"""
Command request models - validate raw command arguments before any store or index call.
"""

import math
from datetime import datetime
from typing import List, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..core.dao import SENSOR_ID_MAX, SENSOR_ID_MIN, parse_timestamp
from ..core.errors import InvalidArgumentError
from ..vector.manager import MAX_RECORD_ID

RequestT = TypeVar("RequestT", bound=BaseModel)


def _timestamp(v):
    try:
        return parse_timestamp(v)
    except InvalidArgumentError as e:
        raise ValueError(str(e))


def _finite(values: List[float]) -> List[float]:
    if not all(math.isfinite(x) for x in values):
        raise ValueError('vector components must be finite')
    return values


class InsertRequest(BaseModel):
    sensor_id: int = Field(ge=SENSOR_ID_MIN, le=SENSOR_ID_MAX)
    timestamp: datetime
    value: float

    @field_validator('timestamp', mode='before')
    @classmethod
    def timestamp_must_parse(cls, v):
        return _timestamp(v)

    @field_validator('value')
    @classmethod
    def value_must_be_finite(cls, v):
        if not math.isfinite(v):
            raise ValueError(f'value must be finite, got {v}')
        return v


class QueryRequest(BaseModel):
    start: datetime
    end: datetime

    @field_validator('start', 'end', mode='before')
    @classmethod
    def bounds_must_parse(cls, v):
        return _timestamp(v)

    @model_validator(mode='after')
    def start_not_after_end(self):
        if self.start > self.end:
            raise ValueError('start must not be after end')
        return self


class VectorAddRequest(BaseModel):
    id: int = Field(ge=0, le=MAX_RECORD_ID)
    vector: List[float] = Field(min_length=1)

    @field_validator('vector')
    @classmethod
    def vector_must_be_finite(cls, v):
        return _finite(v)


class VectorSearchRequest(BaseModel):
    vector: List[float] = Field(min_length=1)
    top_k: int = Field(default=5, ge=1)

    @field_validator('vector')
    @classmethod
    def vector_must_be_finite(cls, v):
        return _finite(v)


def parse_request(model: Type[RequestT], **data) -> RequestT:
    """
    Build a request model from raw arguments.

    Raises:
        InvalidArgumentError: first validation failure, as "<field>: <reason>"
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or model.__name__
        message = first["msg"].removeprefix("Value error, ")
        raise InvalidArgumentError(f"{location}: {message}") from e
