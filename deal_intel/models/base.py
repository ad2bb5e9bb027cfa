import datetime as dt
from enum import StrEnum
from typing import Annotated, Optional
from pydantic import BaseModel, Field, ConfigDict, BeforeValidator, field_serializer

# Standardizes MongoDB ObjectIds to strings
PyObjectId = Annotated[str, BeforeValidator(str)]


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def as_utc(value: dt.datetime) -> dt.datetime:
    """Mongo hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value


class Relevance(StrEnum):
    """How directly a signal relates to the seller's own solution."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Confidence(StrEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class MongoBaseModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra='forbid'
    )

    id: Optional[PyObjectId] = Field(None, alias="_id")
    created_at: dt.datetime = Field(default_factory=utc_now)
    updated_at: dt.datetime = Field(default_factory=utc_now)

    @field_serializer("created_at", "updated_at", when_used="json")
    def serialize_dt(self, value: dt.datetime):
        return value.isoformat()
