from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any

from bson import ObjectId
from bson.decimal128 import Decimal128
from pydantic import BaseModel, BeforeValidator, Field, ConfigDict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


def _to_decimal(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, float):
        # go through repr so 12.5 stays 12.5 rather than its binary expansion
        return Decimal(repr(value))
    return value


def _as_utc(value: Any) -> Any:
    # Mongo hands back naive datetimes that are UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Money = Annotated[Decimal, BeforeValidator(_to_decimal)]
UTCDateTime = Annotated[datetime, BeforeValidator(_as_utc)]


def to_mongo(value: Any) -> Any:
    """Recursively convert Decimals to Decimal128 and enums to values for storage."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dict):
        return {k: to_mongo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_mongo(v) for v in value]
    return value


class MongoModel(BaseModel):
    id: str = Field(default_factory=new_id, alias="_id")
    created_at: UTCDateTime = Field(default_factory=_utcnow)
    updated_at: UTCDateTime = Field(default_factory=_utcnow)

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        from_attributes=True
    )

    def to_document(self) -> dict:
        return to_mongo(self.model_dump(by_alias=True))
