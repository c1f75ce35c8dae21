from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any

from bson import ObjectId
from bson.decimal128 import Decimal128
from pydantic import BaseModel, BeforeValidator, Field, ConfigDict
from pydantic_core import core_schema


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, float):
        # repr() keeps 7.1 as 7.1 instead of its binary expansion
        return Decimal(repr(value))
    return value


# Money and weights: Decimal in Python, Decimal128 in MongoDB
Amount = Annotated[Decimal, BeforeValidator(to_decimal)]


class PyObjectId(ObjectId):
    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any):
        return core_schema.no_info_plain_validator_function(
            cls.validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                str, when_used="json"
            ),
        )

    @classmethod
    def __get_pydantic_json_schema__(cls, schema: Any, handler: Any) -> dict:
        # Documented as the 24-character hex string it is sent as
        return handler(core_schema.str_schema(pattern="^[0-9a-fA-F]{24}$"))

    @classmethod
    def validate(cls, value: Any) -> ObjectId:
        if isinstance(value, ObjectId):
            return value
        if isinstance(value, str) and ObjectId.is_valid(value):
            return ObjectId(value)
        raise ValueError("Invalid ObjectId")


def to_bson(value: Any) -> Any:
    """Recursively convert Decimals so the value can be written by PyMongo."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_bson(v) for v in value]
    return value


class MongoModel(BaseModel):
    id: PyObjectId = Field(default_factory=PyObjectId, alias="_id")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        from_attributes=True
    )

    def to_document(self, **kwargs) -> dict:
        return to_bson(self.model_dump(by_alias=True, **kwargs))


def as_object_id(value: Any) -> ObjectId | None:
    """ObjectId for a str/ObjectId, None when the value is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None
