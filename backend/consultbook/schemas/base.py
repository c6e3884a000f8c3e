"""
Base schemas with standardized field types for consistent API responses.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic_core import core_schema


class StandardizedModel(BaseModel):
    """Base model with standardized JSON encoding"""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Request DTO base that always forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, populate_by_name=True)


class Money(Decimal):
    """Money field: accepts int/float/str/Decimal, serializes as a 2dp string."""

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        def validate_money(value: Any) -> Decimal:
            try:
                if isinstance(value, Decimal):
                    amount = value
                else:
                    amount = Decimal(str(value))
            except InvalidOperation:
                raise ValueError(f"Cannot convert {value!r} to Money")
            if not amount.is_finite():
                raise ValueError("Money must be a finite number")
            return amount

        return core_schema.no_info_after_validator_function(
            validate_money,
            core_schema.union_schema(
                [
                    core_schema.int_schema(),
                    core_schema.float_schema(),
                    core_schema.str_schema(),
                    core_schema.is_instance_schema(Decimal),
                ]
            ),
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda v: f"{Decimal(v):.2f}",
                info_arg=False,
                return_schema=core_schema.str_schema(),
            ),
        )


def require_aware(value: datetime, field_name: str) -> datetime:
    """Reject naive datetimes; instants must carry an offset."""
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{field_name} must include a UTC offset")
    return value
