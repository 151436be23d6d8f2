"""
Base schema classes.

Public endpoints speak camelCase JSON (serviceId, referenceNumber) while the
Python side uses snake_case; CamelModel maps between the two.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseResponseSchema(BaseModel):
    """Response schemas read from ORM models."""
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys; snake_case names also accepted on input."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        extra='ignore',
    )
