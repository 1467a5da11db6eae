"""
Base Schema Classes for Pydantic Models

The API speaks camelCase while models and services use snake_case.
Input schemas accept either spelling; response schemas emit camelCase.

RULE: All response schemas that read ORM objects MUST inherit from BaseResponseSchema.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Features:
    - from_attributes for ORM compatibility
    - camelCase field names in JSON output
    - population by field name or alias

    Usage:
        class ItemResponse(BaseResponseSchema):
            id: UUID
            current_stock: Decimal      # emitted as "currentStock"
    """
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Accepts camelCase (frontend) or snake_case keys; unknown keys are
    ignored for forward compatibility.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )
