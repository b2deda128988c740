"""Shared pydantic configuration for camelCase wire schemas."""

# purpose: keep Python attribute names snake_case while the wire stays camelCase
# status: pilot

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OpenCamelModel(BaseModel):
    """Camel-cased model that keeps fields it does not declare."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")
