"""Shared model configuration."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model serialized with camelCase keys, constructible with either naming."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
