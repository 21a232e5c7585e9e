"""
api/schemas.py: Shared request-model base

Request bodies arrive in camelCase (walletAddress, propertyId, ...);
route models declare snake_case fields and accept either spelling.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
