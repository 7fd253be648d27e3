"""Shared schema base — camelCase on the wire, snake_case in Python."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageResponse(CamelModel):
    message: str


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int


class HealthResponse(CamelModel):
    status: str
    db: bool
    version: str
