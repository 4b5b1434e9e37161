"""
Shared API helpers: service access, response envelope, request base model
"""
from typing import Any, Dict

from fastapi import Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.services.container import ServiceContainer


class CamelModel(BaseModel):
    """Request body accepting both camelCase and snake_case keys"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def ok(data: Any = None) -> Dict[str, Any]:
    """Success envelope"""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in data]
    return {"success": True, "data": data}
