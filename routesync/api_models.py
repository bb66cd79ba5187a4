from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, Field, StrictInt, StrictStr

from .models import FrontendDeclaration


class ServiceRefIn(BaseModel):
    id: str = Field(..., min_length=1, description="Linked service name, as published by discovery")
    port: Union[StrictStr, StrictInt] = Field(..., description="Exposed container port, e.g. 80")


class FrontendIn(BaseModel):
    domain: str = Field(..., min_length=1, description="Domain routed to this service")
    healthcheck: Any = Field(None, description="Health check settings passed through to the renderer")


class FrontendDeclarationIn(BaseModel):
    service: ServiceRefIn
    frontend: FrontendIn

    def to_declaration(self) -> FrontendDeclaration:
        """Validate through the same rules the declaration store loads with."""
        return FrontendDeclaration.from_dict(self.model_dump())
