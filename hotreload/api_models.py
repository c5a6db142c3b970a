from __future__ import annotations

from pydantic import BaseModel, Field


class RestartRequest(BaseModel):
    force: bool = Field(False, description="Restart the whole deployment (critical) instead of the service's subtree (moderate)")


class DependenciesRequest(BaseModel):
    dependencies: dict[str, list[str]] = Field(..., description="service -> services it depends on")


class HealthReport(BaseModel):
    services: dict[str, bool] = Field(..., description="service -> healthy?")
