from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from clubhouse.apps.api.pipeline import SecuredRoute


router = APIRouter(tags=["health"], route_class=SecuredRoute)


class HealthResponse(BaseModel):
    status: str


@router.get("/health", name="health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")
