from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from clubhouse.apps.api.deps import get_current_principal
from clubhouse.apps.api.main import create_app
from clubhouse.apps.api.pipeline import SecuredRoute
from clubhouse.domain.audit import AuditAction
from clubhouse.domain.policy import RoutePolicy
from clubhouse.domain.principal import Principal


class CoursesModule:
    """Minimal business collaborator mounted behind the security pipeline."""

    def __init__(self) -> None:
        self.invocations: list[dict[str, Any]] = []
        self.router = APIRouter(prefix="/courses", tags=["courses"], route_class=SecuredRoute)
        self._register_routes()

    def _register_routes(self) -> None:
        router = self.router

        @router.post("", name="courses.create", status_code=201)
        async def create_course(
            payload: dict[str, Any],
            principal: Principal = Depends(get_current_principal),
        ) -> dict[str, Any]:
            self.invocations.append(payload)
            # Echo the payload so tests can check the live response is never redacted.
            return {**payload, "id": uuid4().hex, "organization_id": principal.organization_id}

        @router.put("/{id}", name="courses.update")
        async def update_course(
            id: str,
            payload: dict[str, Any],
            principal: Principal = Depends(get_current_principal),
        ) -> dict[str, Any]:
            self.invocations.append(payload)
            return {**payload, "id": id}

        @router.post("/{id}/cancel", name="courses.cancel")
        async def cancel_course(
            id: str,
            principal: Principal = Depends(get_current_principal),
        ) -> dict[str, Any]:
            self.invocations.append({"id": id})
            return {"id": id, "status": "cancelled"}

        @router.delete("/{id}", name="courses.delete")
        async def delete_course(
            id: str,
            principal: Principal = Depends(get_current_principal),
        ) -> dict[str, Any]:
            self.invocations.append({"id": id})
            raise HTTPException(
                status_code=409,
                detail={"code": "COURSE_HAS_ATTENDANCE", "message": "Course has recorded attendance"},
            )

        @router.patch("/{id}", name="courses.patch")
        async def patch_course(
            id: str,
            payload: dict[str, Any],
            principal: Principal = Depends(get_current_principal),
        ) -> JSONResponse:
            self.invocations.append(payload)
            return JSONResponse(
                status_code=422,
                content={"detail": {"code": "INVALID_SCHEDULE", "message": "Schedule overlaps"}},
            )

        @router.get("", name="courses.list")
        async def list_courses(principal: Principal = Depends(get_current_principal)) -> list[dict[str, Any]]:
            self.invocations.append({})
            return []


COURSE_POLICIES = {
    "courses.cancel": RoutePolicy(action_override=AuditAction.CANCEL),
    "courses.list": RoutePolicy(audit_exempt=True),
}


def create_courses_app() -> tuple[Any, CoursesModule]:
    module = CoursesModule()
    app = create_app(routers=[module.router], route_policies=COURSE_POLICIES)
    return app, module
