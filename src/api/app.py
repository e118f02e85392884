"""
Family Week Planner — HTTP API.

Request/response boundary of the resolution engine. Authentication is
handled upstream; the calling member arrives in the X-Member-Id header.

Error mapping:
    InvalidOverride      → 400 {"detail": {"message", "issues": [...]}}
    malformed dates      → 400
    unknown task/template → 404
    ScheduleUnavailable  → 503
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from fastapi import Body, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.config import settings
from src.core.override_validation import InvalidOverride
from src.core.schedule_service import ScheduleService
from src.core.serialization import (
    schedule_to_dict,
    shift_status_to_dict,
    task_split_to_dict,
)
from src.core.week_dates import monday_of, parse_week_start
from src.data.models import ApplyRule
from src.ports.schedule_port import ScheduleUnavailable

logger = logging.getLogger(__name__)


# ------------------------------
# Request bodies
# ------------------------------


class TaskUpdate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1)
    icon: Optional[str] = None
    color: Optional[str] = None
    default_start_time: Optional[str] = None
    default_duration: Optional[int] = Field(None, ge=1, le=1440)


class WeekTemplateUpdate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1)
    is_default: Optional[bool] = None
    apply_rule: Optional[ApplyRule] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


# ------------------------------
# App factory
# ------------------------------


def create_app(service: ScheduleService) -> FastAPI:
    app = FastAPI(title="Family Week Planner API")
    app.state.service = service

    @app.exception_handler(InvalidOverride)
    async def _invalid_override(request: Request, exc: InvalidOverride) -> JSONResponse:
        logger.info("Rejected override batch: %s", exc)
        return JSONResponse(
            status_code=400,
            content={"detail": {"message": str(exc), "issues": [i.to_dict() for i in exc.issues]}},
        )

    @app.exception_handler(ScheduleUnavailable)
    async def _unavailable(request: Request, exc: ScheduleUnavailable) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    def _week(value: Optional[str]) -> date:
        if not value:
            return monday_of(service.now().date())
        try:
            return parse_week_start(value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    # ------------------------------
    # Basic routes
    # ------------------------------

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    # ------------------------------
    # Schedule
    # ------------------------------

    @app.get("/families/{family_id}/schedule")
    async def get_schedule(
        family_id: str,
        week_start_date: Optional[str] = Query(None, alias="weekStartDate"),
    ) -> dict[str, Any]:
        schedule = await service.get_week_schedule(family_id, _week(week_start_date))
        return schedule_to_dict(schedule)

    @app.post("/families/{family_id}/overrides")
    async def apply_override(
        family_id: str, payload: dict[str, Any] = Body(...),
    ) -> dict[str, Any]:
        schedule = await service.apply_override(family_id, payload)
        return schedule_to_dict(schedule)

    @app.delete("/families/{family_id}/overrides/{week_start_date}")
    async def revert_week(family_id: str, week_start_date: str) -> dict[str, Any]:
        schedule = await service.revert_week(family_id, _week(week_start_date))
        return schedule_to_dict(schedule)

    # ------------------------------
    # Analytics
    # ------------------------------

    @app.get("/families/{family_id}/task-split")
    async def task_split(
        family_id: str,
        week_start_date: Optional[str] = Query(None, alias="weekStartDate"),
        window_weeks: Optional[int] = Query(None, alias="windowWeeks", ge=1, le=52),
    ) -> dict[str, Any]:
        split = await service.task_split(family_id, _week(week_start_date), window_weeks)
        return task_split_to_dict(split)

    @app.get("/families/{family_id}/fairness-history")
    async def fairness_history(
        family_id: str,
        week_start_date: Optional[str] = Query(None, alias="weekStartDate"),
        weeks: int = Query(12, ge=1, le=52),
    ) -> list[dict[str, Any]]:
        history = await service.fairness_history(family_id, _week(week_start_date), weeks=weeks)
        return [{"week": w.isoformat(), "fairnessScore": score} for w, score in history]

    @app.get("/families/{family_id}/shift-status")
    async def shift_status(
        family_id: str,
        week_start_date: Optional[str] = Query(None, alias="weekStartDate"),
        member_id: str = Header(..., alias="X-Member-Id"),
    ) -> dict[str, Any]:
        week = _week(week_start_date) if week_start_date else None
        status = await service.shift_status(family_id, member_id, week)
        return {"status": shift_status_to_dict(status)}

    # ------------------------------
    # Template edits
    # ------------------------------

    async def _family_task(family_id: str, task_id: str):
        task = await service.get_task(task_id)
        if task is None or task.family_id != family_id:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    @app.patch("/families/{family_id}/tasks/{task_id}")
    async def update_task(family_id: str, task_id: str, body: TaskUpdate) -> dict[str, Any]:
        await _family_task(family_id, task_id)
        try:
            task = await service.update_task(
                task_id, **body.model_dump(exclude_unset=True, exclude_none=True),
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"id": task.id, "name": task.name, "isActive": task.is_active}

    @app.delete("/families/{family_id}/tasks/{task_id}")
    async def deactivate_task(family_id: str, task_id: str) -> dict[str, Any]:
        await _family_task(family_id, task_id)
        deactivated = await service.deactivate_task(task_id)
        return {"id": task_id, "deactivated": deactivated}

    @app.patch("/families/{family_id}/week-templates/{template_id}")
    async def update_week_template(
        family_id: str, template_id: str, body: WeekTemplateUpdate,
    ) -> dict[str, Any]:
        template = await service.get_week_template(template_id)
        if template is None or template.family_id != family_id:
            raise HTTPException(status_code=404, detail="Week template not found")
        try:
            changes = {
                k: v for k, v in body.model_dump(exclude_unset=True).items()
                if v is not None or k == "apply_rule"
            }
            template = await service.update_week_template(template_id, **changes)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "id": template.id,
            "name": template.name,
            "isDefault": template.is_default,
            "applyRule": template.apply_rule.value if template.apply_rule else None,
            "priority": template.priority,
            "isActive": template.is_active,
        }

    return app


def run() -> None:
    """Serve the API with uvicorn using the stores at DATABASE_PATH."""
    import uvicorn

    from src.data.db import MemberDB
    from src.data.override_db import OverrideDB
    from src.data.template_db import TemplateDB

    service = ScheduleService(TemplateDB(), OverrideDB(), MemberDB())
    logger.info("Starting API on %s:%d", settings.API_HOST, settings.API_PORT)
    uvicorn.run(create_app(service), host=settings.API_HOST, port=settings.API_PORT)
