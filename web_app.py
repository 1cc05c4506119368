"""Web API for lakron: login, task views and task actions for the single local user."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Callable, Literal

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError

from auth import Session
from calendar_view import as_of, day_summary, filter_by_title, month_grid, tasks_due_on, tasks_for_date, upcoming
from config import AppConfig, load as load_config
from date_utils import as_date, resolve_relative_date, today as local_today
from models import NewTask, Task
from reconciler import TaskReconciler
from task_service import TaskStore

logger = logging.getLogger("lakron.api")


# --- API schemas ---


class ProfileCreate(BaseModel):
    name: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginBody(BaseModel):
    password: str = Field(min_length=1)


class AddTaskBody(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    date: str = Field(description="YYYY-MM-DD or today/tomorrow/in N days/weekday name")
    time: str = ""
    type: Literal["task", "event"] = "task"
    priority: int = Field(2, ge=1, le=3)
    recurring: bool = False
    recurrence_rule: str | None = None


def _task_out(t: Task) -> dict[str, Any]:
    out = t.model_dump(mode="json")
    out["priority_label"] = t.priority_label
    return out


def _parse_day(value: str, reference: date | None = None) -> date:
    d = as_date(resolve_relative_date(value, reference))
    if d is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}")
    return d


def create_app(
    store: TaskStore | None = None,
    config: AppConfig | None = None,
    today: Callable[[], date] = local_today,
) -> FastAPI:
    cfg = config or load_config()
    task_store = store or TaskStore(cfg.database_path or None)
    reconciler = TaskReconciler(
        task_store,
        today=today,
        max_retries=cfg.subscribe_max_retries,
        backoff_seconds=cfg.subscribe_backoff_seconds,
    )
    session = Session(task_store, reconciler, cfg.encryption_salt)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        session.logout()

    app = FastAPI(title="Lakron", version="1.0", lifespan=lifespan)
    app.state.session = session
    app.state.store = task_store

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """When config.debug is True, log API request method, path and status."""
        if cfg.debug:
            qs = request.url.query
            logger.warning("[API] %s %s%s", request.method, request.url.path, "?" + qs if qs else "")
        response = await call_next(request)
        if cfg.debug:
            logger.warning("[API] %s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    def require_profile() -> TaskReconciler:
        if not session.is_authenticated:
            raise HTTPException(status_code=401, detail="Not logged in")
        return reconciler

    # --- Session routes ---

    @app.post("/api/profiles")
    async def api_create_profile(body: ProfileCreate):
        result = await session.create_profile(body.name, body.password)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        return {"status": "created", "profile": session.current_profile.model_dump()}

    @app.post("/api/login")
    async def api_login(body: LoginBody):
        result = await session.login(body.password)
        if not result.success:
            raise HTTPException(status_code=401, detail=result.error)
        return {"status": "ok", "profile": session.current_profile.model_dump()}

    @app.post("/api/logout")
    async def api_logout():
        session.logout()
        return {"status": "logged_out"}

    @app.get("/api/session")
    def api_session():
        p = session.current_profile
        return {"authenticated": p is not None, "profile": p.model_dump() if p else None}

    # --- Task views ---

    @app.get("/api/tasks")
    def api_list_tasks(q: str | None = None, rec: TaskReconciler = Depends(require_profile)):
        return [_task_out(t) for t in filter_by_title(rec.tasks, q)]

    @app.get("/api/tasks/today")
    def api_today(q: str | None = None, rec: TaskReconciler = Depends(require_profile)):
        day = today()
        due = tasks_due_on(rec.tasks, day)
        return {
            "date": day.isoformat(),
            "completed": sum(1 for t in due if t.completed),
            "total": len(due),
            "tasks": [_task_out(t) for t in filter_by_title(due, q)],
        }

    @app.get("/api/days/{day}")
    def api_day(day: str, q: str | None = None, rec: TaskReconciler = Depends(require_profile)):
        d = _parse_day(day, today())
        completed, total = day_summary(rec.tasks, d)
        return {
            "date": d.isoformat(),
            "completed": completed,
            "total": total,
            "tasks": [_task_out(as_of(t, d)) for t in filter_by_title(tasks_for_date(rec.tasks, d), q)],
        }

    @app.get("/api/calendar/{year}/{month}")
    def api_calendar(year: int, month: int, selected: str | None = None, rec: TaskReconciler = Depends(require_profile)):
        if not 1 <= month <= 12:
            raise HTTPException(status_code=400, detail="month must be 1-12")
        sel = _parse_day(selected, today()) if selected else None
        grid = month_grid(rec.tasks, year, month, today(), sel)
        return [
            {
                "date": d.date.isoformat(),
                "is_today": d.is_today,
                "is_selected": d.is_selected,
                "is_past": d.is_past,
                "task_count": d.task_count,
                "completed_count": d.completed_count,
            }
            for d in grid
        ]

    @app.get("/api/upcoming")
    def api_upcoming(rec: TaskReconciler = Depends(require_profile)):
        return [
            {
                "date": g.date.isoformat(),
                "day_name": g.day_name,
                "days_from_now": g.days_from_now,
                "tasks": [_task_out(t) for t in g.tasks],
            }
            for g in upcoming(rec.tasks, today(), cfg.upcoming_days)
        ]

    # --- Task actions ---

    @app.post("/api/tasks")
    async def api_add_task(body: AddTaskBody, rec: TaskReconciler = Depends(require_profile)):
        anchor = _parse_day(body.date, today())
        try:
            new = NewTask.model_validate({**body.model_dump(), "date": anchor})
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        try:
            created = await rec.add_task(new)
        except Exception as e:
            logger.exception("api_add_task failed")
            raise HTTPException(status_code=500, detail=str(e))
        return _task_out(created)

    @app.post("/api/tasks/{task_id}/toggle")
    async def api_toggle_task(task_id: str, rec: TaskReconciler = Depends(require_profile)):
        if rec.get(task_id) is None:
            raise HTTPException(status_code=404, detail="Task not found")
        try:
            accepted = await rec.toggle(task_id)
        except Exception as e:
            logger.exception("api_toggle_task failed")
            raise HTTPException(status_code=502, detail=str(e))
        if not accepted:
            raise HTTPException(status_code=409, detail="Task is not due today")
        return _task_out(rec.get(task_id))

    @app.delete("/api/tasks/{task_id}")
    async def api_delete_task(task_id: str, rec: TaskReconciler = Depends(require_profile)):
        if not await rec.delete_task(task_id):
            raise HTTPException(status_code=404, detail="Task not found")
        return {"status": "deleted"}

    @app.get("/api/status")
    def api_status():
        return {"collection": reconciler.status(), "feed": task_store.connection_status()}

    return app
