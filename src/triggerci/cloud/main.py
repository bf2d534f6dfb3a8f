from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from fastapi import BackgroundTasks, Body, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool

from triggerci.config import load_workflow
from triggerci.environment import DockerEnvironment, Environment, LocalEnvironment
from triggerci.errors import MalformedTriggerError
from triggerci.events import normalize
from triggerci.gate import admit
from triggerci.model import Event, RunResult, Workflow
from triggerci.pipeline import Pipeline
from triggerci.ui.console import get_console

from . import settings
from .db import make_engine, make_sessions
from .models import Base, JobRecord, Run, now_utc

# -------------------- Schemas --------------------

class EventResponse(BaseModel):
    run_id: str
    event_key: str
    admitted: bool
    status: str
    duplicate: bool = False

class JobResponse(BaseModel):
    job_name: str
    status: str
    failing_step_index: Optional[int] = None
    failing_step_label: Optional[str] = None
    reason: Optional[str] = None
    duration_s: float = 0.0

class RunResponse(BaseModel):
    id: str
    event_key: str
    kind: str
    branch: str
    is_draft: bool
    sha: Optional[str]
    pr_number: Optional[int]
    admitted: bool
    status: str
    error: Optional[str]
    created_at: datetime
    finished_at: Optional[datetime]
    jobs: List[JobResponse] = Field(default_factory=list)

class PublishedEvent(BaseModel):
    kind: str
    branch: str
    is_draft: bool = False
    sha: Optional[str] = None
    pr_number: Optional[int] = None

class PublishedResult(BaseModel):
    """Body sent by HttpSink (RunResult.to_dict())."""
    event: PublishedEvent
    admitted: bool
    status: str
    jobs: List[JobResponse] = Field(default_factory=list)

# -------------------- Helpers --------------------

def supersede_key(event: Event) -> str:
    """Runs sharing this key supersede each other: one per pull request, else one per branch."""
    if event.pr_number is not None:
        return f"pr:{event.pr_number}"
    return f"branch:{event.branch}"

def _run_response(run: Run) -> RunResponse:
    return RunResponse(
        id=run.id,
        event_key=run.event_key,
        kind=run.kind,
        branch=run.branch,
        is_draft=run.is_draft,
        sha=run.sha,
        pr_number=run.pr_number,
        admitted=run.admitted,
        status=run.status,
        error=run.error,
        created_at=run.created_at,
        finished_at=run.finished_at,
        jobs=[
            JobResponse(
                job_name=j.job_name,
                status=j.status,
                failing_step_index=j.failing_step_index,
                failing_step_label=j.failing_step_label,
                reason=j.reason,
                duration_s=j.duration_s,
            )
            for j in run.jobs
        ],
    )

def _job_records(jobs: List[JobResponse]) -> List[JobRecord]:
    return [
        JobRecord(
            position=i,
            job_name=j.job_name,
            status=j.status,
            failing_step_index=j.failing_step_index,
            failing_step_label=j.failing_step_label,
            reason=j.reason,
            duration_s=j.duration_s,
        )
        for i, j in enumerate(jobs)
    ]

def _jobs_of(result: RunResult) -> List[JobResponse]:
    return [JobResponse(**r.to_dict()) for r in result.job_results]

def _default_environment() -> Environment:
    if settings.BACKEND == "docker":
        return DockerEnvironment(settings.DOCKER_IMAGE)
    return LocalEnvironment()

# -------------------- App --------------------

def create_app(
    *,
    workflow: Workflow | None = None,
    database_url: str | None = None,
    environment: Environment | None = None,
    max_workers: int | None = None,
    cancel_superseded: bool | None = None,
) -> FastAPI:
    """
    Control plane: receives webhooks, gates them, runs admitted events in the
    background and records one Run per event.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.workflow = workflow or load_workflow(settings.WORKFLOW_PATH)
        engine = make_engine(database_url or settings.DATABASE_URL)
        # Creates tables if they don't exist.
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        app.state.engine = engine
        app.state.sessions = make_sessions(engine)
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(title="triggerci control plane", lifespan=lifespan)
    app.state.environment = environment or _default_environment()
    app.state.max_workers = max_workers if max_workers is not None else settings.MAX_WORKERS
    app.state.cancel_superseded = settings.CANCEL_SUPERSEDED if cancel_superseded is None else cancel_superseded
    app.state.active = {}  # supersede key -> Pipeline in flight
    app.state.active_lock = threading.Lock()

    async def execute(run_id: str, event: Event, pipeline: Pipeline) -> None:
        sessions = app.state.sessions
        async with sessions() as s:
            async with s.begin():
                run = await s.get(Run, run_id)
                if run is not None:
                    run.status = "running"

        key = supersede_key(event)
        try:
            result = await run_in_threadpool(pipeline.run_event, event)
        except Exception as e:
            get_console().print_exception(e)
            async with sessions() as s:
                async with s.begin():
                    run = await s.get(Run, run_id)
                    if run is not None:
                        run.status = "error"
                        run.error = str(e)
                        run.finished_at = now_utc()
            return
        finally:
            with app.state.active_lock:
                if app.state.active.get(key) is pipeline:
                    del app.state.active[key]

        async with sessions() as s:
            async with s.begin():
                run = await s.get(Run, run_id)
                if run is not None:
                    run.status = result.status.value
                    run.jobs = _job_records(_jobs_of(result))
                    run.finished_at = now_utc()

    # -------------------- Endpoints --------------------

    @app.post("/events", response_model=EventResponse)
    async def receive_event(
        background: BackgroundTasks,
        payload: Dict[str, Any] = Body(...),
        x_github_event: Optional[str] = Header(default=None),
        x_github_delivery: Optional[str] = Header(default=None),
    ):
        try:
            event = normalize(payload, x_github_event, delivery_id=x_github_delivery)
        except MalformedTriggerError as e:
            raise HTTPException(status_code=422, detail=str(e))

        wf: Workflow = app.state.workflow
        admitted = admit(event, wf.triggers)
        sessions = app.state.sessions

        async with sessions() as s:
            existing = (await s.execute(sa.select(Run).where(Run.event_key == event.key))).scalar_one_or_none()
            if existing is not None:
                return EventResponse(
                    run_id=existing.id, event_key=existing.event_key,
                    admitted=existing.admitted, status=existing.status, duplicate=True,
                )

        run = Run(
            event_key=event.key,
            kind=event.kind.value,
            branch=event.branch,
            is_draft=event.is_draft,
            sha=event.sha,
            pr_number=event.pr_number,
            admitted=admitted,
            # a rejected event is final right away: no jobs, nothing failed
            status="queued" if admitted else "passed",
            finished_at=None if admitted else now_utc(),
        )
        try:
            async with sessions() as s:
                async with s.begin():
                    s.add(run)
        except IntegrityError:
            # the same delivery raced us in
            async with sessions() as s:
                existing = (await s.execute(sa.select(Run).where(Run.event_key == event.key))).scalar_one()
                return EventResponse(
                    run_id=existing.id, event_key=existing.event_key,
                    admitted=existing.admitted, status=existing.status, duplicate=True,
                )

        if admitted:
            pipeline = Pipeline(
                wf,
                environment=app.state.environment,
                max_workers=app.state.max_workers,
                repository=settings.REPOSITORY,
            )
            key = supersede_key(event)
            with app.state.active_lock:
                previous = app.state.active.get(key)
                if previous is not None and app.state.cancel_superseded:
                    previous.cancel()
                app.state.active[key] = pipeline
            background.add_task(execute, run.id, event, pipeline)

        return EventResponse(run_id=run.id, event_key=run.event_key, admitted=admitted, status=run.status)

    @app.post("/results/{event_key}", response_model=RunResponse)
    async def receive_result(event_key: str, req: PublishedResult):
        """Sink endpoint for HttpSink; publishing the same event twice replaces the record."""
        sessions = app.state.sessions
        async with sessions() as s:
            async with s.begin():
                run = (await s.execute(sa.select(Run).where(Run.event_key == event_key))).scalar_one_or_none()
                if run is None:
                    run = Run(
                        event_key=event_key,
                        kind=req.event.kind,
                        branch=req.event.branch,
                        is_draft=req.event.is_draft,
                        sha=req.event.sha,
                        pr_number=req.event.pr_number,
                        admitted=req.admitted,
                        status=req.status,
                    )
                    s.add(run)
                    run.jobs = _job_records(req.jobs)
                else:
                    run.admitted = req.admitted
                    run.status = req.status
                    run.jobs = _job_records(req.jobs)
                run.finished_at = now_utc()
            return _run_response(run)

    @app.get("/runs/{run_id}", response_model=RunResponse)
    async def get_run(run_id: str):
        async with app.state.sessions() as s:
            run = await s.get(Run, run_id)
            if not run:
                raise HTTPException(status_code=404, detail="Run not found")
            return _run_response(run)

    @app.get("/runs", response_model=List[RunResponse])
    async def list_runs(branch: Optional[str] = None, limit: int = 50):
        q = sa.select(Run).order_by(Run.created_at.desc()).limit(max(1, min(limit, 500)))
        if branch:
            q = q.where(Run.branch == branch)
        async with app.state.sessions() as s:
            runs = (await s.execute(q)).scalars().all()
            return [_run_response(r) for r in runs]

    return app


app = create_app()
