import logging
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import StreamingResponse
from sqlalchemy import desc
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.auth import get_current_principal, owner_filter
from app.core.config import settings
from app.core.database import get_db
from app.core.notifications import bus, sse_format
from app.models.asset import Asset
from app.models.project import Project
from app.schemas.project import (
    AssetResponse,
    ProjectCreate,
    ProjectDetailResponse,
    ProjectResponse,
)

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])

logger = logging.getLogger(__name__)


def get_owned_project(db: Session, project_id: str, principal: str) -> Project:
    query = db.query(Project).filter(Project.id == project_id)
    owner = owner_filter(principal)
    if owner:
        query = query.filter(Project.user_id == owner)
    project = query.first()

    if not project:
        raise HTTPException(
            status_code=404,
            detail=f"Project with ID {project_id} not found"
        )
    return project


def ordered_assets(db: Session, project_id: str) -> List[Asset]:
    """Images in extraction order, then unordered assets (rendered video)."""
    return (
        db.query(Asset)
        .filter(Asset.project_id == project_id)
        .order_by(Asset.sort_order.is_(None), Asset.sort_order, Asset.created_at)
        .all()
    )


def change_stream(request: Request, name: str, predicate: dict) -> StreamingResponse:
    async def events():
        subscription = bus.subscribe(name, predicate)
        try:
            yield ": connected\n\n"
            while not await request.is_disconnected():
                change = await run_in_threadpool(subscription.next_event, settings.SSE_KEEPALIVE_SECONDS)
                if change is None:
                    yield ": keepalive\n\n"
                    continue
                yield sse_format(change)
        finally:
            bus.unsubscribe(name)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(
    body: ProjectCreate,
    principal: str = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Create a project in `queued`, ready for /api/v1/videos/generate."""
    user_id = owner_filter(principal) or body.user_id
    if not user_id:
        raise HTTPException(
            status_code=400,
            detail="user_id is required for internal callers"
        )

    project = Project(
        user_id=user_id,
        title=body.title.strip(),
        aspect=body.aspect,
        theme=body.theme,
        listing_url=body.listing_url,
        status="queued",
    )
    db.add(project)
    db.commit()
    db.refresh(project)

    logger.info("Created project %s for user %s", project.id, user_id)
    return project


@router.get("", response_model=List[ProjectResponse])
def list_projects(
    status: Optional[str] = Query(None, description="Filter by status: idle, queued, rendering, done, error"),
    principal: str = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """The caller's projects, newest first."""
    query = db.query(Project)
    owner = owner_filter(principal)
    if owner:
        query = query.filter(Project.user_id == owner)
    if status:
        query = query.filter(Project.status == status)
    return query.order_by(desc(Project.created_at)).all()


@router.get("/events")
async def stream_my_project_events(
    request: Request,
    principal: str = Depends(get_current_principal),
):
    """Server-sent events for every change to the caller's projects."""
    owner = owner_filter(principal)
    if not owner:
        raise HTTPException(
            status_code=400,
            detail="Internal callers must stream a single project"
        )
    return change_stream(request, f"user-{owner}-{uuid4().hex}", {"user_id": owner})


@router.get("/{project_id}", response_model=ProjectDetailResponse)
def get_project(
    project_id: str,
    principal: str = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    project = get_owned_project(db, project_id, principal)
    return ProjectDetailResponse(
        **ProjectResponse.model_validate(project).model_dump(),
        assets=[AssetResponse.model_validate(a) for a in ordered_assets(db, project_id)],
    )


@router.get("/{project_id}/events")
async def stream_project_events(
    project_id: str,
    request: Request,
    principal: str = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Server-sent events for one project's status changes."""
    get_owned_project(db, project_id, principal)
    return change_stream(request, f"project-{project_id}-{uuid4().hex}", {"id": project_id})


@router.delete("/{project_id}", status_code=204)
def delete_project(
    project_id: str,
    principal: str = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """User-driven deletion. Assets go with the project; usage history is kept."""
    project = get_owned_project(db, project_id, principal)

    if project.status == "rendering":
        raise HTTPException(
            status_code=409,
            detail="Project is rendering and cannot be deleted yet"
        )

    db.delete(project)
    db.commit()
    logger.info("Deleted project %s", project_id)
    return Response(status_code=204)
