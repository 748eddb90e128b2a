import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from sqlalchemy import desc, and_, func
from typing import Optional, List
from datetime import datetime, date
from pydantic import BaseModel

from app.core.auth import get_current_admin
from app.core.database import get_db
from app.core.redis import RenderQueue
from app.models.asset import Asset
from app.models.project import Project, PROJECT_STATUSES
from app.models.usage_event import UsageEvent
from app.routers.projects import ordered_assets
from app.schemas.project import (
    AssetResponse,
    PaginatedProjectsResponse,
    ProjectDetailResponse,
    ProjectResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/admin/projects",
    tags=["admin-projects"],
    dependencies=[Depends(get_current_admin)],
)


class AdminProjectDetailResponse(ProjectDetailResponse):
    queue_status: Optional[dict] = None


class StatsSummaryResponse(BaseModel):
    total: int
    status: dict
    assets: int
    renders: int
    render_queue_size: int


@router.get("", response_model=PaginatedProjectsResponse)
def list_projects(
    db: Session = Depends(get_db),
    page: int = Query(1, ge=1, description="Page number (starts from 1)"),
    page_size: int = Query(20, ge=1, le=100, description="Number of items per page (max 100)"),
    status: Optional[str] = Query(None, description="Filter by status: idle, queued, rendering, done, error"),
    start_date: Optional[date] = Query(None, description="Filter from date (YYYY-MM-DD)"),
    end_date: Optional[date] = Query(None, description="Filter to date (YYYY-MM-DD)"),
    user_id: Optional[str] = Query(None, description="Filter by user ID"),
    project_id: Optional[str] = Query(None, description="Filter by project ID"),
):
    """
    Get paginated list of projects with filters.

    - **page**: Page number (default: 1)
    - **page_size**: Items per page (default: 20, max: 100)
    - **status**: Filter by project status
    - **start_date** / **end_date**: Filter on last update date
    - **user_id**: Filter by owning user
    - **project_id**: Filter by project ID

    Returns latest updated projects first.
    """
    if status and status not in PROJECT_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid status. Must be one of: {', '.join(PROJECT_STATUSES)}"
        )

    query = db.query(Project)
    filters = []
    filter_parts = []
    filters_applied = {}

    if status:
        filters.append(Project.status == status)
        filters_applied["status"] = status
        filter_parts.append(f"status='{status}'")

    if project_id:
        filters.append(Project.id == project_id)
        filters_applied["project_id"] = project_id
        filter_parts.append(f"project_id='{project_id}'")

    if user_id:
        filters.append(Project.user_id == user_id)
        filters_applied["user_id"] = user_id
        filter_parts.append(f"user_id='{user_id}'")

    if start_date:
        filters.append(Project.updated_at >= datetime.combine(start_date, datetime.min.time()))
        filters_applied["start_date"] = start_date.isoformat()
        filter_parts.append(f"from {start_date.isoformat()}")

    if end_date:
        # Include the entire end_date day
        filters.append(Project.updated_at <= datetime.combine(end_date, datetime.max.time()))
        filters_applied["end_date"] = end_date.isoformat()
        filter_parts.append(f"to {end_date.isoformat()}")

    if filters:
        query = query.filter(and_(*filters))

    total = query.count()
    total_pages = (total + page_size - 1) // page_size
    offset = (page - 1) * page_size

    projects = query.order_by(desc(Project.updated_at)).offset(offset).limit(page_size).all()
    items: List[ProjectResponse] = [ProjectResponse.model_validate(p) for p in projects]

    if filter_parts:
        message = (
            f"Found {total} project(s) with filters: {', '.join(filter_parts)}. "
            f"Showing page {page} of {total_pages}."
        )
    else:
        message = f"Found {total} project(s). Showing page {page} of {total_pages}."

    return PaginatedProjectsResponse(
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        items=items,
        filters_applied=filters_applied,
        message=message,
    )


@router.get("/stats/summary", response_model=StatsSummaryResponse)
def get_project_stats(db: Session = Depends(get_db)):
    """Project counts by status plus asset and render totals."""
    rows = db.query(Project.status, func.count(Project.id)).group_by(Project.status).all()
    by_status = {s: 0 for s in PROJECT_STATUSES}
    by_status.update({s: c for s, c in rows})

    renders = (
        db.query(func.coalesce(func.sum(UsageEvent.count), 0))
        .filter(UsageEvent.type == "render")
        .scalar()
    )

    return StatsSummaryResponse(
        total=sum(by_status.values()),
        status=by_status,
        assets=db.query(func.count(Asset.id)).scalar() or 0,
        renders=int(renders or 0),
        render_queue_size=RenderQueue.get_queue_size(),
    )


@router.get("/{project_id}", response_model=AdminProjectDetailResponse)
def get_project(project_id: str, db: Session = Depends(get_db)):
    """
    Get a specific project with its assets and render queue status.
    """
    project = db.query(Project).filter(Project.id == project_id).first()

    if not project:
        raise HTTPException(
            status_code=404,
            detail=f"Project with ID {project_id} not found"
        )

    return AdminProjectDetailResponse(
        **ProjectResponse.model_validate(project).model_dump(),
        assets=[AssetResponse.model_validate(a) for a in ordered_assets(db, project_id)],
        queue_status=RenderQueue.get_status(project_id),
    )
