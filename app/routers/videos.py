import logging

from fastapi import APIRouter, BackgroundTasks, Body, Depends
from sqlalchemy.orm import Session

from app.core.auth import get_current_principal, owner_filter
from app.core.database import get_db
from app.core.responses import error_response
from app.models.project import Project
from app.services.pipeline import (
    MissingParameters,
    SchedulingFailed,
    schedule_pipeline,
    validate_parameters,
)

router = APIRouter(prefix="/api/v1/videos", tags=["videos"])

logger = logging.getLogger(__name__)


@router.post("/generate")
def generate_video(
    background_tasks: BackgroundTasks,
    payload: dict = Body(...),
    principal: str = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Start video generation for a queued project.

    Returns as soon as the run is scheduled. The outcome is only observable
    through the project's status (see the project event streams).
    """
    try:
        project_id, listing_data, project_config = validate_parameters(
            payload.get("projectId"),
            payload.get("listingData"),
            payload.get("projectConfig"),
        )
    except MissingParameters as e:
        return error_response(400, "Missing required parameters", str(e))

    query = db.query(Project).filter(Project.id == project_id)
    owner = owner_filter(principal)
    if owner:
        query = query.filter(Project.user_id == owner)
    project = query.first()

    if not project:
        return error_response(404, "Project not found", f"No project with id {project_id}")

    if project.status != "queued":
        return error_response(
            409,
            "Project is not queued",
            f"Project {project_id} is '{project.status}'; create a new project to try again.",
        )

    try:
        mode = schedule_pipeline(background_tasks, project_id, listing_data, project_config)
    except SchedulingFailed as e:
        return error_response(503, "Failed to start video generation", str(e))
    except Exception as e:
        logger.exception("Error starting video generation for project %s", project_id)
        return error_response(500, "Failed to start video generation", str(e))

    logger.info("Video generation %s for project %s", mode, project_id)
    return {"success": True, "message": "Video generation started"}
