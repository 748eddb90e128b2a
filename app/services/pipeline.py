"""
Pipeline Orchestrator

Drives one project from `queued` to `done` or `error`:

    queued -> rendering -> persist image assets -> render step
           -> done (+ usage event, trial decrement)   on success
           -> error                                   on any failure

Each run owns its project exclusively. A run never raises once its input
has been validated: the outcome is only visible through the project's
status, which the change bus pushes to observers. There is no retry; a
failed project stays in `error` and a new attempt needs a new project.
"""

import logging
from typing import Any, Mapping, Optional

from fastapi import BackgroundTasks
from pydantic import BaseModel
from sqlalchemy.orm import Session

import app.core.notifications  # noqa: F401  (registers change capture)
from app.core.config import settings
from app.core.database import SessionLocal
from app.core.redis import RenderQueue
from app.models.asset import Asset
from app.services.asset_store import AssetStore
from app.services.project_state import InvalidTransition, ProjectNotFound, ProjectStateMachine
from app.services.render_engine import (
    RenderEngine,
    RenderFailed,
    RenderRequest,
    RenderResult,
    get_render_engine,
    render_with_timeout,
)
from app.services.trial_service import decrement_trial_clips, record_usage

logger = logging.getLogger(__name__)


class MissingParameters(Exception):
    pass


class PipelineFailure(Exception):
    pass


class SchedulingFailed(Exception):
    pass


def _as_dict(value: Any) -> Optional[dict]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Mapping):
        return dict(value)
    return None


def validate_parameters(project_id: Any, listing_data: Any, project_config: Any) -> tuple[str, dict, dict]:
    """Check the run inputs. Raises MissingParameters; touches no state."""
    missing = []
    if not project_id or not isinstance(project_id, str):
        missing.append("projectId")
    listing = _as_dict(listing_data)
    if not listing:
        missing.append("listingData")
    config = _as_dict(project_config)
    if not config:
        missing.append("projectConfig")

    if missing:
        raise MissingParameters(f"Missing required parameters: {', '.join(missing)}")
    return project_id, listing, config


class PipelineOrchestrator:
    def __init__(
        self,
        session_factory=SessionLocal,
        render_engine: Optional[RenderEngine] = None,
        asset_store: Optional[AssetStore] = None,
        render_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.render_engine = render_engine or get_render_engine()
        self.asset_store = asset_store or AssetStore()
        self.render_timeout = settings.RENDER_TIMEOUT_SECONDS if render_timeout is None else render_timeout

    def run(self, project_id: str, listing_data: Any, project_config: Any) -> Optional[str]:
        """
        Run the pipeline for one project.

        Returns the terminal status ("done" / "error"), or None when the
        run was abandoned because the project was missing or not queued.

        Raises:
            MissingParameters: before any state is touched
        """
        project_id, listing, config = validate_parameters(project_id, listing_data, project_config)
        logger.info("Starting video generation for project %s", project_id)

        db = self.session_factory()
        try:
            user_id = self._start(db, project_id)
            if user_id is None:
                return None

            try:
                assets = self._persist_assets(db, project_id, listing.get("images"))
                result = self._render(project_id, listing, config, assets)
                self._complete(db, project_id, user_id, result)
            except Exception as e:
                db.rollback()
                logger.error("Video generation failed for project %s: %s", project_id, e)
                self._fail(db, project_id)
                return "error"

            logger.info("Video generation completed for project %s", project_id)
            return "done"
        finally:
            db.close()

    def _start(self, db: Session, project_id: str) -> Optional[str]:
        try:
            project = ProjectStateMachine.transition(db, project_id, "rendering")
            user_id = project.user_id
            db.commit()
            return user_id
        except (ProjectNotFound, InvalidTransition) as e:
            db.rollback()
            logger.warning("Pipeline not started for project %s: %s", project_id, e)
        except Exception:
            db.rollback()
            logger.exception("Could not move project %s to rendering", project_id)
        return None

    def _persist_assets(self, db: Session, project_id: str, images: Any) -> list:
        if images is None:
            return []
        if not isinstance(images, list) or not all(isinstance(url, str) and url.strip() for url in images):
            raise PipelineFailure("listingData.images must be a list of image URLs")
        if not images:
            return []
        try:
            rows = self.asset_store.prepare_images(project_id, images)
            db.add_all([Asset(project_id=project_id, **row) for row in rows])
            db.commit()
        except Exception as e:
            raise PipelineFailure(f"Asset persistence failed: {e}") from e

        logger.info("Stored %s assets for project %s", len(rows), project_id)
        return rows

    def _render(self, project_id: str, listing: dict, config: dict, assets: list) -> RenderResult:
        request = RenderRequest(
            project_id=project_id,
            listing_data=listing,
            project_config=config,
            assets=assets,
        )
        try:
            return render_with_timeout(self.render_engine, request, self.render_timeout)
        except RenderFailed:
            raise
        except Exception as e:
            raise RenderFailed(str(e)) from e

    def _complete(self, db: Session, project_id: str, user_id: str, result: RenderResult) -> None:
        ProjectStateMachine.transition(db, project_id, "done")
        if result.video_url:
            db.add(Asset(project_id=project_id, url=result.video_url, type="video", meta=result.meta or None))
        record_usage(db, user_id, "render", project_id=project_id)
        decrement_trial_clips(db, user_id)
        db.commit()

    def _fail(self, db: Session, project_id: str) -> None:
        try:
            ProjectStateMachine.transition(db, project_id, "error")
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Could not mark project %s as error", project_id)


def run_pipeline(project_id: str, listing_data: dict, project_config: dict) -> Optional[str]:
    """Entry point for background tasks and render workers."""
    return PipelineOrchestrator().run(project_id, listing_data, project_config)


def schedule_pipeline(
    background_tasks: BackgroundTasks,
    project_id: str,
    listing_data: dict,
    project_config: dict,
    mode: Optional[str] = None,
) -> str:
    """
    Hand a validated run to the background. Returns immediately.

    inline: FastAPI runs it in the threadpool after the response is sent.
    queue:  pushed to the Redis render queue for the render workers.
    """
    mode = mode or settings.PIPELINE_MODE
    if mode == "queue":
        if not RenderQueue.enqueue(project_id, listing_data, project_config):
            raise SchedulingFailed("Render queue unavailable")
        return "queued"

    background_tasks.add_task(run_pipeline, project_id, listing_data, project_config)
    return "scheduled"
