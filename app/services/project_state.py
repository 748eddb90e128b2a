from sqlalchemy.orm import Session

from app.core.timezone import get_utc_now
from app.models.project import Project

# status -> statuses it may move to
ALLOWED_TRANSITIONS = {
    "idle": {"queued"},
    "queued": {"rendering"},
    "rendering": {"done", "error"},
    "done": set(),
    "error": set(),
}


class ProjectNotFound(Exception):
    pass


class InvalidTransition(Exception):
    def __init__(self, project_id: str, current: str, target: str):
        super().__init__(f"Project {project_id}: cannot move from '{current}' to '{target}'")
        self.project_id = project_id
        self.current = current
        self.target = target


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class ProjectStateMachine:
    """Forward-only status transitions. The caller owns the transaction."""

    @staticmethod
    def transition(db: Session, project_id: str, target: str) -> Project:
        project = (
            db.query(Project)
            .filter(Project.id == project_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if not project:
            raise ProjectNotFound(project_id)

        if not can_transition(project.status, target):
            raise InvalidTransition(project_id, project.status, target)

        project.status = target
        project.updated_at = get_utc_now()
        db.flush()
        return project
