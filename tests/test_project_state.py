import pytest

from app.core.database import SessionLocal
from app.models.project import Project
from app.services.project_state import (
    InvalidTransition,
    ProjectNotFound,
    ProjectStateMachine,
    can_transition,
)


def reload_status(project_id: str) -> str:
    with SessionLocal() as session:
        return session.get(Project, project_id).status


@pytest.mark.parametrize(
    "current, target",
    [("idle", "queued"), ("queued", "rendering"), ("rendering", "done"), ("rendering", "error")],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        ("queued", "done"),
        ("queued", "error"),
        ("idle", "rendering"),
        ("rendering", "queued"),
        ("done", "rendering"),
        ("error", "queued"),
        ("done", "error"),
        ("queued", "queued"),
    ],
)
def test_disallowed_transitions(current, target):
    assert not can_transition(current, target)


def test_transition_updates_status_and_timestamp(db, make_project):
    project = make_project(status="queued")
    before = project.updated_at

    moved = ProjectStateMachine.transition(db, project.id, "rendering")
    db.commit()

    assert moved.status == "rendering"
    assert moved.updated_at >= before
    assert reload_status(project.id) == "rendering"


def test_invalid_transition_leaves_status(db, make_project):
    project = make_project(status="done")

    with pytest.raises(InvalidTransition) as exc:
        ProjectStateMachine.transition(db, project.id, "rendering")
    db.rollback()

    assert exc.value.current == "done"
    assert exc.value.target == "rendering"
    assert reload_status(project.id) == "done"


def test_transition_reads_committed_status(db, make_project):
    project = make_project(status="queued")

    # Another session moves the project on; our stale identity-map copy must not win
    with SessionLocal() as other:
        ProjectStateMachine.transition(other, project.id, "rendering")
        other.commit()

    with pytest.raises(InvalidTransition):
        ProjectStateMachine.transition(db, project.id, "rendering")


def test_unknown_project(db):
    with pytest.raises(ProjectNotFound):
        ProjectStateMachine.transition(db, "does-not-exist", "rendering")
