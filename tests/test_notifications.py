import json

from app.core.database import SessionLocal
from app.core.notifications import ChangeBus, Subscription, bus, sse_format
from app.models.project import Project
from app.services.project_state import ProjectStateMachine


def test_insert_published_on_commit(db):
    watcher = bus.subscribe("watcher", {"user_id": "user-1"})

    project = Project(user_id="user-1", title="Lakeside Cabin")
    db.add(project)
    db.flush()
    assert watcher.drain() == []

    db.commit()

    [change] = watcher.drain()
    assert change["event"] == "INSERT"
    assert change["table"] == "projects"
    assert change["old"] is None
    assert change["new"]["id"] == project.id
    assert change["new"]["status"] == "queued"
    assert change["commit_timestamp"]


def test_rollback_discards_changes(db, make_project):
    project = make_project()
    watcher = bus.subscribe("watcher")

    ProjectStateMachine.transition(db, project.id, "rendering")
    db.rollback()

    assert watcher.drain() == []
    with SessionLocal() as other:
        assert other.get(Project, project.id).status == "queued"


def test_update_carries_old_and_new(db, make_project):
    project = make_project()
    watcher = bus.subscribe("watcher", {"id": project.id})

    ProjectStateMachine.transition(db, project.id, "rendering")
    db.commit()

    [change] = watcher.drain()
    assert change["event"] == "UPDATE"
    assert change["old"]["status"] == "queued"
    assert change["new"]["status"] == "rendering"
    assert change["new"]["title"] == "Maple Street Home"


def test_delete_matched_on_old_row(db, make_project):
    project = make_project()
    watcher = bus.subscribe("watcher", {"id": project.id}, events=["DELETE"])

    db.delete(project)
    db.commit()

    [change] = watcher.drain()
    assert change["event"] == "DELETE"
    assert change["new"] is None
    assert change["old"]["id"] == project.id


def test_predicate_filters_other_rows(make_project):
    mine = bus.subscribe("mine", {"user_id": "user-1"})
    theirs = bus.subscribe("theirs", lambda row: row["user_id"] == "user-2")

    make_project(user_id="user-1")
    make_project(user_id="user-2")
    make_project(user_id="user-2")

    assert len(mine.drain()) == 1
    assert len(theirs.drain()) == 2


def test_per_row_order_preserved(db, make_project):
    project = make_project()
    watcher = bus.subscribe("watcher", {"id": project.id}, events=["UPDATE"])

    for target in ("rendering", "done"):
        ProjectStateMachine.transition(db, project.id, target)
        db.commit()

    statuses = [c["new"]["status"] for c in watcher.drain()]
    assert statuses == ["rendering", "done"]


def test_unchanged_update_not_published(db, make_project):
    project = make_project()
    watcher = bus.subscribe("watcher")

    project.title = project.title
    db.commit()

    assert watcher.drain() == []


def test_subscribe_is_idempotent_and_unsubscribe_stops_delivery():
    change_bus = ChangeBus()
    first = change_bus.subscribe("dashboard", {"user_id": "u"})
    second = change_bus.subscribe("dashboard", {"user_id": "someone-else"})
    assert first is second
    assert len(change_bus.subscriptions()) == 1

    change = {"event": "INSERT", "table": "projects", "new": {"user_id": "u"}, "old": None}
    assert change_bus.dispatch(change) == 1

    assert change_bus.unsubscribe("dashboard") is True
    assert change_bus.unsubscribe("dashboard") is False
    assert change_bus.dispatch(change) == 0
    assert first.drain() == [change]


def test_failing_predicate_does_not_block_others():
    change_bus = ChangeBus()
    change_bus.subscribe("broken", lambda row: row["missing"])
    healthy = change_bus.subscribe("healthy")

    change = {"event": "INSERT", "table": "projects", "new": {"id": "p"}, "old": None}
    assert change_bus.dispatch(change) == 1
    assert healthy.drain() == [change]


def test_subscription_event_filter():
    sub = Subscription("s", events=["update"])
    assert not sub.matches({"event": "INSERT", "new": {"id": "p"}, "old": None})
    assert sub.matches({"event": "UPDATE", "new": {"id": "p"}, "old": {"id": "p"}})


def test_next_event_times_out():
    assert Subscription("s").next_event(timeout=0.01) is None


def test_sse_format():
    frame = sse_format({"event": "UPDATE", "new": {"title": "Café"}})
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):])["new"]["title"] == "Café"
