import pytest

from errors import ValidationError
from links import add_prerequisite, resolve_owned_ids
from models import Project, Skill, User


@pytest.fixture
def two_users(db):
    ana = User(provider_id="ana")
    luis = User(provider_id="luis")
    db.add_all([ana, luis])
    db.flush()
    return ana, luis


def test_resolve_owned_ids_filters_dedupes_and_keeps_order(db, two_users):
    ana, luis = two_users
    mine = [Project(user_id=ana.id, name=f"P{i}") for i in range(3)]
    theirs = Project(user_id=luis.id, name="Ajeno")
    db.add_all(mine + [theirs])
    db.flush()

    ids = [mine[2].id, theirs.id, mine[0].id, mine[2].id, 999]
    assert resolve_owned_ids(db, ana, Project, ids) == [mine[2].id, mine[0].id]
    assert resolve_owned_ids(db, ana, Project, None) == []


def test_resolve_owned_ids_caps_at_fifty(db, two_users):
    ana, _ = two_users
    projects = [Project(user_id=ana.id, name=f"P{i}") for i in range(55)]
    db.add_all(projects)
    db.flush()

    assert len(resolve_owned_ids(db, ana, Project, [p.id for p in projects])) == 50


def test_prerequisite_rejects_self_and_cycles(db, two_users):
    ana, _ = two_users
    a, b = Skill(user_id=ana.id, name="A"), Skill(user_id=ana.id, name="B")
    db.add_all([a, b])
    db.flush()

    add_prerequisite(db, ana, b, a)
    db.flush()

    with pytest.raises(ValidationError):
        add_prerequisite(db, ana, a, b)
    with pytest.raises(ValidationError):
        add_prerequisite(db, ana, a, a)
