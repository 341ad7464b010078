import pytest

import reporting.db.models  # noqa: F401
from reporting.core.config import Settings
from reporting.db.base import Base
from reporting.db.models.user import Department, Role, User
from reporting.db.session import make_engine, make_session_factory
from reporting.services.engine import ReportWorkflowEngine


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def enqueue(self, event):
        self.events.append(event)


class FailingDispatcher:
    def enqueue(self, event):
        raise ConnectionError("channel down")


USERS = {
    # name: (role, department, is_active)
    "u1": (Role.GENERAL_STAFF, Department.PROJECT_SUPPORT, True),
    "u2": (Role.GENERAL_STAFF, Department.PROJECT_SUPPORT, True),
    "m1": (Role.LINE_MANAGER, Department.PROJECT_SUPPORT, True),
    "m3": (Role.LINE_MANAGER, Department.PROJECT_SUPPORT, True),
    "m2": (Role.LINE_MANAGER, Department.DOC_MANAGEMENT, True),
    "m_off": (Role.LINE_MANAGER, Department.PROJECT_SUPPORT, False),
    "g1": (Role.GM, Department.QS, True),
}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        REDIS_URL="redis://127.0.0.1:1/0",
        NOTIFICATION_CHANNELS="email,push",
    )


@pytest.fixture
def session_factory(settings):
    engine = make_engine(settings)
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def users(session_factory):
    ids = {}
    db = session_factory()
    try:
        for name, (role, dept, active) in USERS.items():
            u = User(
                id=f"user-{name}",
                username=name,
                full_name=name.upper(),
                email=f"{name}@example.com",
                role=role,
                department=dept,
                is_active=active,
            )
            db.add(u)
            ids[name] = u.id
        db.commit()
    finally:
        db.close()
    return ids


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def engine(session_factory, settings, dispatcher):
    return ReportWorkflowEngine(session_factory, settings, dispatcher=dispatcher)


@pytest.fixture
def draft(engine, users):
    return engine.create_report(users["u1"], title="Monthly progress", content="All on track")


@pytest.fixture
def in_manager_review(engine, users, draft):
    return engine.submit(draft["id"], users["u1"])


@pytest.fixture
def in_gm_review(engine, users, in_manager_review):
    return engine.approve(in_manager_review["id"], users["m1"], "looks good")


def rows(session_factory, model, **filters):
    db = session_factory()
    try:
        return db.query(model).filter_by(**filters).all()
    finally:
        db.close()
