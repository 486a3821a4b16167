import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "true")

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.api.deps import get_db, get_session_factory  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.main import app  # noqa: E402
from app.models.batch import Batch, Subject  # noqa: E402
from app.models.time_slot import TimeSlot  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.services.operation_log import OperationLog  # noqa: E402
from app.services.operations import OperationCoordinator  # noqa: E402


@pytest.fixture()
def engine():
    # One shared in-memory database per test; StaticPool hands every session the same connection.
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def coordinator():
    return OperationCoordinator(log=OperationLog())


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def make_user(db, role: UserRole, name: str, department: str | None = "CSE") -> User:
    user = User(name=name, email=f"{name.lower().replace(' ', '.')}@example.edu", role=role, department=department)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_batch(db, name: str, department: str | None = "CSE") -> Batch:
    batch = Batch(name=name, department=department)
    db.add(batch)
    db.commit()
    db.refresh(batch)
    return batch


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, role=user.role.value)}"}


@pytest.fixture()
def campus(db):
    """Users, batches, subjects and the standard teaching slots."""
    slots = {}
    for order, (name, start, end) in enumerate(
        [
            ("P1", "09:30", "10:30"),
            ("P2", "10:30", "11:30"),
            ("P3", "11:30", "12:30"),
            ("P4", "14:00", "15:00"),
            ("MODULE", "09:00", "12:00"),
        ]
    ):
        start_minutes = int(start[:2]) * 60 + int(start[3:])
        end_minutes = int(end[:2]) * 60 + int(end[3:])
        slot = TimeSlot(
            name=name,
            start_time=start,
            end_time=end,
            duration_minutes=end_minutes - start_minutes,
            sort_order=order,
        )
        db.add(slot)
        slots[name] = slot
    db.commit()

    b1 = make_batch(db, "B1")
    b2 = make_batch(db, "B2")
    b3 = make_batch(db, "B3", department="ECE")
    subjects = {}
    for code in ("S1", "S2", "S3"):
        subject = Subject(code=code, name=f"Subject {code}", batch_id=b1.id)
        db.add(subject)
        subjects[code] = subject
    db.commit()

    return SimpleNamespace(
        admin=make_user(db, UserRole.admin, "Admin One"),
        scheduler=make_user(db, UserRole.scheduler, "Scheduler One"),
        other_scheduler=make_user(db, UserRole.scheduler, "Scheduler Two"),
        student=make_user(db, UserRole.student, "Student One"),
        f1=make_user(db, UserRole.faculty, "Faculty One"),
        f2=make_user(db, UserRole.faculty, "Faculty Two"),
        b1=b1,
        b2=b2,
        b3=b3,
        subjects=subjects,
        slots=slots,
    )


@pytest.fixture()
def factory(db):
    return SimpleNamespace(
        user=lambda role, name, department="CSE": make_user(db, role, name, department),
        batch=lambda name, department="CSE": make_batch(db, name, department),
    )


@pytest.fixture()
def headers():
    return auth_headers
