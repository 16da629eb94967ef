import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import date, datetime  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from mentorslots.auth import create_identity_token  # noqa: E402
from mentorslots.clock import FixedClock, get_clock  # noqa: E402
from mentorslots.database import Base, build_engine, get_db  # noqa: E402
from mentorslots.main import app  # noqa: E402
from mentorslots.models import Account, TimeSlot  # noqa: E402
from mentorslots.permissions import CallerContext  # noqa: E402

SLOT_DAY = date(2024, 3, 1)


@pytest.fixture
def engine(tmp_path):
    # File-backed so that several sessions (and threads) share one database
    engine = build_engine(f"sqlite:///{tmp_path / 'mentorslots-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    """Civil time (Asia/Seoul) 2024-03-01 08:00"""
    return FixedClock(datetime(2024, 3, 1, 8, 0))


@pytest.fixture
def make_account(db):
    counter = {"n": 0}

    def _make(role="student", tickets=0, name=None):
        counter["n"] += 1
        account = Account(
            name=name or f"{role}-{counter['n']}",
            role=role,
            current_tickets=tickets,
            class_name="A" if role == "student" else None,
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _make


@pytest.fixture
def make_slot(db):
    def _make(teacher, time_slot="10:00", slot_date=SLOT_DAY, session_period=None, block=None):
        from mentorslots.services.publication_scheduler import get_block_for_time

        slot = TimeSlot(
            date=slot_date,
            time_slot=time_slot,
            session_period=session_period or ("AM" if time_slot < "16:00" else "PM"),
            block=block or get_block_for_time(time_slot),
            teacher_id=teacher.id,
            max_capacity=1,
            current_reservations=0,
            is_available=True,
        )
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot

    return _make


@pytest.fixture
def caller_for():
    def _caller(account):
        return CallerContext(account_id=account.id, role=account.role, name=account.name)

    return _caller


@pytest.fixture
def auth_headers():
    def _headers(account):
        token = create_identity_token(account.id, account.role, account.name)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def client(session_factory, clock):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()
