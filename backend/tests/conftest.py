"""
Shared fixtures for the scheduling core tests.

Every test gets its own in-memory SQLite database and an in-memory stand-in
for the Redis scheduling mutex.
"""

from __future__ import annotations

from datetime import time, timedelta
import os
from typing import Callable, Dict, Iterator, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("MATHBRIDGE_ENVIRONMENT", "test")

from mathbridge.core import scheduling_lock  # noqa: E402
from mathbridge.database import Base  # noqa: E402
import mathbridge.models  # noqa: E402,F401
from mathbridge.models.package import Package  # noqa: E402
from mathbridge.schemas.contract import ContractCreate  # noqa: E402
from mathbridge.services.contract_service import ContractService  # noqa: E402
from mathbridge.services.reschedule_service import RescheduleService  # noqa: E402

from tests.utils.scheduling_builders import (  # noqa: E402
    CHILD_ID,
    MONDAY,
    PARENT_ID,
    SUBSTITUTE_ID,
    TUTOR_ID,
    WEDNESDAY,
    next_monday,
)


class FakeRedis:
    """Just enough of redis.Redis for SET NX EX / DELETE."""

    def __init__(self) -> None:
        self.store: Dict[str, str] = {}
        self.expire_times: Dict[str, int] = {}

    def set(self, key: str, value: str, nx: bool = False, ex: Optional[int] = None) -> bool:
        if nx and key in self.store:
            return False
        self.store[key] = value
        if ex is not None:
            self.expire_times[key] = ex
        return True

    def delete(self, key: str) -> int:
        self.expire_times.pop(key, None)
        return 1 if self.store.pop(key, None) is not None else 0


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    redis = FakeRedis()
    monkeypatch.setattr(scheduling_lock, "_get_sync_redis", lambda: redis)
    return redis


@pytest.fixture(autouse=True)
def _redis_for_locks(fake_redis: FakeRedis) -> FakeRedis:
    return fake_redis


@pytest.fixture
def engine() -> Iterator[Engine]:
    test_engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Iterator[Session]:
    """Create a new database session for each test."""
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def make_package(db: Session) -> Callable[..., Package]:
    def _make(session_count: int = 4, max_reschedule: int = 2, name: str = "Standard") -> Package:
        package = Package(
            name=name,
            session_count=session_count,
            sessions_per_week=2,
            max_reschedule=max_reschedule,
            duration_days=28,
        )
        db.add(package)
        db.commit()
        return package

    return _make


@pytest.fixture
def package(make_package: Callable[..., Package]) -> Package:
    return make_package()


@pytest.fixture
def contract_service(db: Session) -> ContractService:
    return ContractService(db)


@pytest.fixture
def reschedule_service(db: Session) -> RescheduleService:
    return RescheduleService(db)


@pytest.fixture
def contract_payload(package: Package) -> Callable[..., ContractCreate]:
    """Mon/Wed 16:00-17:30 over four weeks starting next Monday."""

    def _payload(**overrides) -> ContractCreate:
        start = next_monday()
        data = dict(
            parent_id=PARENT_ID,
            child_id=CHILD_ID,
            package_id=package.id,
            main_tutor_id=TUTOR_ID,
            substitute_tutor1_id=SUBSTITUTE_ID,
            start_date=start,
            end_date=start + timedelta(days=27),
            start_time=time(16, 0),
            end_time=time(17, 30),
            days_of_week=MONDAY | WEDNESDAY,
        )
        data.update(overrides)
        return ContractCreate(**data)

    return _payload


@pytest.fixture
def active_contract_id(
    contract_service: ContractService, contract_payload: Callable[..., ContractCreate]
) -> str:
    contract_id = contract_service.create_contract(contract_payload())
    contract_service.update_status(contract_id, "active")
    return contract_id
