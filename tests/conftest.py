# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import datetime

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("CACHE_SYNC_ENABLED", "false")

from ballot_stage.api.v1.dependencies import (  # noqa: E402
    get_cache_dep,
    get_lock_manager_dep,
    get_tally_queue_dep,
)
from ballot_stage.db.session import Base  # noqa: E402
from ballot_stage.db.session import get_db as app_get_session  # noqa: E402
from ballot_stage.main import app as fastapi_app  # noqa: E402
from ballot_stage.models import Award, Nominee, Vote, VoteBias  # noqa: E402
from ballot_stage.services.cache import CacheAdapter  # noqa: E402
from ballot_stage.services.circuit_breaker import (  # noqa: E402
    CircuitBreaker,
    get_cache_breaker,
    get_database_breaker,
)
from ballot_stage.services.local_store import LocalFallbackStore  # noqa: E402
from ballot_stage.services.locks import LockManager  # noqa: E402
from ballot_stage.services.tally_updates import TallyUpdateQueue  # noqa: E402

TEST_DB_URL = "sqlite://"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_session(engine: Engine, session_factory: sessionmaker[Session]) -> Iterator[Session]:
    # Services commit and roll back on their own, so tests run against real
    # transactions and the tables are emptied afterwards.
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(autouse=True)
def reset_breakers() -> Iterator[None]:
    get_database_breaker().reset()
    get_cache_breaker().reset()
    yield
    get_database_breaker().reset()
    get_cache_breaker().reset()


@pytest.fixture()
def cache() -> CacheAdapter:
    """Cache adapter backed only by a private in-process store."""
    return CacheAdapter(None, LocalFallbackStore(), CircuitBreaker("cache"))


@pytest.fixture()
def lock_manager(cache: CacheAdapter) -> LockManager:
    return LockManager(cache, retry_delay=0.001, max_attempts=20)


@pytest.fixture()
def tally_queue(cache: CacheAdapter, lock_manager: LockManager) -> Iterator[TallyUpdateQueue]:
    queue = TallyUpdateQueue(cache, lock_manager, backoff_base=0.0, workers=2)
    try:
        yield queue
    finally:
        queue.drain(timeout=5)
        queue.shutdown()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    cache: CacheAdapter,
    lock_manager: LockManager,
    tally_queue: TallyUpdateQueue,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    overrides: dict[Callable[..., object], Callable[..., object]] = {
        app_get_session: _get_session_override,
        get_cache_dep: lambda: cache,
        get_lock_manager_dep: lambda: lock_manager,
        get_tally_queue_dep: lambda: tally_queue,
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def make_award(db_session: Session) -> Callable[..., Award]:
    """Return a factory persisting awards with the given window settings."""

    def _make(
        title: str = "Best Picture",
        *,
        is_active: bool = True,
        voting_start_date: datetime | None = None,
        voting_end_date: datetime | None = None,
    ) -> Award:
        award = Award(
            title=title,
            is_active=is_active,
            voting_start_date=voting_start_date,
            voting_end_date=voting_end_date,
        )
        db_session.add(award)
        db_session.commit()
        db_session.refresh(award)
        return award

    return _make


@pytest.fixture()
def make_nominee(db_session: Session) -> Callable[[Award, str], Nominee]:
    def _make(award: Award, name: str) -> Nominee:
        nominee = Nominee(award_id=award.id, name=name)
        db_session.add(nominee)
        db_session.commit()
        db_session.refresh(nominee)
        return nominee

    return _make


@pytest.fixture()
def award(make_award: Callable[..., Award]) -> Award:
    """An open award with no voting window."""
    return make_award()


@pytest.fixture()
def nominees(award: Award, make_nominee: Callable[[Award, str], Nominee]) -> list[Nominee]:
    """Three nominees competing in ``award``."""
    return [make_nominee(award, name) for name in ("Alpha", "Beta", "Gamma")]


@pytest.fixture()
def cast_votes(db_session: Session) -> Callable[[Award, Nominee, int], list[Vote]]:
    """Return a helper inserting ``n`` ballots for a nominee from distinct voters."""
    serial = iter(range(1, 1_000_000))

    def _cast(award: Award, nominee: Nominee, n: int) -> list[Vote]:
        votes = [
            Vote(
                voter_id=f"seed-voter-{next(serial)}",
                award_id=award.id,
                nominee_id=nominee.id,
            )
            for _ in range(n)
        ]
        db_session.add_all(votes)
        db_session.commit()
        return votes

    return _cast


@pytest.fixture()
def add_bias(db_session: Session) -> Callable[..., VoteBias]:
    def _add(
        award: Award,
        nominee: Nominee,
        amount: int,
        reason: str = "Jury adjustment",
        *,
        is_active: bool = True,
    ) -> VoteBias:
        entry = VoteBias(
            award_id=award.id,
            nominee_id=nominee.id,
            bias_amount=amount,
            reason=reason,
            applied_by="admin-seed",
            is_active=is_active,
        )
        db_session.add(entry)
        db_session.commit()
        db_session.refresh(entry)
        return entry

    return _add
