from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import app.models  # noqa

from app.core.config import Settings
from app.core.errors import TransientFailure
from app.core.phone import PhoneNormalizer
from app.core.types import RoleProfile
from app.db.base import Base
from app.main import create_app
from app.models.enums import ProfileRole
from app.services.challenge_store import InMemoryChallengeStore
from app.services.identity_service import IdentityService
from app.services.profile_store import InMemoryProfileStore
from app.services.selected_role_store import InMemorySelectedRoleStore


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeGateway:
    """Captures dispatched codes; can be told to fail transiently N times."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []
        self.fail_next = 0

    async def send(self, phone: str, code: str) -> None:
        if self.fail_next > 0:
            self.fail_next -= 1
            raise TransientFailure()
        self.sent.append((phone, code))

    def last_code(self, phone: str) -> str:
        for p, code in reversed(self.sent):
            if p == phone:
                return code
        raise AssertionError(f"no code sent to {phone}")


class CodeQueue:
    """Deterministic code generator: pops queued codes, then counts up."""

    def __init__(self, *codes: str) -> None:
        self.codes = list(codes)
        self.n = 100000

    def push(self, code: str) -> None:
        self.codes.append(code)

    def __call__(self) -> str:
        if self.codes:
            return self.codes.pop(0)
        self.n += 1
        return str(self.n)


def profile(role: ProfileRole, name: str = "Test User", pid: str = None, suspended: bool = False) -> RoleProfile:
    return RoleProfile(role=role, profile_id=pid or f"{role.value}-1", display_name=name, suspended=suspended)


@pytest.fixture
def settings():
    return Settings(
        jwt_secret_key="test-secret",
        otp_hash_secret="test-pepper",
        backend_retry_backoff_seconds=0,
        database_url="sqlite://",
        log_level="WARNING",
    )


@pytest.fixture
def normalizer():
    return PhoneNormalizer(country_code="91", national_length=10, min_digits=7)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def codes():
    return CodeQueue()


@pytest.fixture
def profile_store():
    return InMemoryProfileStore()


@pytest.fixture
def selected_role_store():
    return InMemorySelectedRoleStore()


@pytest.fixture
def identity(settings, clock, gateway, codes, profile_store, selected_role_store):
    return IdentityService.build(
        settings,
        challenge_store=InMemoryChallengeStore(),
        profile_store=profile_store,
        selected_role_store=selected_role_store,
        gateway=gateway,
        clock=clock,
        code_generator=codes,
    )


@pytest.fixture
def client(identity, settings):
    app = create_app(identity=identity, settings=settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_profile():
    return profile
