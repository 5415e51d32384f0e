"""
Shared fixtures: a throwaway SQLite file database per test, the audit writer
bound to it, and factories for principals and tagged resources.
"""

import os

# settings are read at import time
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_DSN", "sqlite+aiosqlite:///./.pytest-authz.db")
os.environ.setdefault("DB_MANAGE", "create_all")
os.environ.setdefault("EVENT_BUS_PROVIDER", "noop")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.db import init_models
from app.core.security import issue_token
from app.modules.audit.service import AuditTrailWriter
from app.modules.identity.schemas import PrincipalCreate
from app.modules.identity.service import IdentityService
from app.modules.policy.service import PolicyService
from app.modules.resources.schemas import ResourceTags
from app.modules.resources.service import ResourceDirectory


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'authz.db'}")
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessionmaker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(sessionmaker):
    async with sessionmaker() as s:
        yield s


@pytest_asyncio.fixture
async def audit(sessionmaker):
    writer = AuditTrailWriter(sessionmaker, max_attempts=3, backoff_seconds=0)
    yield writer
    await writer.drain()


@pytest_asyncio.fixture
async def policies(session):
    await PolicyService(session).seed_defaults()
    return session


@pytest.fixture
def make_principal(session):
    async def _make(role="doctor", email=None, attributes=None, assigned=()):
        payload = PrincipalCreate(
            email=email or f"{role}-{os.urandom(4).hex()}@hospital.test",
            role=role,
            attributes=attributes if attributes is not None else {"hospitalId": "HOS-001"},
            assigned_patients=list(assigned),
        )
        return await IdentityService(session).register(payload)
    return _make


@pytest.fixture
def tag_resource(session):
    async def _tag(resource_type="EHR", resource_id="ehr-1", patient_id="PAT-1", attributes=None, consents=None):
        tags = ResourceTags(
            patient_id=patient_id,
            attributes=attributes if attributes is not None else {"hospitalId": "HOS-001"},
            consents=consents or {},
        )
        return await ResourceDirectory(session).upsert(resource_type, resource_id, tags)
    return _tag


@pytest.fixture
def token_for():
    def _token(principal, **kw):
        return issue_token(principal.id, **kw)
    return _token
