import asyncio
import os

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("CREATE_TABLES_ON_STARTUP", "false")

from meetdesk.core.db import build_session_maker, init_db  # noqa: E402
from meetdesk.models.user import Role, User  # noqa: E402
from meetdesk.services import events  # noqa: E402


@pytest.fixture
def session_maker(tmp_path):
    # File-backed so concurrent sessions get their own connections; NullPool keeps
    # connections from outliving the event loop of each asyncio.run call.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'meetdesk-test.db'}", poolclass=NullPool)
    asyncio.run(init_db(engine))
    return build_session_maker(engine)


async def _add_user(session_maker, **fields) -> User:
    async with session_maker() as session:
        user = User(**fields)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest.fixture
def teacher(session_maker) -> User:
    return asyncio.run(_add_user(session_maker, email="t1@school.edu", full_name="Teacher One", role=Role.TEACHER))


@pytest.fixture
def other_teacher(session_maker) -> User:
    return asyncio.run(_add_user(session_maker, email="t2@school.edu", full_name="Teacher Two", role=Role.TEACHER))


@pytest.fixture
def admin(session_maker) -> User:
    return asyncio.run(_add_user(session_maker, email="admin@school.edu", full_name="Admin", role=Role.ADMIN))


@pytest.fixture
def student_user(session_maker) -> User:
    return asyncio.run(_add_user(session_maker, email="ann@student.edu", full_name="Ann Student", role=Role.STUDENT))


@pytest.fixture(autouse=True)
def clear_event_subscribers():
    yield
    events._subscribers.clear()
