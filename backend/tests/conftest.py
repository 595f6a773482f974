import asyncio
import os
import tempfile

# abby 를 import 하기 전에 환경변수를 고정한다 (get_settings 는 캐시됨)
_BOOT_DIR = tempfile.mkdtemp(prefix="abby-tests-")
os.environ["ASYNC_DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_BOOT_DIR, 'boot.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["PASSING_SCORE"] = "70"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

import abby.models  # noqa: E402,F401
from abby.db import Base, get_db  # noqa: E402
from abby.main import app  # noqa: E402


@pytest.fixture
def session_factory(tmp_path):
    """테스트마다 새 SQLite 파일 DB"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)

    async def create_all():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_all())
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    asyncio.run(engine.dispose())


@pytest.fixture
def in_db(session_factory):
    """`in_db(lambda db: coro)` : 새 세션에서 코루틴을 실행하고 결과를 돌려준다."""
    def run(fn):
        async def scenario():
            async with session_factory() as db:
                return await fn(db)
        return asyncio.run(scenario())
    return run


@pytest.fixture
def api(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
