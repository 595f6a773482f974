import asyncio
import os
import sys
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

# ---- backend 경로 추가 (abby 패키지 import 용) ----
current_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.abspath(os.path.join(current_dir, ".."))
sys.path.insert(0, project_root)

from abby.config import get_settings  # noqa: E402
from abby.db import Base  # noqa: E402
import abby.models  # noqa: E402,F401  (테이블 등록)

# Alembic 설정 객체
config = context.config

# logging 설정
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# 대상 메타데이터 (모든 모델의 Base.metadata)
target_metadata = Base.metadata


def get_db_url() -> str:
    """
    DB URL 우선순위:
    1) 환경변수 ALEMBIC_DB_URL
    2) 앱 설정 ASYNC_DATABASE_URL
    """
    return os.getenv("ALEMBIC_DB_URL") or get_settings().database.url


def run_migrations_offline() -> None:
    """offline 모드 (SQL 출력 전용)"""
    context.configure(
        url=get_db_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """online 모드 (async 드라이버로 실제 DB에 적용)"""
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_db_url()

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
