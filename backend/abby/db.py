from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from abby.config import get_settings
from abby.errors import ConflictError

settings = get_settings()

class Base(DeclarativeBase):
    pass

engine = create_async_engine(settings.database.url, echo=settings.database.echo, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_db():
    async with SessionLocal() as session:
        yield session

async def commit_or_conflict(db: AsyncSession, detail: str) -> None:
    """커밋하고, 유니크 제약 위반은 ConflictError 로 바꿔서 올린다."""
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(detail) from e
