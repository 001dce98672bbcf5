"""Async SQLAlchemy engine and session factory.

Usage in routes:
    from filedrop.database import get_db

    @router.get("/files")
    async def list_files(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(FileRecord))
        return result.scalars().all()
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from filedrop.config import settings


def build_engine(url: str):
    """Create the async engine. SQLite gets no connection-pool sizing."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
