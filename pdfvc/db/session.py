from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from pdfvc.core.config import settings

engine = create_async_engine(settings.db_url, echo=False)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


def make_sessionmaker(db_url: str) -> tuple[AsyncEngine, async_sessionmaker]:
    eng = create_async_engine(db_url, echo=False)
    return eng, async_sessionmaker(eng, expire_on_commit=False)
