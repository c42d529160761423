from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from clinic.config import get_settings

settings = get_settings()

engine = create_async_engine(settings.database_url)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def init_models(bind=None) -> None:
    """Create every table the directory needs."""
    import clinic.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def get_directory():
    """The directory wired to the configured database and upload dir."""
    from clinic.services.directory import SqlDirectory

    return SqlDirectory(async_session, settings)
