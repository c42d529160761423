import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import clinic.models  # noqa: F401  (registers the tables)
from clinic.config import Settings
from clinic.database import Base
from clinic.services.directory import SqlDirectory


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}",
        upload_dir=str(tmp_path / "uploads"),
        blob_base_url="http://files.test",
        jwt_secret_key="test-secret",
        max_failed_logins=3,
        login_lockout_seconds=300,
    )


@pytest.fixture
async def engine(settings):
    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def directory(session_factory, settings):
    return SqlDirectory(session_factory, settings)


@pytest.fixture
def make_directory(session_factory, settings):
    """Build a directory of a test subclass sharing the same database."""
    def build(cls=SqlDirectory):
        return cls(session_factory, settings)
    return build
