import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from autobuild.database import init_db


@pytest.fixture
async def engine(tmp_path):
    # A file database so the pipeline's separate sessions see each other's writes
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'autobuild.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
