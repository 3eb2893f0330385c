from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.DATABASE_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as s:
        yield s

def import_models():
    # registers every table on Base.metadata
    from clubreach.modules.directory import models as _directory  # noqa: F401
    from clubreach.modules.messaging import models as _messaging  # noqa: F401
    from clubreach.modules.outreach import models as _outreach  # noqa: F401
    from clubreach.modules.events import outbox as _outbox  # noqa: F401

async def init_models():
    ## In dev-only "create_all" mode, keep old behavior; otherwise, migrations own the schema.
    if settings.DB_MANAGE == "create_all":
        import_models()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
