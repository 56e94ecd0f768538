from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.POSTGRES_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as session:
        yield session

def import_models():
    # registers every table on Base.metadata
    from dental_funnel.modules.evaluations import models as _evaluations  # noqa: F401
    from dental_funnel.modules.leads import models as _leads  # noqa: F401
    from dental_funnel.modules.payments import models as _payments  # noqa: F401
    from dental_funnel.modules.auth import models as _auth  # noqa: F401
    from dental_funnel.modules.notifications import models as _notifications  # noqa: F401
    from dental_funnel.modules.events import outbox as _outbox  # noqa: F401

async def init_models():
    # In dev-only "create_all" mode tables are created on startup; otherwise migrations own the schema.
    if settings.DB_MANAGE.lower() == "create_all":
        import_models()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
