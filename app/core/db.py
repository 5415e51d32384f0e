from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.DATABASE_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as session:
        yield session

def import_models():
    # every mapped class must be registered on Base.metadata before create_all
    from app.modules.identity import models as _identity  # noqa: F401
    from app.modules.policy import models as _policy  # noqa: F401
    from app.modules.resources import models as _resources  # noqa: F401
    from app.modules.audit import models as _audit  # noqa: F401
    from app.modules.remediation import models as _remediation  # noqa: F401
    from app.modules.events import outbox as _outbox  # noqa: F401

async def init_models(bind=None):
    ## In dev-only "create_all" mode, build the schema; otherwise, migrations own it.
    if settings.DB_MANAGE.lower() != "create_all":
        return
    import_models()
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
