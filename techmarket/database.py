from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase


from techmarket.config import settings


def build_engine(url: str) -> AsyncEngine:
    # postgresql+asyncpg://... em produção, sqlite+aiosqlite://... em dev/testes
    new_engine = create_async_engine(url, echo=False)

    if new_engine.dialect.name == "sqlite":
        # SQLite só aplica chaves estrangeiras com o pragma ligado por conexão
        @event.listens_for(new_engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine(settings.DATABASE_URL)

SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

class Base(DeclarativeBase):
    pass

# Dependência para injetar a sessão nas rotas
async def get_db():
    async with SessionLocal() as db:
        yield db
