from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from techmarket.auth import get_password_hash
from techmarket.cache import cache
from techmarket.config import settings
from techmarket.database import Base, SessionLocal, engine
from techmarket.models import User, UserRole


async def ensure_default_admin(db: AsyncSession) -> bool:
    """Cria o admin padrão se não houver NENHUM usuário. Retorna True se criou."""
    result = await db.execute(select(User.id).limit(1))
    if result.first() is not None:
        logger.info("O sistema já possui usuários cadastrados.")
        return False

    logger.info("Banco de usuários vazio: criando usuário admin padrão...")
    db.add(User(
        username=settings.DEFAULT_ADMIN_USERNAME,
        hashed_password=get_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
        role=UserRole.ADMIN,
    ))
    await db.commit()
    logger.info(f"Usuário '{settings.DEFAULT_ADMIN_USERNAME}' criado com sucesso!")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Criar tabelas ao iniciar (dev/teste rápido; em produção use Alembic)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as db:
        await ensure_default_admin(db)

    logger.info("TechMarket API pronta.")
    yield

    await cache.close()
    await engine.dispose()
    logger.info("Conexões encerradas.")
