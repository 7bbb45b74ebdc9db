from typing import List, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from techmarket import models, schemas
from techmarket.auth import get_password_hash
from techmarket.cache import Cache, USERS_ALL, user_key
from techmarket.http_exception import (
    BusinessRuleException,
    ForbiddenException,
    InternalServerErrorException,
    ResourceNotFoundException,
    ValidationException,
)


def _check_id(user_id: int) -> None:
    if not isinstance(user_id, int) or user_id <= 0:
        raise ValidationException("ID do usuário inválido")


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[models.User]:
    result = await db.execute(select(models.User).where(models.User.username == username))
    return result.scalars().first()


async def create_user(
    db: AsyncSession,
    cache: Cache,
    user_in: schemas.UserCreate,
    current_user: Optional[schemas.CurrentUser] = None,
) -> schemas.UserResponse:
    # Cadastro aberto cria cliente; só admin cria outro admin
    if user_in.role == models.UserRole.ADMIN and (
        current_user is None or current_user.role != models.UserRole.ADMIN
    ):
        logger.warning(f"Tentativa de criar admin sem permissão: {user_in.username}")
        raise ForbiddenException("Apenas administradores podem criar administradores")

    if await get_user_by_username(db, user_in.username):
        raise BusinessRuleException("Username já existe")

    new_user = models.User(
        username=user_in.username,
        hashed_password=get_password_hash(user_in.password),
        role=user_in.role,
    )
    db.add(new_user)
    try:
        await db.commit()
        await db.refresh(new_user)
    except IntegrityError:
        await db.rollback()
        raise BusinessRuleException("Username já existe")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Erro ao criar usuário")
        raise InternalServerErrorException("Erro ao criar usuário")

    await cache.delete(USERS_ALL)
    logger.info(f"Usuário criado: {new_user.username} (ID {new_user.id})")
    return schemas.UserResponse.model_validate(new_user)


async def list_users(db: AsyncSession, cache: Cache) -> List[schemas.UserResponse]:
    async def load():
        try:
            result = await db.execute(select(models.User).order_by(models.User.id))
        except SQLAlchemyError:
            logger.exception("Erro ao buscar usuários")
            raise InternalServerErrorException("Erro ao buscar usuários")
        return [schemas.UserResponse.model_validate(u).model_dump(mode="json") for u in result.scalars().all()]

    data = await cache.get_or_set(USERS_ALL, load)
    return [schemas.UserResponse.model_validate(u) for u in data]


async def get_user(db: AsyncSession, cache: Cache, user_id: int) -> schemas.UserResponse:
    _check_id(user_id)

    async def load():
        try:
            user = await db.get(models.User, user_id)
        except SQLAlchemyError:
            logger.exception(f"Erro ao buscar usuário ID {user_id}")
            raise InternalServerErrorException("Erro ao buscar usuário")
        if not user:
            raise ResourceNotFoundException("Usuário não encontrado")
        return schemas.UserResponse.model_validate(user).model_dump(mode="json")

    data = await cache.get_or_set(user_key(user_id), load)
    return schemas.UserResponse.model_validate(data)


async def update_user(
    db: AsyncSession, cache: Cache, user_id: int, user_in: schemas.UserUpdate
) -> schemas.UserResponse:
    _check_id(user_id)

    user = await db.get(models.User, user_id)
    if not user:
        raise ResourceNotFoundException("Usuário não encontrado")

    # Atualiza campos se enviados
    if user_in.username and user_in.username != user.username:
        if await get_user_by_username(db, user_in.username):
            raise BusinessRuleException("Username já existe")
        user.username = user_in.username
    if user_in.role:
        user.role = user_in.role

    # Se enviou senha nova, faz o hash
    if user_in.password:
        user.hashed_password = get_password_hash(user_in.password)

    try:
        await db.commit()
        await db.refresh(user)
    except IntegrityError:
        await db.rollback()
        raise BusinessRuleException("Username já existe")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Erro ao atualizar usuário ID {user_id}")
        raise InternalServerErrorException("Erro ao atualizar usuário")

    await cache.delete(USERS_ALL, user_key(user_id))
    logger.info(f"Usuário atualizado: ID {user_id}")
    return schemas.UserResponse.model_validate(user)


async def delete_user(db: AsyncSession, cache: Cache, user_id: int) -> schemas.MessageResponse:
    _check_id(user_id)

    user = await db.get(models.User, user_id)
    if not user:
        raise ResourceNotFoundException("Usuário não encontrado")

    # Usuário com vendas não pode ser removido (histórico)
    has_sales = await db.execute(
        select(models.Sale.id).where(models.Sale.user_id == user_id).limit(1)
    )
    if has_sales.first() is not None:
        raise BusinessRuleException("Usuário possui dependências e não pode ser removido")

    try:
        await db.delete(user)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise BusinessRuleException("Usuário possui dependências e não pode ser removido")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Erro ao remover usuário ID {user_id}")
        raise InternalServerErrorException("Erro ao remover usuário")

    await cache.delete(USERS_ALL, user_key(user_id))
    logger.info(f"Usuário removido: ID {user_id}")
    return schemas.MessageResponse(message="Usuário removido com sucesso")
