from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from techmarket import models, schemas
from techmarket.auth import create_access_token, verify_password
from techmarket.http_exception import CredentialsInvalidException
from techmarket.services.users import get_user_by_username


async def authenticate_user(db: AsyncSession, username: str, password: str) -> Optional[models.User]:
    user = await get_user_by_username(db, username)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


async def login(db: AsyncSession, username: str, password: str) -> schemas.AuthResponse:
    user = await authenticate_user(db, username, password)
    if not user:
        # Mesma resposta para usuário inexistente e senha errada
        logger.warning(f"Falha de login para '{username}'")
        raise CredentialsInvalidException("Credenciais inválidas")

    access_token = create_access_token(
        data={"sub": str(user.id), "username": user.username, "role": user.role.value}
    )
    logger.info(f"Login efetuado: {user.username} (ID {user.id})")
    return schemas.AuthResponse(
        access_token=access_token,
        user=schemas.UserResponse.model_validate(user),
    )
