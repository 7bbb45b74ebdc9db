from typing import Iterable, Optional

from fastapi import Depends
from jose import JWTError
from fastapi.security import OAuth2PasswordBearer
from pydantic import ValidationError


from techmarket.auth import decode_access_token
from techmarket.http_exception import CredentialsInvalidException, ForbiddenException
from techmarket.models import UserRole
from techmarket.schemas import CurrentUser

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token", auto_error=False)


def user_from_token(token: str) -> CurrentUser:
    credentials_exception = CredentialsInvalidException("Token JWT inválido ou expirado")
    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    user_id = payload.get("sub")
    username = payload.get("username")
    role = payload.get("role")
    if not user_id or not username or not role:
        raise CredentialsInvalidException("Token JWT inválido: informações ausentes")

    try:
        return CurrentUser(id=int(user_id), username=username, role=role)
    except (ValueError, ValidationError):
        raise credentials_exception


# Identidade vem só do token; quem precisa do registro consulta o banco
async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    return user_from_token(token)


async def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme)) -> Optional[CurrentUser]:
    if not token:
        return None
    return user_from_token(token)


class RoleChecker:
    def __init__(self, allowed_roles: Iterable[UserRole]):
        self.allowed_roles = set(allowed_roles)

    def check(self, user: Optional[CurrentUser]) -> CurrentUser:
        if user is None or not user.role:
            raise ForbiddenException("Acesso negado: usuário não autenticado.")
        # Conjunto vazio: qualquer usuário autenticado passa
        if self.allowed_roles and user.role not in self.allowed_roles:
            raise ForbiddenException("Acesso negado: perfil não autorizado.")
        return user

    def __call__(self, user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        return self.check(user)

# Instâncias prontas para usar nas rotas
allow_admin_only = RoleChecker([UserRole.ADMIN])
allow_customer = RoleChecker([UserRole.USER])
allow_authenticated = RoleChecker([]) # Qualquer perfil
