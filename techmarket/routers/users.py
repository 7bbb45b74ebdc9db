from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from techmarket.cache import Cache, get_cache
from techmarket.database import get_db
from techmarket import schemas
from techmarket.dependencies import allow_admin_only, get_optional_user
from techmarket.services import users as user_service

router = APIRouter(prefix="/users", tags=["Users"])

# 1. Cadastro (aberto; papel admin só com token de admin)
@router.post("/", response_model=schemas.UserResponse, status_code=201)
async def create_user(
    user_in: schemas.UserCreate,
    db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache),
    current_user: Optional[schemas.CurrentUser] = Depends(get_optional_user)
):
    return await user_service.create_user(db, cache, user_in, current_user)

# 2. Listar Usuários
@router.get("/", response_model=List[schemas.UserResponse], dependencies=[Depends(allow_admin_only)])
async def read_users(db: AsyncSession = Depends(get_db), cache: Cache = Depends(get_cache)):
    return await user_service.list_users(db, cache)

# 3. Obter um Usuário
@router.get("/{user_id}", response_model=schemas.UserResponse, dependencies=[Depends(allow_admin_only)])
async def read_user(user_id: int, db: AsyncSession = Depends(get_db), cache: Cache = Depends(get_cache)):
    return await user_service.get_user(db, cache, user_id)

# 4. Atualizar Usuário
@router.put("/{user_id}", response_model=schemas.UserResponse, dependencies=[Depends(allow_admin_only)])
async def update_user(user_id: int, user_in: schemas.UserUpdate, db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache)):
    return await user_service.update_user(db, cache, user_id, user_in)

# 5. Deletar Usuário (só se não tiver histórico)
@router.delete("/{user_id}", response_model=schemas.MessageResponse, dependencies=[Depends(allow_admin_only)])
async def delete_user(user_id: int, db: AsyncSession = Depends(get_db), cache: Cache = Depends(get_cache)):
    return await user_service.delete_user(db, cache, user_id)
