from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from techmarket.cache import Cache, get_cache
from techmarket.database import get_db
from techmarket import models, schemas
from techmarket.dependencies import allow_admin_only, allow_authenticated, allow_customer
from techmarket.services import sales as sale_service
from typing import List

router = APIRouter(prefix="/sales", tags=["Sales"])

# Admin vê todas as vendas; cliente vê só as próprias
@router.get("/", response_model=List[schemas.SaleResponse])
async def read_sales(
    db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache),
    current_user: schemas.CurrentUser = Depends(allow_authenticated)
):
    if current_user.role == models.UserRole.ADMIN:
        return await sale_service.list_sales(db, cache)
    return await sale_service.list_sales_by_user(db, current_user.id)

@router.get("/my", response_model=List[schemas.SaleResponse])
async def read_my_sales(
    db: AsyncSession = Depends(get_db),
    current_user: schemas.CurrentUser = Depends(allow_customer)
):
    return await sale_service.list_sales_by_user(db, current_user.id)

@router.post("/", response_model=schemas.SaleResponse, status_code=201)
async def create_sale(
    sale_in: schemas.SaleCreate,
    current_user: schemas.CurrentUser = Depends(allow_authenticated),
    db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache)
):
    # O comprador é sempre quem está autenticado
    return await sale_service.create_sale(db, cache, current_user.id, sale_in)

@router.get("/{sale_id}", response_model=schemas.SaleResponse, dependencies=[Depends(allow_admin_only)])
async def read_sale(sale_id: int, db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache)):
    return await sale_service.get_sale(db, cache, sale_id)

@router.put("/{sale_id}", response_model=schemas.SaleResponse, dependencies=[Depends(allow_admin_only)])
async def update_sale(sale_id: int, sale_in: schemas.SaleUpdate, db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache)):
    return await sale_service.update_sale(db, cache, sale_id, sale_in)

@router.delete("/{sale_id}", response_model=schemas.MessageResponse, dependencies=[Depends(allow_admin_only)])
async def delete_sale(sale_id: int, db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache)):
    return await sale_service.delete_sale(db, cache, sale_id)
