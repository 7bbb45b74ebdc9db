from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from techmarket.cache import Cache, get_cache
from techmarket.database import get_db
from techmarket import schemas
from techmarket.dependencies import allow_admin_only
from techmarket.services import products as product_service

router = APIRouter(prefix="/products", tags=["Products"])

# Listar Produtos (vitrine, não exige login)
@router.get("/", response_model=List[schemas.ProductResponse])
async def read_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0, alias="minPrice"),
    max_price: Optional[float] = Query(None, ge=0, alias="maxPrice"),
    ids: Optional[List[int]] = Query(None, alias="id"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    filters = schemas.ProductFilter(
        search=search,
        category=category,
        min_price=min_price,
        max_price=max_price,
        ids=ids,
        skip=skip,
        limit=limit,
    )
    return await product_service.list_products(db, filters)

@router.get("/{product_id}", response_model=schemas.ProductResponse)
async def read_product(product_id: int, db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache)):
    return await product_service.get_product(db, cache, product_id)

# Criar Produto
@router.post("/", response_model=schemas.ProductResponse, status_code=201,
    dependencies=[Depends(allow_admin_only)])
async def create_product(
    product: schemas.ProductCreate,
    db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache)
):
    return await product_service.create_product(db, cache, product)

@router.put("/{product_id}", response_model=schemas.ProductResponse,
    dependencies=[Depends(allow_admin_only)])
async def update_product(
    product_id: int,
    product_update: schemas.ProductUpdate,
    db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache)
):
    return await product_service.update_product(db, cache, product_id, product_update)

@router.delete("/{product_id}", response_model=schemas.MessageResponse,
    dependencies=[Depends(allow_admin_only)])
async def delete_product(product_id: int, db: AsyncSession = Depends(get_db),
    cache: Cache = Depends(get_cache)):
    return await product_service.delete_product(db, cache, product_id)
