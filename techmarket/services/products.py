from typing import List

from loguru import logger
from sqlalchemy import select, or_, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from techmarket import models, schemas
from techmarket.cache import Cache, product_key
from techmarket.http_exception import (
    BusinessRuleException,
    InternalServerErrorException,
    ResourceNotFoundException,
    ValidationException,
)


def _check_id(product_id: int) -> None:
    if not isinstance(product_id, int) or product_id <= 0:
        logger.warning(f"ID de produto inválido: {product_id}")
        raise ValidationException("ID do produto deve ser um número inteiro positivo")


async def _name_taken(db: AsyncSession, name: str) -> bool:
    result = await db.execute(select(models.Product.id).where(models.Product.name == name))
    return result.first() is not None


async def create_product(db: AsyncSession, cache: Cache, product_in: schemas.ProductCreate) -> schemas.ProductResponse:
    data = product_in.model_dump()
    data["name"] = data["name"].strip()
    if not data["name"]:
        raise ValidationException("Nome do produto é obrigatório")
    if data["image_url"] is not None:
        data["image_url"] = str(data["image_url"])

    # Verifica duplicidade de nome
    if await _name_taken(db, data["name"]):
        logger.warning(f"Produto duplicado: {data['name']}")
        raise BusinessRuleException("Nome do produto já existe")

    new_product = models.Product(**data)
    db.add(new_product)
    try:
        await db.commit()
        await db.refresh(new_product)
    except IntegrityError:
        # Outra requisição criou o mesmo nome entre a checagem e o commit
        await db.rollback()
        raise BusinessRuleException("Nome do produto já existe")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Erro ao criar produto")
        raise InternalServerErrorException("Erro ao criar produto")

    logger.info(f"Produto criado: {new_product.name} (ID: {new_product.id})")
    return schemas.ProductResponse.model_validate(new_product)


async def list_products(db: AsyncSession, filters: schemas.ProductFilter) -> List[schemas.ProductResponse]:
    query = select(models.Product)

    if filters.search:
        pattern = f"%{filters.search}%"
        query = query.where(
            or_(models.Product.name.ilike(pattern), models.Product.description.ilike(pattern))
        )
    if filters.category:
        query = query.where(func.lower(models.Product.category) == filters.category.lower())
    if filters.min_price is not None:
        query = query.where(models.Product.price >= filters.min_price)
    if filters.max_price is not None:
        query = query.where(models.Product.price <= filters.max_price)
    if filters.ids:
        query = query.where(models.Product.id.in_(filters.ids))

    # Mais recentes primeiro
    query = query.order_by(models.Product.created_at.desc(), models.Product.id.desc())
    query = query.offset(filters.skip).limit(filters.limit)

    try:
        result = await db.execute(query)
    except SQLAlchemyError:
        logger.exception("Erro ao buscar produtos")
        raise InternalServerErrorException("Erro ao buscar produtos")

    products = [schemas.ProductResponse.model_validate(p) for p in result.scalars().all()]
    logger.info(f"{len(products)} produto(s) retornado(s)")
    return products


async def get_product(db: AsyncSession, cache: Cache, product_id: int) -> schemas.ProductResponse:
    _check_id(product_id)

    async def load():
        try:
            product = await db.get(models.Product, product_id)
        except SQLAlchemyError:
            logger.exception(f"Erro ao buscar produto ID {product_id}")
            raise InternalServerErrorException("Erro ao buscar produto")
        if not product:
            raise ResourceNotFoundException("Produto não encontrado")
        return schemas.ProductResponse.model_validate(product).model_dump(mode="json")

    data = await cache.get_or_set(product_key(product_id), load)
    return schemas.ProductResponse.model_validate(data)


async def update_product(
    db: AsyncSession, cache: Cache, product_id: int, product_in: schemas.ProductUpdate
) -> schemas.ProductResponse:
    _check_id(product_id)
    data = product_in.model_dump(exclude_unset=True)

    if "name" in data:
        if data["name"] is None or not data["name"].strip():
            raise ValidationException("Nome do produto não pode ser vazio")
        data["name"] = data["name"].strip()
    if data.get("image_url") is not None:
        data["image_url"] = str(data["image_url"])
    # Campos obrigatórios não aceitam null explícito
    for field in ("price", "stock", "category"):
        if field in data and data[field] is None:
            raise ValidationException(f"Campo '{field}' não pode ser nulo")

    db_product = await db.get(models.Product, product_id)
    if not db_product:
        raise ResourceNotFoundException("Produto não encontrado")

    if "name" in data and data["name"] != db_product.name and await _name_taken(db, data["name"]):
        logger.warning(f"Nome de produto já em uso: {data['name']}")
        raise BusinessRuleException("Nome do produto já existe")

    for field, value in data.items():
        setattr(db_product, field, value)

    try:
        await db.commit()
        await db.refresh(db_product)
    except IntegrityError:
        await db.rollback()
        raise BusinessRuleException("Nome do produto já existe")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Erro ao atualizar produto ID {product_id}")
        raise InternalServerErrorException("Erro ao atualizar produto")

    await cache.delete(product_key(product_id))
    logger.info(f"Produto atualizado: ID {product_id}")
    return schemas.ProductResponse.model_validate(db_product)


async def delete_product(db: AsyncSession, cache: Cache, product_id: int) -> schemas.MessageResponse:
    _check_id(product_id)

    product = await db.get(models.Product, product_id)
    if not product:
        raise ResourceNotFoundException("Produto não encontrado")

    # Produto já vendido não pode sumir do histórico de vendas
    sold = await db.execute(
        select(models.SaleItem.id).where(models.SaleItem.product_id == product_id).limit(1)
    )
    if sold.first() is not None:
        logger.warning(f"Tentativa de remover produto vendido: ID {product_id}")
        raise BusinessRuleException("Não é possível excluir: produto possui itens de venda associados")

    try:
        await db.delete(product)
        await db.commit()
    except IntegrityError:
        # Venda registrada entre a checagem e o delete
        await db.rollback()
        raise BusinessRuleException("Não é possível excluir: produto possui itens de venda associados")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Erro ao remover produto ID {product_id}")
        raise InternalServerErrorException("Erro ao remover produto")

    await cache.delete(product_key(product_id))
    logger.info(f"Produto removido: ID {product_id}")
    return schemas.MessageResponse(message="Produto removido com sucesso")
