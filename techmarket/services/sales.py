"""
Vendas: criação transacional com baixa de estoque e CRUD administrativo.

A criação valida o carrinho contra o estado atual dos produtos e aplica a
baixa com um UPDATE condicional (``stock >= quantidade``). Se duas vendas
disputarem o mesmo estoque, a que chegar depois afeta zero linhas e é
rejeitada com 409; toda a venda é desfeita no rollback.
"""
from typing import List, Optional

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from techmarket import models, schemas
from techmarket.cache import Cache, SALES_ALL, product_key, sale_key
from techmarket.http_exception import (
    BusinessRuleException,
    InternalServerErrorException,
    ResourceConflictException,
    ResourceNotFoundException,
    ValidationException,
)

# Diferença máxima aceita entre valores enviados e calculados
PRICE_TOLERANCE = 0.01


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _sale_query():
    # Carrega comprador, itens e o produto atual de cada item
    return select(models.Sale).options(
        selectinload(models.Sale.items).selectinload(models.SaleItem.product),
        selectinload(models.Sale.user),
    ).execution_options(populate_existing=True)


async def _load_sale(db: AsyncSession, sale_id: int) -> Optional[models.Sale]:
    result = await db.execute(_sale_query().where(models.Sale.id == sale_id))
    return result.scalars().first()


async def _get_product(db: AsyncSession, product_id: int) -> Optional[models.Product]:
    # populate_existing: o mesmo produto pode aparecer duas vezes no carrinho
    result = await db.execute(
        select(models.Product)
        .where(models.Product.id == product_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


def calculate_total(items: List[schemas.SaleItemCreate]) -> float:
    return round(sum(item.price * item.quantity for item in items), 2)


async def _reserve_items(db: AsyncSession, user_id: int, sale_in: schemas.SaleCreate) -> models.Sale:
    """Corpo da transação: valida cada item, baixa o estoque e insere a venda."""
    user = await db.get(models.User, user_id)
    if not user:
        logger.warning(f"Usuário com ID {user_id} não encontrado")
        raise ResourceNotFoundException(f"Usuário com ID {user_id} não encontrado")

    for item in sale_in.items:
        if not _is_positive_int(item.product_id):
            logger.warning(f"ID de produto inválido: {item.product_id}")
            raise ValidationException("ID do produto deve ser um número inteiro positivo")

        product = await _get_product(db, item.product_id)
        if not product:
            logger.warning(f"Produto com ID {item.product_id} não encontrado")
            raise ResourceNotFoundException(f"Produto com ID {item.product_id} não encontrado")

        if product.stock < item.quantity:
            logger.warning(f"Estoque insuficiente para produto {product.name} (ID: {product.id})")
            raise BusinessRuleException(
                f"Estoque insuficiente para o produto {product.name} (ID: {product.id})"
            )

        if abs(product.price - item.price) > PRICE_TOLERANCE:
            logger.warning(
                f"Preço divergente para produto {product.name} (ID: {product.id}): "
                f"enviado {item.price}, atual {product.price}"
            )
            raise BusinessRuleException(
                f"Preço do produto {product.name} (ID: {product.id}) divergente: "
                f"enviado {item.price}, atual {product.price}"
            )

        if product.name != item.name:
            logger.warning(
                f"Nome divergente para produto (ID: {product.id}): enviado {item.name}, atual {product.name}"
            )
            raise BusinessRuleException(
                f"Nome do produto (ID: {product.id}) divergente: enviado {item.name}, atual {product.name}"
            )

        # Baixa condicional: só aplica se o estoque ainda comporta a quantidade
        result = await db.execute(
            update(models.Product)
            .where(models.Product.id == product.id, models.Product.stock >= item.quantity)
            .values(stock=models.Product.stock - item.quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(f"Falha ao atualizar estoque do produto {product.name} (ID: {product.id})")
            raise ResourceConflictException(
                f"Falha ao atualizar o estoque do produto {product.name} (ID: {product.id})"
            )

    sale = models.Sale(
        user_id=user_id,
        client=sale_in.client,
        total=sale_in.total,
        payment_method=sale_in.payment_method,
        items=[
            models.SaleItem(
                product_id=item.product_id,
                name=item.name,
                price=item.price,
                quantity=item.quantity,
            )
            for item in sale_in.items
        ],
    )
    db.add(sale)
    await db.flush()
    return sale


async def create_sale(
    db: AsyncSession, cache: Cache, user_id: int, sale_in: schemas.SaleCreate
) -> schemas.SaleResponse:
    if not _is_positive_int(user_id):
        logger.warning(f"ID de usuário inválido: {user_id}")
        raise ValidationException("ID do usuário deve ser um número inteiro positivo")

    if not sale_in.items:
        logger.warning("Venda sem itens")
        raise ValidationException("A venda deve conter pelo menos um item")

    computed_total = calculate_total(sale_in.items)
    if abs(sale_in.total - computed_total) > PRICE_TOLERANCE:
        logger.warning(f"Total inválido: informado {sale_in.total}, calculado {computed_total}")
        raise BusinessRuleException(
            f"Total informado ({sale_in.total}) não confere com o total calculado ({computed_total})"
        )

    # Tudo ou nada: qualquer rejeição desfaz as baixas já aplicadas
    try:
        sale = await _reserve_items(db, user_id, sale_in)
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Erro ao criar venda (userId: {user_id})")
        raise InternalServerErrorException("Erro ao criar venda")

    await cache.delete(SALES_ALL, *{product_key(item.product_id) for item in sale_in.items})

    sale_id = sale.id
    # A baixa foi feita fora do ORM: descarta o estoque antigo em memória
    db.expire_all()
    final_sale = await _load_sale(db, sale_id)
    logger.info(f"Venda criada com sucesso (ID: {sale_id}, userId: {user_id})")
    return schemas.SaleResponse.model_validate(final_sale)


async def list_sales(db: AsyncSession, cache: Cache) -> List[schemas.SaleResponse]:
    async def load():
        try:
            result = await db.execute(_sale_query().order_by(models.Sale.created_at.desc(), models.Sale.id.desc()))
        except SQLAlchemyError:
            logger.exception("Erro ao buscar vendas")
            raise InternalServerErrorException("Erro ao buscar vendas")
        sales = result.scalars().all()
        logger.info(f"Buscando todas as vendas: {len(sales)} encontrada(s)")
        return [schemas.SaleResponse.model_validate(s).model_dump(mode="json") for s in sales]

    data = await cache.get_or_set(SALES_ALL, load)
    return [schemas.SaleResponse.model_validate(s) for s in data]


async def list_sales_by_user(db: AsyncSession, user_id: int) -> List[schemas.SaleResponse]:
    if not _is_positive_int(user_id):
        raise ValidationException("ID do usuário deve ser um número inteiro positivo")

    try:
        result = await db.execute(
            _sale_query()
            .where(models.Sale.user_id == user_id)
            .order_by(models.Sale.created_at.desc(), models.Sale.id.desc())
        )
    except SQLAlchemyError:
        logger.exception(f"Erro ao buscar vendas do usuário ID {user_id}")
        raise InternalServerErrorException("Erro ao buscar suas vendas")

    sales = result.scalars().all()
    logger.info(f"Buscando vendas do usuário ID {user_id}: {len(sales)} encontrada(s)")
    return [schemas.SaleResponse.model_validate(s) for s in sales]


async def get_sale(db: AsyncSession, cache: Cache, sale_id: int) -> schemas.SaleResponse:
    if not _is_positive_int(sale_id):
        raise ValidationException("ID da venda deve ser um número inteiro positivo")

    async def load():
        try:
            sale = await _load_sale(db, sale_id)
        except SQLAlchemyError:
            logger.exception(f"Erro ao buscar venda com ID {sale_id}")
            raise InternalServerErrorException("Erro ao buscar venda")
        if not sale:
            logger.warning(f"Venda com ID {sale_id} não encontrada")
            raise ResourceNotFoundException("Venda não encontrada")
        return schemas.SaleResponse.model_validate(sale).model_dump(mode="json")

    data = await cache.get_or_set(sale_key(sale_id), load)
    return schemas.SaleResponse.model_validate(data)


async def update_sale(
    db: AsyncSession, cache: Cache, sale_id: int, sale_in: schemas.SaleUpdate
) -> schemas.SaleResponse:
    if not _is_positive_int(sale_id):
        raise ValidationException("ID da venda deve ser um número inteiro positivo")

    data = sale_in.model_dump(exclude_unset=True)
    for field in ("client", "total", "payment_method"):
        if field in data and data[field] is None:
            raise ValidationException(f"Campo '{field}' não pode ser nulo")

    sale = await db.get(models.Sale, sale_id)
    if not sale:
        logger.warning(f"Venda com ID {sale_id} não encontrada para atualização")
        raise ResourceNotFoundException("Venda não encontrada")

    for field, value in data.items():
        setattr(sale, field, value)

    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Erro ao atualizar venda com ID {sale_id}")
        raise InternalServerErrorException("Erro ao atualizar venda")

    await cache.delete(SALES_ALL, sale_key(sale_id))
    logger.info(f"Venda com ID {sale_id} atualizada com sucesso")
    return schemas.SaleResponse.model_validate(await _load_sale(db, sale_id))


async def delete_sale(db: AsyncSession, cache: Cache, sale_id: int) -> schemas.MessageResponse:
    if not _is_positive_int(sale_id):
        raise ValidationException("ID da venda deve ser um número inteiro positivo")

    sale = await _load_sale(db, sale_id)
    if not sale:
        logger.warning(f"Venda com ID {sale_id} não encontrada para remoção")
        raise ResourceNotFoundException("Venda não encontrada")

    # Itens vão junto (cascade); o estoque não é devolvido
    try:
        await db.delete(sale)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Erro ao remover venda com ID {sale_id}")
        raise InternalServerErrorException("Erro ao remover venda")

    await cache.delete(SALES_ALL, sale_key(sale_id))
    logger.info(f"Venda com ID {sale_id} removida com sucesso")
    return schemas.MessageResponse(message="Venda removida com sucesso")
