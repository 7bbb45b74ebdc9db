import asyncio

from loguru import logger

from techmarket.database import SessionLocal, engine, Base
from techmarket.models import User, UserRole, Product
from techmarket.auth import get_password_hash

async def init_db():
    # 1. Recria as tabelas (limpa o banco para recomeçar)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as db:
        # 2. Usuários de teste
        logger.info("Criando usuários 'admin' e 'cliente'...")
        db.add_all([
            User(username="admin", hashed_password=get_password_hash("admin123"), role=UserRole.ADMIN),
            User(username="cliente", hashed_password=get_password_hash("cliente123"), role=UserRole.USER),
        ])

        # 3. Produtos de exemplo
        logger.info("Criando produtos...")
        products = [
            Product(name="Notebook Pro 14", price=7499.90, stock=12, category="Notebooks",
                    description="Notebook 14 polegadas, 16GB RAM, SSD 512GB"),
            Product(name="Mouse Sem Fio", price=89.90, stock=150, category="Periféricos"),
            Product(name="Teclado Mecânico", price=349.00, stock=40, category="Periféricos"),
            Product(name="Monitor 27 4K", price=2199.00, stock=0, category="Monitores"), # Sem estoque para testar erro
        ]

        db.add_all(products)
        await db.commit()

        logger.info("Banco de dados populado com sucesso!")

if __name__ == "__main__":
    asyncio.run(init_db())
