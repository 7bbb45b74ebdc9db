import os

# Configuração precisa existir antes de importar o pacote
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import fakeredis
import httpx
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from techmarket.auth import create_access_token, get_password_hash
from techmarket.cache import Cache, get_cache
from techmarket.database import Base, build_engine, get_db
from techmarket.main import app
from techmarket.models import Product, Sale, User, UserRole


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis()
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def cache(redis_client):
    return Cache(redis_client, default_ttl=300)


@pytest_asyncio.fixture
async def client(session_factory, cache):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_user(db, username: str, password: str = "secret123", role: UserRole = UserRole.USER) -> User:
    user = User(username=username, hashed_password=get_password_hash(password), role=role)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def create_product(db, name: str = "Mouse Gamer", price: float = 100.0, stock: int = 5,
                         category: str = "Perifericos", description=None) -> Product:
    product = Product(name=name, price=price, stock=stock, category=category, description=description)
    db.add(product)
    await db.commit()
    await db.refresh(product)
    return product


async def stock_of(session_factory, product_id: int) -> int:
    async with session_factory() as session:
        result = await session.execute(select(Product.stock).where(Product.id == product_id))
        return result.scalar_one()


async def count_sales(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(Sale.id))
        return len(result.all())


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "username": user.username, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def sale_payload(*lines, client_name: str = "Maria Silva", total=None, payment_method: str = "pix") -> dict:
    """lines: tuplas (produto, quantidade) ou (produto, quantidade, preço enviado)."""
    items = []
    for line in lines:
        product, quantity = line[0], line[1]
        price = line[2] if len(line) > 2 else product.price
        items.append({"product_id": product.id, "name": product.name, "price": price, "quantity": quantity})
    if total is None:
        total = round(sum(i["price"] * i["quantity"] for i in items), 2)
    return {"client": client_name, "total": total, "payment_method": payment_method, "items": items}


@pytest_asyncio.fixture
async def admin(db):
    return await create_user(db, "admin", "admin123", UserRole.ADMIN)


@pytest_asyncio.fixture
async def customer(db):
    return await create_user(db, "joao", "joao1234", UserRole.USER)
