from typing import Any, Awaitable, Callable, Optional

import orjson
from loguru import logger
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from techmarket.config import settings

# Chaves usadas pelos serviços
SALES_ALL = "sales_all"
USERS_ALL = "users_all"


def product_key(product_id: int) -> str:
    return f"product_{product_id}"


def sale_key(sale_id: int) -> str:
    return f"sale_{sale_id}"


def user_key(user_id: int) -> str:
    return f"user_{user_id}"


class Cache:
    """
    Cache chave/valor sobre Redis, em modo "melhor esforço".

    Falhas do Redis são logadas e tratadas como miss (leitura) ou ignoradas
    (escrita/remoção): o cache nunca derruba uma requisição. Os valores são
    serializados em JSON, então guarde dicts/listas (model_dump(mode="json")).
    """

    def __init__(self, client, default_ttl: int = 300):
        self.client = client
        self.default_ttl = default_ttl

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Cache indisponível ao ler '{key}': {e}")
            return None
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning(f"Valor inválido no cache para '{key}', ignorando: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        try:
            await self.client.set(key, orjson.dumps(value), ex=ttl or self.default_ttl)
        except RedisError as e:
            logger.warning(f"Cache indisponível ao gravar '{key}': {e}")

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self.client.delete(*keys)
        except RedisError as e:
            logger.warning(f"Cache indisponível ao invalidar {keys}: {e}")

    async def get_or_set(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        cached = await self.get(key)
        if cached is not None:
            logger.info(f"Cache hit: {key}")
            return cached

        value = await compute()
        await self.set(key, value, ttl)
        return value

    async def close(self) -> None:
        await self.client.aclose()


cache = Cache(
    aioredis.from_url(settings.REDIS_URL),
    default_ttl=settings.CACHE_TTL_SECONDS,
)


# Dependência para injetar o cache nas rotas
def get_cache() -> Cache:
    return cache
