from datetime import datetime, timezone

from fastapi import FastAPI

from techmarket.routers import auth, products, protected, sales, users
from techmarket.core.app_configure import (
    configure_exception_handlers,
    configure_logging,
    configure_middleware,
)
from techmarket.core.events import lifespan

app = FastAPI(title="TechMarket API", version="1.0.0", lifespan=lifespan)

configs = [
    configure_logging,
    configure_middleware,
    configure_exception_handlers,
]

for configure in configs:
    configure(app)

# Registrar Rotas
app.include_router(auth.router)
app.include_router(products.router)
app.include_router(sales.router)
app.include_router(users.router)
app.include_router(protected.router)

@app.get("/")
async def root():
    return {"status": "TechMarket API Online"}

@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
