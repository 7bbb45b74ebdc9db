from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from techmarket.database import get_db
from techmarket import schemas
from techmarket.services import auth as auth_service

router = APIRouter(prefix="/auth", tags=["Auth"])

@router.post("/login", response_model=schemas.AuthResponse)
async def login(credentials: schemas.LoginRequest, db: AsyncSession = Depends(get_db)):
    return await auth_service.login(db, credentials.username, credentials.password)

# Mesmo fluxo via formulário OAuth2 (botão "Authorize" do Swagger)
@router.post("/token", response_model=schemas.AuthResponse)
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db)
):
    return await auth_service.login(db, form_data.username, form_data.password)
