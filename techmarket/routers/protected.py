from fastapi import APIRouter, Depends
from techmarket import schemas
from techmarket.dependencies import allow_authenticated

router = APIRouter(prefix="/protected", tags=["Protected"])

@router.get("/")
async def get_protected_data(current_user: schemas.CurrentUser = Depends(allow_authenticated)):
    return {"message": "Esta rota é protegida por JWT.", "user": current_user.username}
