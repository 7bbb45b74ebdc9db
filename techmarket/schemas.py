from pydantic import BaseModel, Field, AnyHttpUrl
from typing import List, Optional
from datetime import datetime


from techmarket.models import PaymentMethod, UserRole

# --- Produto ---
class ProductBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    price: float = Field(ge=0)
    stock: int = Field(ge=0)
    category: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[AnyHttpUrl] = None

class ProductCreate(ProductBase):
    pass

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    price: Optional[float] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[AnyHttpUrl] = None

class ProductFilter(BaseModel):
    search: Optional[str] = None
    category: Optional[str] = None
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    ids: Optional[List[int]] = None
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1, le=500)

class ProductResponse(BaseModel):
    id: int
    name: str
    price: float
    stock: int
    category: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

# --- Usuário ---
class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=6, max_length=100)
    role: UserRole = UserRole.USER # Padrão é cliente comum

class UserUpdate(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=50)
    password: Optional[str] = Field(default=None, min_length=6, max_length=100)
    role: Optional[UserRole] = None

class UserResponse(BaseModel):
    # Sem campo de senha: nunca sai da API
    id: int
    username: str
    role: UserRole
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

# --- Autenticação ---
class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=6)

class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

class CurrentUser(BaseModel):
    """Identidade extraída de um token válido."""
    id: int
    username: str
    role: UserRole

# --- Venda ---
class SaleItemCreate(BaseModel):
    product_id: int
    name: str = Field(min_length=1)
    price: float = Field(ge=0)
    quantity: int = Field(ge=1)

class SaleCreate(BaseModel):
    client: str = Field(min_length=1)
    total: float = Field(ge=0)
    payment_method: PaymentMethod
    items: List[SaleItemCreate]

class SaleUpdate(BaseModel):
    client: Optional[str] = Field(default=None, min_length=1)
    total: Optional[float] = Field(default=None, ge=0)
    payment_method: Optional[PaymentMethod] = None

class SaleUser(BaseModel):
    id: int
    username: str

    class Config:
        from_attributes = True

class ProductSnapshot(BaseModel):
    id: int
    name: str
    price: float
    stock: int
    description: Optional[str] = None
    image_url: Optional[str] = None

    class Config:
        from_attributes = True

class SaleItemResponse(BaseModel):
    product_id: int
    name: str
    price: float
    quantity: int
    product: Optional[ProductSnapshot] = None # Estado atual do produto

    class Config:
        from_attributes = True

class SaleResponse(BaseModel):
    id: int
    client: str
    total: float
    payment_method: PaymentMethod
    user_id: int
    created_at: datetime
    updated_at: datetime
    user: Optional[SaleUser] = None
    items: List[SaleItemResponse]

    class Config:
        from_attributes = True

class MessageResponse(BaseModel):
    message: str
