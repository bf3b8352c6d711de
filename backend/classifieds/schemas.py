from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AdCategory(str, Enum):
    job = "job"
    property = "property"
    vehicle = "vehicle"
    apparel = "apparel"
    food = "food"
    home_goods = "home-goods"


class PropertyType(str, Enum):
    sale = "sale"
    rent = "rent"
    mortgage = "mortgage"


class HomeSection(str, Enum):
    home = "home"
    kitchen = "kitchen"


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    details: list[ApiErrorDetail] = Field(default_factory=list)
    limit: Optional[int] = None


class ApiErrorResponse(BaseModel):
    error: ApiErrorPayload


class HealthResponse(BaseModel):
    status: str


# ---- ad payloads ----
#
# Each category model declares its required fields as non-optional; the
# submission pipeline validates create payloads and merged update records
# against the same model.


class AdPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, use_enum_values=True)

    title: str = Field(min_length=1, max_length=200)
    caption: Optional[str] = Field(default=None, max_length=4000)
    images: list[str] = Field(default_factory=list)
    phoneNumber: Optional[str] = Field(default=None, max_length=64)
    location: Optional[str] = Field(default=None, max_length=200)
    price: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def numbers_as_text(cls, value: Any) -> Any:
        # Mobile clients send prices and incomes either as numbers or strings.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class JobAd(AdPayload):
    caption: str = Field(min_length=1, max_length=4000)
    images: list[str] = Field(min_length=1)
    phoneNumber: str = Field(min_length=1, max_length=64)
    location: str = Field(min_length=1, max_length=200)
    income: str = Field(min_length=1)
    workingHours: str = Field(min_length=1)
    paymentType: str = Field(min_length=1)
    jobTitle: Optional[str] = None


class PropertyAd(AdPayload):
    type: PropertyType
    location: str = Field(min_length=1, max_length=200)
    phoneNumber: str = Field(min_length=1, max_length=64)
    city: str = Field(min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=4000)
    rentPrice: Optional[str] = None
    mortgagePrice: Optional[str] = None
    area: Optional[str] = None


class VehicleAd(AdPayload):
    caption: str = Field(min_length=1, max_length=4000)
    images: list[str] = Field(min_length=1)
    phoneNumber: str = Field(min_length=1, max_length=64)
    location: str = Field(min_length=1, max_length=200)
    adType: str = Field(min_length=1)
    model: Optional[str] = None
    brand: Optional[str] = None
    fuelType: Optional[str] = None
    registrationCardImage: Optional[str] = None


class ApparelAd(AdPayload):
    caption: str = Field(min_length=1, max_length=4000)
    images: list[str] = Field(min_length=1)
    phoneNumber: str = Field(min_length=1, max_length=64)
    location: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1, max_length=300)
    model: Optional[str] = None
    status: Optional[str] = None
    texture: Optional[str] = None


class FoodAd(AdPayload):
    caption: str = Field(min_length=1, max_length=4000)
    images: list[str] = Field(min_length=1)
    location: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1, max_length=300)


class HomeGoodsAd(AdPayload):
    caption: str = Field(min_length=1, max_length=4000)
    images: list[str] = Field(min_length=1)
    phoneNumber: str = Field(min_length=1, max_length=64)
    location: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1, max_length=300)
    section: Optional[HomeSection] = None
    model: Optional[str] = None
    status: Optional[str] = None
    texture: Optional[str] = None
    dimensions: Optional[str] = None


# ---- responses ----


class UserPublic(BaseModel):
    id: UUID
    username: Optional[str] = None
    profileImageUrl: Optional[str] = None


class AdResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: UUID
    category: AdCategory
    title: str
    images: list[str] = Field(default_factory=list)
    owner: UUID
    user: Optional[UserPublic] = None
    isMine: Optional[bool] = None
    createdAt: datetime
    updatedAt: Optional[datetime] = None


class AdPageResponse(BaseModel):
    items: list[AdResponse]
    page: int
    pageSize: int
    totalItems: int
    totalPages: int


class MessageResponse(BaseModel):
    message: str


class SaveAdRequest(BaseModel):
    adId: UUID
    adCategory: AdCategory


class UnsaveAdRequest(BaseModel):
    adId: UUID


class SavedAdResponse(BaseModel):
    id: UUID
    adId: UUID
    adCategory: AdCategory
    createdAt: datetime
    ad: Optional[AdResponse] = None


class UnsaveResponse(BaseModel):
    success: bool = True


# ---- auth ----


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: str
    password: str = Field(min_length=6, max_length=128)

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        v = value.strip()
        if len(v) < 3:
            raise ValueError("username must have at least 3 characters")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        v = value.strip().lower()
        local, _, domain = v.partition("@")
        if not local or " " in v or "." not in domain or domain.startswith(".") or domain.endswith("."):
            raise ValueError("invalid email format")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class RefreshRequest(BaseModel):
    refreshToken: str = Field(min_length=1)


class PushTokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=512)


class UserProfileResponse(BaseModel):
    id: UUID
    username: str
    email: str
    profileImageUrl: Optional[str] = None
    createdAt: datetime


class AuthResponse(BaseModel):
    accessToken: str
    refreshToken: str
    user: UserProfileResponse


class AccessTokenResponse(BaseModel):
    accessToken: str
