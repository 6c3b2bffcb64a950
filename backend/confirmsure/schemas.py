"""Pydantic schemas for API."""
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Literal, Optional
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
PRODUCT_NAME_PATTERN = r"^[A-Za-z0-9\s&.,()-]+$"
IDENTIFIER_PATTERN = r"^[A-Za-z0-9_-]+$"
FACTORY_NAME_PATTERN = r"^[A-Za-z0-9\s&.-]+$"
FULL_NAME_PATTERN = r"^[A-Za-z\s'-]+$"

RoleName = Literal["admin", "factory_manager", "factory_operator"]
ProductStatus = Literal["draft", "pending", "approved", "published", "archived"]
MarkerType = Literal["color_dot", "pattern", "texture", "hologram", "uv_mark", "microprint"]
BatchOperationType = Literal["create_products", "update_products", "generate_qr_codes"]
ActivityTimeframe = Literal["1h", "24h", "7d", "30d"]

_meta_alias = AliasChoices("meta_data", "metadata")


def _check_date_order(start: Optional[date], end: Optional[date], *, strict: bool) -> bool:
    if start is None or end is None:
        return True
    return end > start if strict else end >= start


def _reject_null(value):
    if value is None:
        raise ValueError("Field cannot be null")
    return value


# Auth schemas
class SignInRequest(BaseModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=256)
    # Portal the user signed in from; a mismatch is rejected and audited.
    expected_role: Optional[RoleName] = None


class UserResponse(BaseModel):
    id: UUID
    email: str
    full_name: str
    role: str
    factory_id: Optional[UUID] = None
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class MeResponse(UserResponse):
    permissions: list[str]


# User management
class UserCreate(BaseModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str
    full_name: str = Field(min_length=2, max_length=100, pattern=FULL_NAME_PATTERN)
    role: RoleName
    factory_id: Optional[UUID] = None


class UserRoleUpdate(BaseModel):
    role: RoleName
    factory_id: Optional[UUID] = None


class UserListResponse(BaseModel):
    items: list[UserResponse]
    total: int
    limit: int
    offset: int


# Factory schemas
class FactoryCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100, pattern=FACTORY_NAME_PATTERN)
    location: str = Field(min_length=2, max_length=100)
    contact_email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    contact_phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    address: Optional[str] = Field(default=None, max_length=500)
    country: str = Field(min_length=2, max_length=100)
    is_active: bool = True


class FactoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=2, max_length=100, pattern=FACTORY_NAME_PATTERN)
    location: Optional[str] = Field(default=None, min_length=2, max_length=100)
    contact_email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    contact_phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    address: Optional[str] = Field(default=None, max_length=500)
    country: Optional[str] = Field(default=None, min_length=2, max_length=100)
    is_active: Optional[bool] = None

    @field_validator("name", "location", "contact_email", "country", "is_active", mode="before")
    @classmethod
    def _not_null(cls, value):
        return _reject_null(value)


class FactoryResponse(BaseModel):
    id: UUID
    name: str
    location: str
    contact_email: str
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    country: str
    is_active: bool
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class FactoryListResponse(BaseModel):
    items: list[FactoryResponse]
    total: int
    limit: int
    offset: int


class FactoryBrief(BaseModel):
    id: UUID
    name: str
    location: str
    country: str
    model_config = ConfigDict(from_attributes=True)


# Product schemas
class ProductCreate(BaseModel):
    product_name: str = Field(min_length=2, max_length=200, pattern=PRODUCT_NAME_PATTERN)
    product_type: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    batch_id: Optional[str] = Field(default=None, max_length=50, pattern=IDENTIFIER_PATTERN)
    serial_number: Optional[str] = Field(default=None, max_length=100, pattern=IDENTIFIER_PATTERN)
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    # Defaults to the caller's factory; required for admins.
    factory_id: Optional[UUID] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _expiry_after_manufacturing(self):
        if not _check_date_order(self.manufacturing_date, self.expiry_date, strict=True):
            raise ValueError("Expiry date must be after manufacturing date")
        return self


class ProductUpdate(BaseModel):
    """Partial update; qr_code, factory_id and status are not updatable here."""

    model_config = ConfigDict(extra="forbid")

    product_name: Optional[str] = Field(default=None, min_length=2, max_length=200, pattern=PRODUCT_NAME_PATTERN)
    product_type: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    batch_id: Optional[str] = Field(default=None, max_length=50, pattern=IDENTIFIER_PATTERN)
    serial_number: Optional[str] = Field(default=None, max_length=100, pattern=IDENTIFIER_PATTERN)
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("product_name", "product_type", mode="before")
    @classmethod
    def _not_null(cls, value):
        return _reject_null(value)

    @model_validator(mode="after")
    def _expiry_after_manufacturing(self):
        if not _check_date_order(self.manufacturing_date, self.expiry_date, strict=True):
            raise ValueError("Expiry date must be after manufacturing date")
        return self


class ProductFilters(BaseModel):
    query: Optional[str] = Field(default=None, max_length=100)
    factory_id: Optional[UUID] = None
    status: Optional[ProductStatus] = None
    product_type: Optional[str] = Field(default=None, max_length=100)
    batch_id: Optional[str] = Field(default=None, max_length=50)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _date_range(self):
        if not _check_date_order(self.date_from, self.date_to, strict=False):
            raise ValueError("End date must be after start date")
        return self


class ProductResponse(BaseModel):
    id: UUID
    qr_code: str
    product_name: str
    product_type: str
    description: Optional[str] = None
    batch_id: Optional[str] = None
    serial_number: Optional[str] = None
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    status: str
    factory_id: UUID
    created_by: UUID
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias=_meta_alias)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ProductListResponse(BaseModel):
    items: list[ProductResponse]
    total: int
    limit: int
    offset: int


# Authentication markers
class MarkerCoordinates(BaseModel):
    x: float = Field(ge=0, le=1)
    y: float = Field(ge=0, le=1)
    width: Optional[float] = Field(default=None, ge=0, le=1)
    height: Optional[float] = Field(default=None, ge=0, le=1)


class MarkerCreate(BaseModel):
    type: MarkerType
    position: str = Field(min_length=2, max_length=200)
    color: Optional[str] = Field(default=None, max_length=50)
    pattern: Optional[str] = Field(default=None, max_length=200)
    size_mm: Optional[Decimal] = Field(default=None, gt=0, le=1000)
    coordinates: Optional[MarkerCoordinates] = None
    description: Optional[str] = Field(default=None, max_length=500)
    verification_instructions: Optional[str] = Field(default=None, max_length=1000)


class MarkerResponse(BaseModel):
    id: UUID
    product_id: UUID
    type: str
    position: str
    color: Optional[str] = None
    pattern: Optional[str] = None
    size_mm: Optional[Decimal] = None
    coordinates: Optional[dict[str, Any]] = None
    description: Optional[str] = None
    verification_instructions: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# QR generation
class QrGenerateRequest(BaseModel):
    type: Literal["single", "batch", "printable"] = "single"
    count: int = Field(default=1, ge=1)
    width: Optional[int] = Field(default=None, ge=64, le=2048)


class QrImage(BaseModel):
    qr_code: str
    verification_url: str
    data_url: str
    format: str = "png"
    size: int


class QrGenerateResponse(BaseModel):
    type: str
    count: int
    items: list[QrImage]


# Batch operations
class BatchOperationCreate(BaseModel):
    operation_type: BatchOperationType
    # Admins choose the factory; everyone else is pinned to their own.
    factory_id: Optional[UUID] = None
    items: list[dict[str, Any]]


class BatchItemResponse(BaseModel):
    id: UUID
    row_number: int
    status: str
    product_id: Optional[UUID] = None
    error_message: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    model_config = ConfigDict(from_attributes=True)


class BatchOperationResponse(BaseModel):
    id: UUID
    operation_type: str
    factory_id: UUID
    created_by: UUID
    total_items: int
    processed_items: int
    failed_items: int
    status: str
    error_details: Optional[list[dict[str, Any]]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class BatchOperationDetail(BatchOperationResponse):
    items: list[BatchItemResponse] = Field(default_factory=list)


class BatchOperationListResponse(BaseModel):
    items: list[BatchOperationResponse]
    total: int
    limit: int
    offset: int


# Public verification
class VerificationResponse(BaseModel):
    qr_code: str
    is_authentic: bool
    status: str
    product: ProductResponse
    factory: Optional[FactoryBrief] = None
    markers: list[MarkerResponse]


# Statistics
class DailyCount(BaseModel):
    day: date
    total: int
    published: int


class FactoryStatsResponse(BaseModel):
    factory_id: Optional[UUID] = None
    total_products: int
    published_products: int
    created_today: int
    created_last_7_days: int
    created_last_30_days: int
    total_scans: int
    status_breakdown: dict[str, int]
    daily_series: list[DailyCount]


# Activity feed
class ActivityActor(BaseModel):
    id: UUID
    full_name: str
    email: str
    role: str


class ActivityEntry(BaseModel):
    id: UUID
    event_type: str
    event_name: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    priority: Literal["high", "medium", "low"]
    user: Optional[ActivityActor] = None
    created_at: Optional[datetime] = None


class ActivitySummary(BaseModel):
    count: int
    latest: Optional[datetime] = None


class ActivityListResponse(BaseModel):
    items: list[ActivityEntry]
    summary: dict[str, ActivitySummary]
    timeframe: ActivityTimeframe
    total: int
    limit: int
    offset: int
