"""Pydantic schemas for request and response models.

Schemas validate data crossing the API boundary and are kept separate
from the ORM models in ``tables`` so the exposed shapes can differ from
storage.  Monetary amounts in responses are floats rounded to two
decimals; the export endpoint returns fixed two-decimal strings instead.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from billsplit.utils.sanitization import is_valid_email, normalize_color, normalize_email, sanitize_string

from .enums import BillingInterval, LimitAction, PlanType


def _clean(v):
    return sanitize_string(v) if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Users & auth


class UserRead(BaseModel):
    id: int
    email: str
    name: str
    plan: PlanType
    subscription_status: Optional[str] = None
    subscription_expires_at: Optional[datetime] = None
    payment_state: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    # bcrypt only looks at the first 72 bytes
    password: str = Field(min_length=8, max_length=72)
    name: str = Field(min_length=1, max_length=120)

    @field_validator("email", mode="before")
    def normalise_email(cls, v):
        return normalize_email(v) if isinstance(v, str) else v

    @field_validator("email")
    def check_email(cls, v):
        if not is_valid_email(v):
            raise ValueError("invalid email address")
        return v

    @field_validator("name", mode="before")
    def sanitize_name(cls, v):
        return _clean(v)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email", mode="before")
    def normalise_email(cls, v):
        return normalize_email(v) if isinstance(v, str) else v


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=72)


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Bills


class ParticipantCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    color: Optional[str] = Field(default=None, max_length=16)

    @field_validator("name", mode="before")
    def sanitize_name(cls, v):
        return _clean(v)

    @field_validator("color", mode="before")
    def check_color(cls, v):
        return normalize_color(v) if isinstance(v, str) else v


class ParticipantRead(BaseModel):
    id: int
    bill_id: int
    name: str
    color: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AllocationRead(BaseModel):
    participant_id: int
    share_percentage: float

    model_config = ConfigDict(from_attributes=True)


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price: float = Field(ge=0, allow_inf_nan=False)
    quantity: int = Field(default=1, ge=1)
    participant_ids: List[int] = Field(default_factory=list)
    # Relative shares aligned with participant_ids; equal split when omitted
    share_percentages: Optional[List[float]] = None

    @field_validator("name", mode="before")
    def sanitize_name(cls, v):
        return _clean(v)

    @field_validator("share_percentages")
    def non_negative_shares(cls, v):
        if v is None:
            return v
        if any(not math.isfinite(s) for s in v):
            raise ValueError("share percentages must be finite numbers")
        if any(s < 0 for s in v):
            raise ValueError("share percentages must not be negative")
        return v

    @model_validator(mode="after")
    def shares_align(self):
        if self.share_percentages is not None and len(self.share_percentages) != len(self.participant_ids):
            raise ValueError("share_percentages must have one entry per participant id")
        if len(set(self.participant_ids)) != len(self.participant_ids):
            raise ValueError("participant_ids must be unique")
        return self


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    price: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    quantity: Optional[int] = Field(default=None, ge=1)
    # When provided, replaces the product's allocations
    participant_ids: Optional[List[int]] = None
    share_percentages: Optional[List[float]] = None

    @field_validator("name", mode="before")
    def sanitize_name(cls, v):
        return _clean(v)

    @field_validator("share_percentages")
    def non_negative_shares(cls, v):
        if v is None:
            return v
        if any(not math.isfinite(s) for s in v):
            raise ValueError("share percentages must be finite numbers")
        if any(s < 0 for s in v):
            raise ValueError("share percentages must not be negative")
        return v

    @model_validator(mode="after")
    def shares_align(self):
        if self.share_percentages is not None:
            if self.participant_ids is None:
                raise ValueError("share_percentages requires participant_ids")
            if len(self.share_percentages) != len(self.participant_ids):
                raise ValueError("share_percentages must have one entry per participant id")
        if self.participant_ids is not None and len(set(self.participant_ids)) != len(self.participant_ids):
            raise ValueError("participant_ids must be unique")
        return self


class ProductRead(BaseModel):
    id: int
    bill_id: int
    name: str
    price: float
    quantity: int
    allocations: List[AllocationRead] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BillCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    total_amount: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    image_url: Optional[str] = None
    participant_names: List[str] = Field(min_length=1)

    @field_validator("title", "description", mode="before")
    def sanitize_fields(cls, v):
        return _clean(v)

    @field_validator("participant_names", mode="before")
    def sanitize_names(cls, v):
        if v is None:
            return []
        return [_clean(n) for n in v]

    @field_validator("participant_names")
    def names_present(cls, v):
        if any(not n for n in v):
            raise ValueError("participant names must not be empty")
        return v


class BillUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    total_amount: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    image_url: Optional[str] = None

    @field_validator("title", "description", mode="before")
    def sanitize_fields(cls, v):
        return _clean(v)


class BillRead(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    total_amount: float
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    participant_count: int = 0
    product_count: int = 0


class BillDetail(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    total_amount: float
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    participants: List[ParticipantRead] = Field(default_factory=list)
    products: List[ProductRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class ParticipantTotalRead(BaseModel):
    id: int
    name: str
    color: Optional[str] = None
    total_owed: float
    items_count: int


class ProductShareRead(BaseModel):
    participant_id: int
    amount: float


class ProductBreakdownRead(BaseModel):
    id: int
    name: str
    price: float
    quantity: int
    line_cost: float
    orphaned: bool
    error: Optional[str] = None
    shares: List[ProductShareRead] = Field(default_factory=list)


class ReconciliationRead(BaseModel):
    stated_total: float
    computed_total: float
    allocated_total: float
    orphaned_amount: float
    stated_difference: float


class BillSummaryRead(BaseModel):
    bill_id: int
    title: str
    participants: List[ParticipantTotalRead]
    products: List[ProductBreakdownRead]
    reconciliation: ReconciliationRead


# ---------------------------------------------------------------------------
# Templates


class TemplateParticipantIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    color: Optional[str] = Field(default=None, max_length=16)

    @field_validator("name", mode="before")
    def sanitize_name(cls, v):
        return _clean(v)

    @field_validator("color", mode="before")
    def check_color(cls, v):
        return normalize_color(v) if isinstance(v, str) else v


class TemplateParticipantRead(BaseModel):
    id: int
    name: str
    color: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    participants: List[TemplateParticipantIn] = Field(default_factory=list)

    @field_validator("name", "description", mode="before")
    def sanitize_fields(cls, v):
        return _clean(v)


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    participants: Optional[List[TemplateParticipantIn]] = None

    @field_validator("name", "description", mode="before")
    def sanitize_fields(cls, v):
        return _clean(v)


class TemplateRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    participants: List[TemplateParticipantRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class TemplateApply(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    total_amount: float = Field(default=0.0, ge=0, allow_inf_nan=False)

    @field_validator("title", "description", mode="before")
    def sanitize_fields(cls, v):
        return _clean(v)


# ---------------------------------------------------------------------------
# Premium


class LimitCheckRequest(BaseModel):
    action: LimitAction
    bill_id: Optional[int] = None
    count: int = Field(default=1, ge=1)


class LimitCheckResponse(BaseModel):
    allowed: bool
    action: LimitAction
    quota: str
    limit: Optional[int] = None
    usage: int


class CheckoutRequest(BaseModel):
    interval: BillingInterval = BillingInterval.MONTHLY


class PremiumStatus(BaseModel):
    is_premium: bool
    plan: PlanType
    subscription_status: Optional[str] = None
    subscription_expires_at: Optional[datetime] = None
    payment_state: Optional[str] = None
    limits: Dict[str, Any]
    features: Dict[str, Any]


# ---------------------------------------------------------------------------
# Uploads


class ReceiptUploadRead(BaseModel):
    image_url: str
    filename: str
    text: str
    lines: List[str] = Field(default_factory=list)
