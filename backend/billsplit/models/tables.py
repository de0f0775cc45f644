"""SQLAlchemy ORM models for the bill splitting API.

A user owns bills and templates.  A bill owns its participants and
products; each product is linked to participants through
``ProductParticipant`` rows carrying a relative share percentage.
Deleting a parent removes its children both through ORM cascades and
``ON DELETE CASCADE`` foreign keys.

If you extend or modify these models call the ``init_db`` helper during
development to recreate the tables.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from billsplit.core.database import Base
from .enums import PlanType


class User(Base):
    """User account holding bills, templates and subscription state."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=True)
    name = Column(String, nullable=False)
    plan = Column(Enum(PlanType), nullable=False, default=PlanType.FREE)
    # Mirrors Stripe subscription.status; None until the first checkout
    subscription_status = Column(String, nullable=True)
    subscription_expires_at = Column(DateTime, nullable=True)
    # "ok" | "past_due" | None
    payment_state = Column(String, nullable=True)
    stripe_customer_id = Column(String, unique=True, nullable=True)
    stripe_subscription_id = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    bills = relationship("Bill", back_populates="owner", cascade="all, delete-orphan")
    templates = relationship("BillTemplate", back_populates="owner", cascade="all, delete-orphan")


class Bill(Base):
    """A shared bill; ``total_amount`` is the user-entered stated total."""

    __tablename__ = "bills"
    __table_args__ = (Index("ix_bills_owner_created_at", "owner_id", "created_at"),)

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    total_amount = Column(Float, nullable=False, default=0.0)
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    owner = relationship("User", back_populates="bills")
    participants = relationship(
        "Participant",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="Participant.id",
    )
    products = relationship(
        "Product",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="Product.id",
    )


class Participant(Base):
    __tablename__ = "participants"

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    # Display only; plays no part in allocation
    color = Column(String, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)

    bill = relationship("Bill", back_populates="participants")
    allocations = relationship(
        "ProductParticipant",
        back_populates="participant",
        cascade="all, delete-orphan",
    )


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)

    bill = relationship("Bill", back_populates="products")
    allocations = relationship(
        "ProductParticipant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductParticipant.id",
    )


class ProductParticipant(Base):
    """Allocation of a product to a participant with a relative share."""

    __tablename__ = "product_participants"
    __table_args__ = (UniqueConstraint("product_id", "participant_id", name="uq_product_participant"),)

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    participant_id = Column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True)
    share_percentage = Column(Float, nullable=False, default=100.0)

    product = relationship("Product", back_populates="allocations")
    participant = relationship("Participant", back_populates="allocations")


class BillTemplate(Base):
    """Reusable participant list for recurring bills."""

    __tablename__ = "bill_templates"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    owner = relationship("User", back_populates="templates")
    participants = relationship(
        "TemplateParticipant",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateParticipant.id",
    )


class TemplateParticipant(Base):
    __tablename__ = "template_participants"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("bill_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=True)

    template = relationship("BillTemplate", back_populates="participants")


class ProcessedStripeEvent(Base):
    """Ledger of applied Stripe webhook events, keyed by event id."""

    __tablename__ = "processed_stripe_events"

    id = Column(String, primary_key=True)
    type = Column(String, nullable=False)
    processed_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
